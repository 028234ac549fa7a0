#!/usr/bin/env python3
#
# repository.py - part of fdroidrepo
# Copyright (C) 2026, The fdroidrepo authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""Manage an F-Droid repository directory.

The layout is the one "fdroid init" creates::

    config.yml
    keystore.p12
    metadata/<appid>.yml
    repo/*.apk
    unsigned/

plus repoindex.json, the persisted index of this library.  Every change
goes through run_cycle(), which brings repoindex.json, the metadata
files and the signed index in line with the APKs in repo/.

"""

import fcntl
import logging
import shutil
import time
from pathlib import Path

from . import _
from . import common
from . import index
from . import metadata
from . import update
from .exception import FDroidRepoException, RepositoryLockedError
from .extract import AaptExtractor
from .repotool import FDroidTool

LOCK_FILE = '.fdroidrepo.lock'


class RepositoryLock:
    """Exclusive lock on a repository directory, held for a whole cycle.

    This uses flock(2) on a lock file, so it works between processes
    and also between two RepositoryLock instances in the same process.
    """

    def __init__(self, path, timeout=60, poll_interval=0.1):
        self.path = str(path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fp = None

    def acquire(self):
        fp = open(self.path, 'a')
        deadline = time.monotonic() + (self.timeout or 0)
        while True:
            try:
                fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    fp.close()
                    raise RepositoryLockedError(
                        _('{path} is locked by another process!').format(path=self.path)
                    ) from None
                time.sleep(self.poll_interval)
        logging.debug('Locked %s' % self.path)
        self._fp = fp

    def release(self):
        if self._fp is None:
            return
        fcntl.flock(self._fp.fileno(), fcntl.LOCK_UN)
        self._fp.close()
        self._fp = None
        logging.debug('Unlocked %s' % self.path)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()


class Repository:
    """An F-Droid repository in a local directory.

    Parameters
    ----------
    path
      the repository root, must be an existing directory
    extractor
      object with extract(path), defaults to AaptExtractor
    tool
      object with run(repodir, command, args) and
      invoke_repo_tool(repodir, options), defaults to FDroidTool
    initialize
      run "fdroid init" and a first cycle when there is no config.yml
    """

    def __init__(self, path, extractor=None, tool=None, initialize=True):
        path = Path(path)
        if not path.is_dir():
            raise FDroidRepoException(_('{path} is not a directory!').format(path=path))
        self.path = path.absolute()
        self._extractor = extractor
        self._tool = tool

        if initialize and not self.config_path().exists():
            self.initialize()

    def __repr__(self):
        return '<Repository %s>' % self.path

    # paths

    def repo_path(self):
        return self.path / 'repo'

    def metadata_path(self):
        return self.path / 'metadata'

    def config_path(self):
        return self.path / common.CONFIG_FILE

    def keystore_path(self):
        return self.path / 'keystore.p12'

    def index_path(self):
        return self.path / index.INDEX_FILE

    def lock_path(self):
        return self.path / LOCK_FILE

    def unsigned_path(self):
        """Return the unsigned/ directory, creating it when needed."""
        path = self.path / 'unsigned'
        if path.exists():
            if not path.is_dir():
                raise FDroidRepoException(_('{path} is not a directory!').format(path=path))
        else:
            path.mkdir()
        return path

    # capabilities

    def read_config(self):
        return common.read_config(str(self.config_path()))

    @property
    def extractor(self):
        if self._extractor is None:
            self._extractor = AaptExtractor(self.read_config())
        return self._extractor

    @property
    def tool(self):
        if self._tool is None:
            self._tool = FDroidTool(self.read_config())
        return self._tool

    def lock(self, config=None):
        if config is None:
            config = self.read_config()
        return RepositoryLock(self.lock_path(), config.get('lock_timeout'))

    # cycles

    def run_cycle(self):
        """Bring the index in line with the APKs in repo/.

        The steps are: lock, load the last index, apply edits from the
        metadata files, scan repo/, reconcile, save the index, create
        missing metadata files, then run "fdroid update".  Anything that
        fails before saving leaves the directory as it was.

        Raises
        ------
        RepositoryLockedError
            when another cycle holds the lock for too long.
        PersistenceError
            when repoindex.json is unreadable or cannot be written.
        ToolUnavailableError
            when aapt or fdroid cannot be run at all.
        ToolInvocationError
            when "fdroid update" fails.  The index is already saved at
            that point, the next successful cycle brings the signed
            index up to date.

        Returns
        -------
        The ChangeReport of the reconcile.
        """
        config = self.read_config()
        with self.lock(config):
            report = self._run_cycle_locked(config)
        logging.info(report.summary())
        return report

    def _run_cycle_locked(self, config):
        previous = index.load(self.index_path())
        working = previous.copy()
        metadata_apps = metadata.read_metadata(self.metadata_path())
        edited = working.apply_metadata(metadata_apps)

        scanned = update.scan_repo(self.repo_path())
        next_index, report = update.reconcile(
            working, scanned, self.extractor, workers=config.get('extract_workers'),
            metadata_apps=metadata_apps,
        )
        report.edited_apps = [a for a in edited if a in next_index]

        index.save(next_index, self.index_path())

        for app in next_index.values():
            metadata.create_metadata_from_template(self.metadata_path(), app)

        self.tool.invoke_repo_tool(self.path, self.repo_tool_options(config))
        return report

    def update(self):
        logging.info(_('Updating repository'))
        return self.run_cycle()

    @staticmethod
    def repo_tool_options(config):
        return {
            'name': config.get('repo_name'),
            'description': config.get('repo_description'),
            'address': config.get('repo_url'),
            'keystore': config.get('keystore_orig', config.get('keystore')),
        }

    def initialize(self):
        """Run "fdroid init" and a first cycle."""
        logging.info(_('Initializing a new repository at {path}!').format(path=self.path))
        self.tool.run(self.path, 'init')
        return self.run_cycle()

    def publish(self):
        logging.info(_('Publishing changes'))
        return self.tool.run(self.path, 'publish')

    def cleanup(self):
        """Reformat the metadata files without changing their data."""
        logging.debug('Cleaning up metadata files!')
        return self.tool.run(self.path, 'rewritemeta')

    def clear(self):
        """Delete ALL APKs and metadata files, then run a cycle.

        config.yml, the keystore and everything else stays.
        """
        logging.warning(_('Clearing the repository!'))
        config = self.read_config()
        with self.lock(config):
            for d in (self.repo_path(), self.metadata_path()):
                if d.exists():
                    shutil.rmtree(d)
                d.mkdir()
            report = self._run_cycle_locked(config)
        logging.info(report.summary())
        return report

    # apps

    def apps(self):
        """Return the Apps of the persisted index, sorted by appid."""
        return index.load(self.index_path()).values()

    def published_apps(self):
        """Return the apps in the index-v1.json written by "fdroid update"."""
        return index.read_published_index(str(self.repo_path()))

    def add_app(self, apk_file):
        """Copy an APK into repo/ and run a cycle.

        If the cycle fails the copied file gets removed again, and a
        file it overwrote is put back.  When that happens after the index
        was saved, the next cycle brings the index in line again.
        """
        apk_file = Path(apk_file)
        logging.info(_('Adding new app: {path}').format(path=apk_file))
        if not apk_file.is_file():
            raise FDroidRepoException(_('{path} is not a file!').format(path=apk_file))

        self.repo_path().mkdir(exist_ok=True)
        dest = self.repo_path() / apk_file.name
        # not matched by the *.apk scan
        backup = dest.with_name('.' + dest.name + '.bak')
        if dest.exists():
            logging.warning(_('File already exists, overwriting existing file: {path}').format(path=dest))
            dest.replace(backup)
        shutil.copyfile(apk_file, dest)

        try:
            report = self.run_cycle()
        except Exception:
            if dest.is_file():
                logging.info(_('Removing {path} again').format(path=dest))
                dest.unlink()
            if backup.exists():
                logging.info(_('Restoring {path}').format(path=dest))
                backup.replace(dest)
            raise
        if backup.exists():
            backup.unlink()
        return report

    def delete_app(self, apk_name):
        """Delete an APK from repo/ and run a cycle."""
        logging.warning(_('Deleting "{apkname}"').format(apkname=apk_name))
        path = self.repo_path() / apk_name
        if not path.exists():
            logging.warning(_('Trying to delete "{apkname}" but file does not exist!')
                            .format(apkname=apk_name))
            return None
        if not path.is_file():
            raise FDroidRepoException(_('{path} is not a file!').format(path=path))
        path.unlink()
        return self.run_cycle()

    def sign_app(self, apk_file):
        """Sign an APK with the repository key and add it.

        The APK is copied to unsigned/<appid>_<versionCode>.apk where
        "fdroid publish" picks it up, signs it and moves it to repo/.
        """
        apk_file = Path(apk_file)
        logging.info(_('Signing {path}').format(path=apk_file))
        extracted = self.extractor.extract(str(apk_file))
        appid = extracted.appid
        versionCode = extracted.release.versionCode

        dest = self.unsigned_path() / ('%s_%d.apk' % (appid, versionCode))
        shutil.copyfile(apk_file, dest)

        if not (self.metadata_path() / (appid + '.yml')).exists():
            logging.warning(_('No metadata for {appid} exists, creating empty metadata file!')
                            .format(appid=appid))
            app = metadata.App()
            app.id = appid
            app.Name = extracted.label
            app.releases[versionCode] = extracted.release
            metadata.create_metadata_from_template(self.metadata_path(), app)

        self.publish()
        return self.run_cycle()

    # config

    def config(self):
        """Return the public part of config.yml, unset keys are None."""
        config = common.load_config_file(str(self.config_path()))
        return {k: config.get(k) for k in common.PUBLIC_CONFIG_KEYS}

    def set_config(self, public):
        """Write the public config keys, then run a cycle.

        Keys with the value None are removed from config.yml, private
        keys like the keystore passwords are never touched.
        """
        unknown = sorted(k for k in public if k not in common.PUBLIC_CONFIG_KEYS)
        if unknown:
            raise FDroidRepoException(
                _('Not a public config key: {keys}').format(keys=', '.join(unknown))
            )
        repo_url = public.get('repo_url')
        if repo_url is not None and not repo_url.endswith('/repo'):
            raise FDroidRepoException(_('repo_url needs to end with /repo'))
        archive_url = public.get('archive_url')
        if archive_url is not None and not archive_url.endswith('/archive'):
            raise FDroidRepoException(_('archive_url needs to end with /archive'))

        logging.info(_('Setting new config!'))
        config_file = str(self.config_path())
        for key in common.PUBLIC_CONFIG_KEYS:
            if key in public:
                common.write_to_config(config_file, key, public[key])
        return self.run_cycle()

    def keystore_password(self):
        return self.read_config().get('keystorepass')

    def image_path(self):
        """Return the path of the repository icon."""
        return self.repo_path() / 'icons' / (self.read_config().get('repo_icon') or 'icon.png')

    def set_image(self, image_file):
        """Replace the repository icon, the file type must stay the same."""
        image_file = Path(image_file)
        logging.info(_('Setting new repository image: {path}!').format(path=image_file))
        image_path = self.image_path()
        extension = common.get_file_extension(image_file.name)
        if not extension:
            raise FDroidRepoException(_('{path} does not have a file type').format(path=image_file))
        if extension != common.get_file_extension(image_path.name):
            raise FDroidRepoException(
                _('Image type should be: {extension}').format(
                    extension=common.get_file_extension(image_path.name))
            )
        image_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(image_file, image_path)
        return image_path
