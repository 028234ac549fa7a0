#!/usr/bin/env python3
#
# index.py - part of fdroidrepo
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

"""The repository index as this library keeps it between cycles.

This is not the signed index-v1.json/index-v2.json that "fdroid update"
publishes, it is the record of everything that was extracted from the
APKs plus the curated fields, stored as repoindex.json in the
repository root.  It is the only place where the first-seen date of a
release is kept.

"""

import collections
import copy
import json
import logging
import os
import tempfile

from . import _
from . import common
from .exception import PersistenceError
from .metadata import (App, Release, apply_curated_fields, curated_fields, fieldtype,
                       TYPE_LIST)

INDEX_FILE = 'repoindex.json'
FORMAT_VERSION = 1

# key -> accepted types, None allowed for the optional ones
RELEASE_FIELDS = collections.OrderedDict([
    ('versionCode', (int,)),
    ('versionName', (str,)),
    ('apkName', (str,)),
    ('hash', (str,)),
    ('hashType', (str,)),
    ('size', (int,)),
    ('minSdkVersion', (int, type(None))),
    ('targetSdkVersion', (int, type(None))),
    ('maxSdkVersion', (int, type(None))),
    ('permissions', (list,)),
    ('nativecode', (list,)),
    ('signer', (list,)),
    ('added', (int,)),
])
SET_FIELDS = ('permissions', 'nativecode', 'signer')


class RepoIndex:
    """Mapping of application id to App, iterated in application id order."""

    def __init__(self, apps=None):
        self.apps = dict()
        for app in apps or []:
            self.add(app)

    def __len__(self):
        return len(self.apps)

    def __contains__(self, appid):
        return appid in self.apps

    def __getitem__(self, appid):
        return self.apps[appid]

    def __iter__(self):
        return iter(sorted(self.apps))

    def __eq__(self, other):
        if not isinstance(other, RepoIndex):
            return NotImplemented
        return self.apps == other.apps

    def __repr__(self):
        return '<RepoIndex %s>' % ', '.join(
            '%s%s' % (appid, sorted(self.apps[appid].releases)) for appid in self
        )

    def get(self, appid, default=None):
        return self.apps.get(appid, default)

    def items(self):
        return [(appid, self.apps[appid]) for appid in self]

    def values(self):
        return [self.apps[appid] for appid in self]

    def add(self, app):
        if app.id in self.apps:
            raise ValueError(_("Found multiple entries for {appid}").format(appid=app.id))
        self.apps[app.id] = app

    def remove(self, appid):
        del self.apps[appid]

    def copy(self):
        return RepoIndex(copy.deepcopy(list(self.apps.values())))

    def releases_by_hash(self):
        """Map each file hash to (appid, versionCode)."""
        ret = dict()
        for appid, app in self.items():
            for versionCode, release in app.releases.items():
                ret[release.hash] = (appid, versionCode)
        return ret

    def apply_metadata(self, metadata_apps):
        """Apply curated fields edited by hand in the metadata files.

        This is the only path where a curated field that is already set
        gets a new value.  Metadata for apps not in the index is
        ignored here, reconcile() uses it to seed new apps.

        Returns
        -------
        The sorted list of appids that were changed.
        """
        changed = []
        for appid, fields in metadata_apps.items():
            app = self.apps.get(appid)
            if app is None:
                continue
            if apply_curated_fields(app, fields):
                changed.append(appid)
        return sorted(changed)

    def to_dict(self):
        apps = collections.OrderedDict()
        for appid, app in self.items():
            d = collections.OrderedDict()
            for field, value in app.curated().items():
                d[field] = value
            d['releases'] = [release_to_dict(r) for r in app.sorted_releases()]
            apps[appid] = d
        return collections.OrderedDict([('formatVersion', FORMAT_VERSION), ('apps', apps)])

    @classmethod
    def from_dict(cls, data, path=None):
        if not isinstance(data, dict):
            raise PersistenceError(
                _('{path} is not "key: value" dict, but a {datatype}!')
                .format(path=path, datatype=type(data).__name__),
                path=path,
            )
        if data.get('formatVersion') != FORMAT_VERSION:
            raise PersistenceError(
                _('{path} has unsupported formatVersion {version}')
                .format(path=path, version=data.get('formatVersion')),
                path=path,
            )
        apps = data.get('apps')
        if not isinstance(apps, dict):
            raise PersistenceError(_('{path} has no apps').format(path=path), path=path)

        index = cls()
        for appid, appdict in apps.items():
            index.add(app_from_dict(appid, appdict, path))
        return index


def release_to_dict(release):
    d = collections.OrderedDict()
    for k in RELEASE_FIELDS:
        v = release.get(k)
        if k in SET_FIELDS:
            v = sorted(v or [])
        elif k == 'added' and v is not None:
            v = common.datetime_to_millis(v)
        d[k] = v
    return d


def release_from_dict(data, appid, path=None):
    if not isinstance(data, dict):
        raise PersistenceError(
            _('{appid} in {path} has a release that is not a dict').format(appid=appid, path=path),
            path=path,
        )
    release = Release()
    for k, types in RELEASE_FIELDS.items():
        v = data.get(k)
        if not isinstance(v, types) or isinstance(v, bool):
            raise PersistenceError(
                _('{appid} in {path} has an invalid value for {field}: {value}')
                .format(appid=appid, path=path, field=k, value=repr(v)),
                path=path,
            )
        if k in SET_FIELDS:
            v = set(v)
        elif k == 'added':
            v = common.millis_to_datetime(v)
        release[k] = v
    if not release.signer:
        raise PersistenceError(
            _('{appid} in {path} has a release without signer').format(appid=appid, path=path),
            path=path,
        )
    return release


def app_from_dict(appid, data, path=None):
    if not isinstance(data, dict):
        raise PersistenceError(
            _('{appid} in {path} is not a dict').format(appid=appid, path=path), path=path
        )
    app = App()
    app.id = appid
    for field in curated_fields:
        if field not in data:
            continue
        value = data[field]
        if fieldtype(field) == TYPE_LIST:
            if not isinstance(value, list):
                raise PersistenceError(
                    _('{appid} in {path} has an invalid value for {field}: {value}')
                    .format(appid=appid, path=path, field=field, value=repr(value)),
                    path=path,
                )
        elif value is not None and not isinstance(value, str):
            raise PersistenceError(
                _('{appid} in {path} has an invalid value for {field}: {value}')
                .format(appid=appid, path=path, field=field, value=repr(value)),
                path=path,
            )
        app[field] = value

    releases = data.get('releases')
    if not isinstance(releases, list) or not releases:
        raise PersistenceError(
            _('{appid} in {path} has no releases').format(appid=appid, path=path), path=path
        )
    for releasedict in releases:
        release = release_from_dict(releasedict, appid, path)
        if release.versionCode in app.releases:
            raise PersistenceError(
                _('{appid} in {path} has versionCode {versionCode} more than once')
                .format(appid=appid, path=path, versionCode=release.versionCode),
                path=path,
            )
        app.releases[release.versionCode] = release
    app.update_timestamps()
    return app


def load(path):
    """Load the index from path, an empty index if there is no file yet.

    Raises
    ------
    PersistenceError
        if the file exists but cannot be read or parsed.
    """
    path = str(path)
    if not os.path.exists(path):
        logging.debug(_('No index found at {path}, starting empty').format(path=path))
        return RepoIndex()
    try:
        with open(path, encoding='utf-8') as fp:
            data = json.load(fp)
    except (OSError, ValueError) as e:
        raise PersistenceError(
            _('Could not read repository index file {path}!').format(path=path),
            detail=str(e),
            path=path,
        ) from e
    return RepoIndex.from_dict(data, path)


def save(index, path):
    """Write the index to path atomically.

    The data goes to a temporary file in the same directory first,
    which then replaces path, so there is never a partially written
    index on disk.
    """
    path = str(path)
    dirname = os.path.dirname(os.path.abspath(path))
    fd, tmppath = tempfile.mkstemp(prefix='.' + os.path.basename(path) + '.', suffix='.tmp', dir=dirname)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as fp:
            json.dump(index.to_dict(), fp, cls=common.Encoder, indent=2, sort_keys=True)
            fp.write('\n')
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(tmppath, path)
    except BaseException:
        if os.path.exists(tmppath):
            os.remove(tmppath)
        raise
    logging.debug(_('Wrote {path}').format(path=path))


def read_published_index(repodir):
    """Read the apps from the index-v1.json written by "fdroid update".

    Returns
    -------
    A list of app dicts as in index-v1.json, each with an added
    "packages" list of its APK entries.
    """
    index_file = os.path.join(repodir, 'index-v1.json')
    if not os.path.exists(index_file):
        # if no index file exists, no apps exist
        return []
    try:
        with open(index_file, encoding='utf-8') as fp:
            data = json.load(fp)
    except (OSError, ValueError) as e:
        raise PersistenceError(
            _('Could not read repository index file {path}!').format(path=index_file),
            detail=str(e),
            path=index_file,
        ) from e
    if not isinstance(data, dict) or not isinstance(data.get('apps'), list) \
       or not isinstance(data.get('packages', {}), dict):
        raise PersistenceError(
            _('Could not map repository index file {path}!').format(path=index_file),
            path=index_file,
        )

    apps = []
    packages = data.get('packages', {})
    for appdict in data['apps']:
        if not isinstance(appdict, dict) or 'packageName' not in appdict:
            raise PersistenceError(
                _('Could not map repository index file {path}!').format(path=index_file),
                path=index_file,
            )
        app = collections.OrderedDict(appdict)
        app['packages'] = list(packages.get(appdict['packageName'], []))
        apps.append(app)
    return apps
