#!/usr/bin/env python3
#
# update.py - part of fdroidrepo
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

import collections
import glob
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone

from . import _
from . import common
from .exception import ConflictError, ExtractionError
from .metadata import App, apply_curated_fields, is_unset

ScannedPackage = collections.namedtuple('ScannedPackage', ['path', 'hash', 'size'])


class ChangeReport:
    """What a reconcile changed, plus the files it had to leave out."""

    def __init__(self):
        self.added_releases = 0
        self.updated_releases = 0
        self.removed_releases = 0
        self.added_apps = 0
        self.updated_apps = 0
        self.removed_apps = 0
        self.skipped = []
        self.conflicts = []
        # appids whose curated fields were changed in their metadata file
        self.edited_apps = []

    def has_changes(self):
        return any((
            self.added_releases,
            self.updated_releases,
            self.removed_releases,
            self.added_apps,
            self.updated_apps,
            self.removed_apps,
            self.edited_apps,
        ))

    def summary(self):
        return _(
            '{added} added, {updated} updated, {removed} removed releases; '
            '{added_apps} added, {updated_apps} updated, {removed_apps} removed apps; '
            '{skipped} skipped, {conflicts} conflicts'
        ).format(
            added=self.added_releases,
            updated=self.updated_releases,
            removed=self.removed_releases,
            added_apps=self.added_apps,
            updated_apps=self.updated_apps,
            removed_apps=self.removed_apps,
            skipped=len(self.skipped),
            conflicts=len(self.conflicts),
        )

    def __str__(self):
        lines = [self.summary()]
        for e in self.skipped:
            lines.append(_('skipped {path}: {error}').format(path=e.path, error=e.value))
        for e in self.conflicts:
            lines.append(_('conflict {path}: {error}').format(path=e.path, error=e.value))
        return '\n'.join(lines)


def scan_repo(repodir):
    """List the APKs in repodir with their SHA-256 and size.

    Returns
    -------
    A list of ScannedPackage, sorted by path.
    """
    scanned = []
    for apkfile in sorted(glob.glob(os.path.join(str(repodir), '*.apk'))):
        if not os.path.isfile(apkfile):
            continue
        size = os.path.getsize(apkfile)
        if size == 0:
            logging.warning(_('{path} is zero size!').format(path=apkfile))
            continue
        scanned.append(ScannedPackage(apkfile, common.sha256sum(apkfile), size))
    return scanned


def extract_packages(extractor, packages, workers=None):
    """Run the extractor on all packages in parallel.

    ExtractionErrors are collected, any other error cancels the
    extractions that did not start yet and gets raised.

    Returns
    -------
    (results, skipped) where results is a list of
    (ScannedPackage, ExtractedPackage) in completion order and skipped
    a list of ExtractionError.
    """
    results = []
    skipped = []
    if not packages:
        return results, skipped
    if workers is None:
        workers = os.cpu_count() or 1

    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        future_to_package = {
            executor.submit(extractor.extract, package.path): package
            for package in packages
        }
        for future in as_completed(future_to_package):
            package = future_to_package[future]
            try:
                extracted = future.result()
            except ExtractionError as e:
                if e.path is None:
                    e.path = package.path
                logging.warning(_("Skipping '{apkfilename}': {error}")
                                .format(apkfilename=package.path, error=e.value))
                skipped.append(e)
                continue
            results.append((package, extracted))
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
    return results, skipped


def _conflict(report, package, appid, msg):
    logging.warning(msg)
    report.conflicts.append(ConflictError(msg, path=package.path, appid=appid))


def reconcile(previous_index, scanned_packages, extractor, workers=None, now=None,
              metadata_apps=None):
    """Compute the next index from the previous one and the current files.

    previous_index is not modified.  Files whose hash and size match a
    known release are not extracted again.  Releases whose file is gone
    are removed, and so are apps that have no release left.  Extracted
    releases are merged sorted by (versionCode, path) so that the
    result does not depend on the order the extractions finish in.

    Curated fields are kept as they are.  A new app gets its curated
    fields from metadata_apps when there is an entry for it.  Only an
    unset Name is filled from the label of the newest release added in
    this run.

    Parameters
    ----------
    previous_index
      RepoIndex from the last cycle
    scanned_packages
      iterable of ScannedPackage for all APKs in the repo
    extractor
      object with an extract(path) method returning ExtractedPackage
    workers
      maximum number of extractions running at the same time
    now
      the added date for new releases, defaults to the current time
    metadata_apps
      dict of appid to curated fields read from the metadata files

    Returns
    -------
    (next_index, ChangeReport)
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if metadata_apps is None:
        metadata_apps = dict()
    # the index stores milliseconds
    now = now.replace(microsecond=now.microsecond // 1000 * 1000)

    report = ChangeReport()
    next_index = previous_index.copy()
    known = previous_index.releases_by_hash()
    touched = set()

    by_hash = collections.OrderedDict()
    for package in sorted(scanned_packages, key=lambda p: str(p.path)):
        by_hash.setdefault(package.hash, []).append(package)

    claimed = set()
    to_extract = []
    for shasum, packages in by_hash.items():
        match = known.get(shasum)
        release = None
        if match:
            appid, versionCode = match
            release = next_index[appid].releases[versionCode]
        if release is not None and packages[0].size == release.size:
            # prefer the file that already backs the release
            chosen = packages[0]
            for package in packages:
                if os.path.basename(package.path) == release.apkName:
                    chosen = package
                    break
            claimed.add(shasum)
            apkName = os.path.basename(chosen.path)
            if release.apkName != apkName:
                logging.info(_('{old} was renamed to {new}').format(old=release.apkName, new=apkName))
                release.apkName = apkName
                report.updated_releases += 1
                touched.add(appid)
            else:
                logging.debug(_("Reading {apkfilename} from cache").format(apkfilename=apkName))
        else:
            appid = None
            chosen = packages[0]
            to_extract.append(chosen)
        for package in packages:
            if package is not chosen:
                _conflict(report, package, appid,
                          _('{path} is a duplicate of {other}, ignoring it')
                          .format(path=package.path, other=chosen.path))

    # releases whose file is gone, kept aside to detect replaced files
    removed = dict()
    for appid, app in next_index.items():
        for versionCode in sorted(app.releases):
            release = app.releases[versionCode]
            if release.hash not in claimed:
                logging.info(_('{apkfilename} of {appid} is gone, removing it')
                             .format(apkfilename=release.apkName, appid=appid))
                removed[(appid, versionCode)] = app.releases.pop(versionCode)
                touched.add(appid)

    results, report.skipped = extract_packages(extractor, to_extract, workers)
    results.sort(key=lambda r: (r[1].release.versionCode, str(r[0].path)))

    labels = dict()
    for package, extracted in results:
        appid = extracted.appid
        release = extracted.release
        versionCode = release.versionCode
        release.hash = package.hash
        release.size = package.size
        release.apkName = os.path.basename(package.path)

        app = next_index.get(appid)
        if app is not None:
            existing = app.releases.get(versionCode)
            if existing is not None:
                _conflict(report, package, appid,
                          _('{path}: versionCode {versionCode} of {appid} is already in {other}'
                            ' with different contents')
                          .format(path=package.path, versionCode=versionCode,
                                  appid=appid, other=existing.apkName))
                continue
            signer = app.signer()
            if signer is not None and signer != release.signer:
                _conflict(report, package, appid,
                          _('{path}: signer of {appid} does not match the existing releases')
                          .format(path=package.path, appid=appid))
                continue

        replaced = removed.get((appid, versionCode))
        if replaced is not None:
            if replaced.signer != release.signer:
                _conflict(report, package, appid,
                          _('{path}: signer of {appid} does not match the replaced release')
                          .format(path=package.path, appid=appid))
                continue
            del removed[(appid, versionCode)]
            logging.info(_('{apkfilename} replaces {old} for {appid} {versionCode}')
                         .format(apkfilename=release.apkName, old=replaced.apkName,
                                 appid=appid, versionCode=versionCode))
            release.added = replaced.added
            report.updated_releases += 1
        else:
            logging.info(_('Adding {apkfilename} as {appid} {versionCode}')
                         .format(apkfilename=release.apkName, appid=appid, versionCode=versionCode))
            release.added = now
            report.added_releases += 1

        if app is None:
            app = App()
            app.id = appid
            if appid in metadata_apps:
                apply_curated_fields(app, metadata_apps[appid])
            next_index.add(app)
        app.releases[versionCode] = release
        touched.add(appid)
        if extracted.label and (appid not in labels or labels[appid][0] < versionCode):
            labels[appid] = (versionCode, extracted.label)

    report.removed_releases = len(removed)

    for appid, (versionCode, label) in sorted(labels.items()):
        app = next_index[appid]
        if is_unset(app.get('Name')):
            logging.info(_('Using name "{name}" from the APK for {appid}').format(name=label, appid=appid))
            app.Name = label

    for appid in sorted(touched):
        app = next_index[appid]
        if not app.releases:
            logging.info(_('{appid} has no releases left, removing it').format(appid=appid))
            next_index.remove(appid)
            report.removed_apps += 1
            continue
        app.update_timestamps()
        if appid in previous_index:
            report.updated_apps += 1
        else:
            report.added_apps += 1

    report.skipped.sort(key=lambda e: str(e.path))
    return next_index, report
