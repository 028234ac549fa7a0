#!/usr/bin/env python3
#
# extract.py - part of fdroidrepo
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

"""Get the metadata of an APK file out of aapt.

aapt from the Android SDK build-tools does the actual parsing of the
binary manifest.  Its "dump badging" output is a list of lines like
"key:'value'" or "key: name='value' other='value'", which are mapped
onto a Release here.  aapt does not report signing certificates, so
those are read from the APK Signing Block and the JAR signature files.

"""

import collections
import logging
import os
import re

from . import _
from . import common
from .exception import ExtractionError
from .metadata import Release

APK_NAME_PAT = re.compile(r".*\Wname='([a-zA-Z0-9._]*)'.*")
APK_VERCODE_PAT = re.compile(".*versionCode='([0-9]*)'.*")
APK_VERNAME_PAT = re.compile(".*versionName='([^']*)'.*")
APK_LABEL_PAT = re.compile(r"^application-label:'(.*)'$")
APK_SDK_VERSION_PAT = re.compile(".*'([0-9]*)'.*")
APK_PERMISSION_PAT = re.compile(r".*name='([^']*)'(?:.*maxSdkVersion='([^']*)')?.*")
APK_NATIVE_CODE_PAT = re.compile(r"'([^']+)'")

# aapt defaults to 3 as the min
DEFAULT_MIN_SDK_VERSION = 3

ExtractedPackage = collections.namedtuple('ExtractedPackage', ['appid', 'release', 'label', 'path'])


def canonical_permissions(permissions):
    """Deduplicate permission names case-insensitively.

    Android permission names are case sensitive on the device, so the
    first spelling that was seen is kept.
    """
    seen = dict()
    for name in permissions:
        name = name.strip()
        if not name:
            continue
        key = name.casefold()
        if key not in seen:
            seen[key] = name
    return set(seen.values())


def _parse_sdk_version(line):
    m = APK_SDK_VERSION_PAT.match(line)
    if m and m.group(1):
        return int(m.group(1))
    return None


def parse_aapt_badging(output):
    """Parse the output of "aapt dump badging" into a plain dict.

    Raises
    ------
    ValueError
        if there is no package line with a name and versionCode.

    Returns
    -------
    A dict with packageName, versionCode, versionName, minSdkVersion,
    targetSdkVersion, maxSdkVersion, permissions, nativecode and name.
    """
    apk = {
        'packageName': None,
        'versionCode': None,
        'versionName': '',
        'minSdkVersion': None,
        'targetSdkVersion': None,
        'maxSdkVersion': None,
        'permissions': [],
        'nativecode': [],
        'name': None,
    }
    for line in output.splitlines():
        if line.startswith("package:"):
            m = APK_NAME_PAT.match(line)
            if m:
                apk['packageName'] = m.group(1)
            m = APK_VERCODE_PAT.match(line)
            if m and m.group(1):
                apk['versionCode'] = int(m.group(1))
            m = APK_VERNAME_PAT.match(line)
            if m:
                apk['versionName'] = m.group(1)
        elif line.startswith("application-label:"):
            m = APK_LABEL_PAT.match(line)
            if m:
                apk['name'] = m.group(1)
        elif line.startswith("sdkVersion:"):
            apk['minSdkVersion'] = _parse_sdk_version(line)
        elif line.startswith("targetSdkVersion:"):
            apk['targetSdkVersion'] = _parse_sdk_version(line)
        elif line.startswith("maxSdkVersion:"):
            apk['maxSdkVersion'] = _parse_sdk_version(line)
        elif line.startswith("native-code:") or line.startswith("alt-native-code:"):
            for arch in APK_NATIVE_CODE_PAT.findall(line.split(':', 1)[1]):
                if arch not in apk['nativecode']:
                    apk['nativecode'].append(arch)
        elif line.startswith("uses-permission:") or line.startswith("uses-permission-sdk-23:"):
            m = APK_PERMISSION_PAT.match(line)
            if m and m.group(1):
                apk['permissions'].append(m.group(1))

    if not apk['packageName'] or apk['versionCode'] is None:
        raise ValueError(_("No package name and versionCode in aapt output"))
    return apk


class AaptExtractor:
    """Extract Release data from APKs by running aapt.

    Each call of extract() runs exactly one aapt process and keeps no
    state between calls besides the path to aapt, so calls for
    different files can run in parallel.
    """

    def __init__(self, config=None, aapt=None):
        if config is None:
            config = dict()
            common.fill_config_defaults(config)
        self.config = config
        self._aapt = aapt

    @property
    def aapt(self):
        if self._aapt is None:
            self._aapt = common.find_sdk_tools_cmd('aapt', self.config)
        return self._aapt

    def extract(self, apk_path):
        """Extract the application id and Release from an APK.

        Raises
        ------
        ExtractionError
            when the APK cannot be parsed.
        ToolUnavailableError
            when aapt cannot be found or executed.

        Returns
        -------
        An ExtractedPackage.
        """
        apk_path = str(apk_path)
        if not os.path.isfile(apk_path):
            raise ExtractionError(
                _("The provided path is not a file: {path}").format(path=apk_path), path=apk_path
            )

        logging.debug(_("Processing {apkfilename}").format(apkfilename=apk_path))
        p = common.FDroidPopen([self.aapt, 'dump', 'badging', apk_path])
        if p.returncode != 0:
            raise ExtractionError(
                _("aapt could not parse {path}").format(path=apk_path),
                detail=p.output,
                path=apk_path,
            )
        try:
            info = parse_aapt_badging(p.output)
        except ValueError as e:
            raise ExtractionError(
                _("Reading packageName/versionCode/versionName failed, APK invalid: '{apkfilename}'")
                .format(apkfilename=apk_path),
                detail=p.output,
                path=apk_path,
            ) from e

        appid = info['packageName']
        if not common.is_valid_package_name(appid):
            raise ExtractionError(
                _("{appid} from {path} is not a valid Java Package Name!").format(appid=appid, path=apk_path),
                path=apk_path,
            )
        elif not common.is_strict_application_id(appid):
            logging.warning(_("{appid} from {path} is not a valid Android application ID!")
                            .format(appid=appid, path=apk_path))

        logging.debug('Getting signature of {0}'.format(os.path.basename(apk_path)))
        try:
            signer = common.get_signer_fingerprints(apk_path)
        except ExtractionError:
            raise
        except Exception as e:
            # androguard and asn1crypto raise all sorts of errors on broken files
            raise ExtractionError(
                _("Could not read the signatures of {path}").format(path=apk_path),
                detail=str(e),
                path=apk_path,
            ) from e
        if not signer:
            raise ExtractionError(_("Failed to get APK signing key fingerprint"), path=apk_path)

        if info['minSdkVersion'] is None:
            logging.warning(_("No minimum SDK version found in {0}, using default (3).").format(apk_path))
            info['minSdkVersion'] = DEFAULT_MIN_SDK_VERSION
        if info['targetSdkVersion'] is None:
            info['targetSdkVersion'] = info['minSdkVersion']

        release = Release()
        release.versionCode = info['versionCode']
        release.versionName = info['versionName']
        release.apkName = os.path.basename(apk_path)
        release.hash = common.sha256sum(apk_path)
        release.size = os.path.getsize(apk_path)
        release.minSdkVersion = info['minSdkVersion']
        release.targetSdkVersion = info['targetSdkVersion']
        release.maxSdkVersion = info['maxSdkVersion']
        release.permissions = canonical_permissions(info['permissions'])
        release.nativecode = set(info['nativecode'])
        release.signer = signer

        return ExtractedPackage(appid, release, info['name'], apk_path)
