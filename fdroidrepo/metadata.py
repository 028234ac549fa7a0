#!/usr/bin/env python3
#
# metadata.py - part of fdroidrepo
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

import logging
from collections import OrderedDict
from pathlib import Path

import ruamel.yaml

from . import _
from . import common
from ._yaml import yaml, yaml_dumper
from .exception import MetaDataException

warnings_action = None


def _warn_or_exception(value, cause=None):
    """Output warning or Exception depending on warnings_action."""
    if warnings_action == 'ignore':
        pass
    elif warnings_action == 'error':
        if cause:
            raise MetaDataException(value) from cause
        else:
            raise MetaDataException(value)
    else:
        logging.warning(value)


# fields written by humans, extraction may fill them only while unset
curated_fields = (
    'Categories',
    'License',
    'WebSite',
    'SourceCode',
    'IssueTracker',
    'Translation',
    'Changelog',
    'Donate',
    'Name',
    'Summary',
    'Description',
)

yaml_app_field_order = [
    'Categories',
    'License',
    'WebSite',
    'SourceCode',
    'IssueTracker',
    'Translation',
    'Changelog',
    'Donate',
    '\n',
    'Name',
    'Summary',
    'Description',
    '\n',
    'AllowedAPKSigningKeys',
]

TYPE_STRING = 2
TYPE_LIST = 4
TYPE_MULTILINE = 6

fieldtypes = {
    'Description': TYPE_MULTILINE,
    'Categories': TYPE_LIST,
    'AllowedAPKSigningKeys': TYPE_LIST,
}


def fieldtype(name):
    if name in fieldtypes:
        return fieldtypes[name]
    return TYPE_STRING


def is_unset(value):
    return value is None or value == '' or value == [] or value == dict()


def apply_curated_fields(app, fields):
    """Set the curated fields from a metadata file on app.

    Unset values in fields are skipped, they never clear a field.

    Returns
    -------
    True if app was changed.
    """
    changed = False
    for field, value in fields.items():
        if is_unset(value):
            continue
        if app.get(field) != value:
            logging.info(_("Using {field} of {appid} from its metadata file")
                         .format(field=field, appid=app.id))
            app[field] = value
            changed = True
    return changed


class App(dict):
    """One application in the repository index.

    The capitalized keys are the curated fields, named like in F-Droid
    metadata files.  releases maps versionCode to Release.
    """

    def __init__(self, copydict=None):
        if copydict:
            super().__init__(copydict)
            return
        super().__init__()

        self.id = None
        for field in curated_fields:
            if fieldtype(field) == TYPE_LIST:
                self[field] = []
            else:
                self[field] = None
        self.releases = dict()
        self.added = None
        self.lastUpdated = None

    def __getattr__(self, name):
        if name in self:
            return self[name]
        else:
            raise AttributeError("No such attribute: " + name)

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        if name in self:
            del self[name]
        else:
            raise AttributeError("No such attribute: " + name)

    def sorted_releases(self):
        """Return the releases newest first."""
        return [self.releases[vc] for vc in sorted(self.releases, reverse=True)]

    def latest_release(self):
        if not self.releases:
            return None
        return self.releases[max(self.releases)]

    def signer(self):
        """Return the signer set shared by all releases, or None."""
        latest = self.latest_release()
        if latest is None:
            return None
        return set(latest.signer)

    def curated(self):
        """Return the curated fields that are set."""
        return OrderedDict(
            (f, self.get(f)) for f in curated_fields if not is_unset(self.get(f))
        )

    def update_timestamps(self):
        """Set added/lastUpdated from the oldest and newest release."""
        dates = [r.added for r in self.releases.values() if r.get('added')]
        if dates:
            self.added = min(dates)
            self.lastUpdated = max(dates)
        else:
            self.added = None
            self.lastUpdated = None


class Release(dict):
    """One installable build of an App, backed by one APK file."""

    def __init__(self, copydict=None):
        if copydict:
            super().__init__(copydict)
            return
        super().__init__()

        self.versionCode = None
        self.versionName = ''
        self.apkName = None
        self.hash = None
        self.hashType = 'sha256'
        self.size = None
        self.minSdkVersion = None
        self.targetSdkVersion = None
        self.maxSdkVersion = None
        self.permissions = set()
        self.nativecode = set()
        self.signer = set()
        self.added = None

    def __getattr__(self, name):
        if name in self:
            return self[name]
        else:
            raise AttributeError("No such attribute: " + name)

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        if name in self:
            del self[name]
        else:
            raise AttributeError("No such attribute: " + name)


def _normalize_type_string(v):
    """Normalize any data to TYPE_STRING.

    YAML 1.2's booleans are all lowercase.  Things like versionName
    might be a float, so str() keeps the representation.
    """
    if isinstance(v, bool):
        if v:
            return 'true'
        return 'false'
    return str(v)


def _normalize_type_list(k, v):
    """Normalize any data to TYPE_LIST, which is always a list of strings."""
    if isinstance(v, dict):
        msg = _('{build_flag} must be list or string, found: {value}')
        _warn_or_exception(msg.format(build_flag=k, value=v))
        return []
    elif type(v) not in (list, tuple, set):
        v = [v]
    return [_normalize_type_string(i) for i in v if i is not None]


def post_parse_yaml_metadata(yamldata):
    """Convert human-readable metadata data structures into consistent data structures."""
    for k, v in yamldata.items():
        _fieldtype = fieldtype(k)
        if v is None:
            continue
        if _fieldtype == TYPE_LIST:
            yamldata[k] = _normalize_type_list(k, v)
        else:
            yamldata[k] = _normalize_type_string(v)


def parse_yaml_metadata(mf):
    """Parse a metadata .yml file and return the curated fields.

    Metadata files from a full F-Droid data repository contain many
    more fields, e.g. Builds:, those are left alone.

    """
    try:
        yamldata = yaml.load(mf)
    except ruamel.yaml.YAMLError as e:
        _warn_or_exception(
            _("could not parse '{path}'").format(path=mf.name) + '\n' + str(e),
            cause=e,
        )
        yamldata = dict()

    if yamldata is None or yamldata == '':
        yamldata = dict()
    if not isinstance(yamldata, dict):
        _warn_or_exception(
            _("'{path}' has invalid format, it should be a dictionary!").format(
                path=mf.name
            )
        )
        logging.error(_('Using blank dictionary instead of contents of {path}!').format(
            path=mf.name)
        )
        yamldata = dict()

    curated = OrderedDict()
    for field in yaml_app_field_order:
        if field in yamldata and field in curated_fields:
            curated[field] = yamldata[field]
    ignored = sorted(k for k in yamldata if k not in curated_fields)
    if ignored:
        logging.debug(_("Ignoring fields in '{path}': {fields}")
                      .format(path=mf.name, fields=', '.join(str(k) for k in ignored)))

    post_parse_yaml_metadata(curated)
    return curated


def read_metadata(metadatadir):
    """Read all metadata files in metadatadir.

    Returns
    -------
    An OrderedDict of appid -> curated fields, sorted by appid.
    """
    apps = OrderedDict()
    metadatadir = Path(metadatadir)
    if not metadatadir.is_dir():
        return apps

    for metadatapath in sorted(metadatadir.glob('*.yml')):
        appid = metadatapath.stem
        if not common.is_valid_package_name(appid):
            _warn_or_exception(
                _("{appid} from {path} is not a valid Java Package Name!").format(
                    appid=appid, path=metadatapath
                )
            )
            continue
        with metadatapath.open('r', encoding='utf-8') as mf:
            apps[appid] = parse_yaml_metadata(mf)

    return apps


def _format_multiline(value):
    """TYPE_MULTILINE with newlines in them are saved as YAML literal strings."""
    if '\n' in value:
        return ruamel.yaml.scalarstring.preserve_literal(str(value))
    return str(value)


def _app_to_yaml(app):
    cm = ruamel.yaml.comments.CommentedMap()
    insert_newline = False
    for field in yaml_app_field_order:
        if field == '\n':
            # next iteration will need to insert a newline
            insert_newline = True
            continue
        if field == 'AllowedAPKSigningKeys':
            value = sorted(app.signer() or [])
        else:
            value = app.get(field)
        if is_unset(value):
            continue
        if field == 'Categories':
            cm[field] = sorted(value, key=str.lower)
        elif field == 'AllowedAPKSigningKeys':
            value = [str(i).lower() for i in value]
            if len(value) == 1:
                cm[field] = value[0]
            else:
                cm[field] = value
        elif fieldtype(field) == TYPE_MULTILINE:
            cm[field] = _format_multiline(value)
        else:
            cm[field] = value

        if insert_newline:
            insert_newline = False
            # inserting empty lines is not supported so we add a
            # bogus comment and over-write its value
            cm.yaml_set_comment_before_after_key(field, 'bogus')
            cm.ca.items[field][1][-1].value = '\n'
    return cm


def write_yaml(mf, app):
    """Write metadata in yaml format.

    Parameters
    ----------
    mf
      active file discriptor for writing
    app
      app metadata to written to the yaml file

    """
    yaml_dumper.dump(_app_to_yaml(app), stream=mf)


def write_metadata(metadatapath, app):
    metadatapath = Path(metadatapath)
    if metadatapath.suffix == '.yml':
        with metadatapath.open('w', encoding='utf-8') as mf:
            return write_yaml(mf, app)

    _warn_or_exception(_('Unknown metadata format: %s') % metadatapath)


def create_metadata_from_template(metadatadir, app):
    """Create a skeleton metadata file for an app that has none.

    Existing files are never touched, they belong to the maintainer.

    Returns
    -------
    True if a file was written.
    """
    metadatapath = Path(metadatadir) / (app.id + '.yml')
    if metadatapath.exists():
        return False
    metadatapath.parent.mkdir(parents=True, exist_ok=True)
    if is_unset(app.get('Name')):
        logging.warning(_('{appid} does not have a name!').format(appid=app.id))
    write_metadata(metadatapath, app)
    logging.info(_("Generated skeleton metadata for {appid}").format(appid=app.id))
    return True
