#!/usr/bin/env python3
#
# common.py - part of fdroidrepo
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

# common.py is imported by all modules, so do not import heavy
# third-party libraries at module level here.

import glob
import hashlib
import json
import logging
import os
import re
import stat
import subprocess
import sys
import zipfile
import yaml
from datetime import datetime, timedelta, timezone

from asn1crypto import cms

from fdroidrepo import _
from fdroidrepo.exception import (ExtractionError, FDroidRepoException,
                                  MetaDataException, ToolUnavailableError)


CONFIG_FILE = 'config.yml'

SIGNATURE_BLOCK_FILE_REGEX = re.compile(r'^META-INF/.*\.(DSA|EC|RSA)$')
FDROID_PACKAGE_NAME_REGEX = re.compile(r'''^[a-f0-9]+$''', re.IGNORECASE)
STRICT_APPLICATION_ID_REGEX = re.compile(r'''(?:^[a-zA-Z]+(?:\d*[a-zA-Z_]*)*)(?:\.[a-zA-Z]+(?:\d*[a-zA-Z_]*)*)+$''')
VALID_APPLICATION_ID_REGEX = re.compile(r'''(?:^[a-z_]+(?:\d*[a-zA-Z_]*)*)(?:\.[a-z_]+(?:\d*[a-zA-Z_]*)*)*$''',
                                        re.IGNORECASE)

# All paths in the config must be strings, never pathlib.Path instances
default_config = {
    'sdk_path': "$ANDROID_HOME",
    'keystore': 'keystore.p12',
    'repo_url': "https://MyFirstFDroidRepo.org/fdroid/repo",
    'repo_name': "My First F-Droid Repo Demo",
    'repo_icon': "icon.png",
    'repo_description': _("""This is a repository of apps to be used with F-Droid."""),  # type: ignore
    'archive_name': 'My First F-Droid Archive Demo',
    'archive_description': _('These are the apps that have been archived from the main repo.'),  # type: ignore
    'archive_older': 0,
    'extract_workers': None,
    'lock_timeout': 60,
}

# the parts of config.yml that are safe to show and edit, everything
# else (keystore, passwords, SDK paths) stays private
PUBLIC_CONFIG_KEYS = (
    'repo_url',
    'repo_name',
    'repo_icon',
    'repo_description',
    'archive_url',
    'archive_name',
    'archive_icon',
    'archive_description',
    'archive_older',
)


class ColorFormatter(logging.Formatter):

    def __init__(self, msg):
        logging.Formatter.__init__(self, msg)

        bright_black = "\x1b[90;20m"
        yellow = "\x1b[33;20m"
        red = "\x1b[31;20m"
        bold_red = "\x1b[31;1m"
        reset = "\x1b[0m"

        self.FORMATS = {
            logging.DEBUG: bright_black + msg + reset,
            logging.INFO: reset + msg + reset,  # use default color
            logging.WARNING: yellow + msg + reset,
            logging.ERROR: red + msg + reset,
            logging.CRITICAL: bold_red + msg + reset
        }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def set_console_logging(verbose=False, color=False):
    """Globally set logging to output nicely to the console."""

    class _StdOutFilter(logging.Filter):
        def filter(self, record):
            return record.levelno < logging.ERROR

    if verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    if color or (color is None and sys.stdout.isatty()):
        formatter = ColorFormatter
    else:
        formatter = logging.Formatter

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_StdOutFilter())
    stdout_handler.setFormatter(formatter('%(message)s'))

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter(_('ERROR: %(message)s')))

    logging.basicConfig(
        force=True, level=level, handlers=[stdout_handler, stderr_handler]
    )


def fill_config_defaults(thisconfig):
    """Fill in the config dict with relevant defaults.

    For config values that have a path that can be expanded, e.g. an
    env var or a ~/, this will store the original value using "_orig"
    appended to the key name so that if the config gets written out,
    it will preserve the original, unexpanded string.

    """
    for k, v in default_config.items():
        if k not in thisconfig:
            if isinstance(v, dict) or isinstance(v, list):
                thisconfig[k] = v.copy()
            else:
                thisconfig[k] = v

    # Expand paths (~users and $vars)
    def expand_path(path):
        if path is None:
            return None
        orig = path
        path = os.path.expanduser(path)
        path = os.path.expandvars(path)
        if orig == path:
            return None
        return path

    for k in ['sdk_path', 'keystore']:
        v = thisconfig[k]
        exp = expand_path(v)
        if exp is not None:
            thisconfig[k] = exp
            thisconfig[k + '_orig'] = v


def config_type_check(path, data):
    if not isinstance(data, dict):
        msg = _('{path} is not "key: value" dict, but a {datatype}!')
        raise TypeError(msg.format(path=path, datatype=type(data).__name__))


def load_config_file(config_file):
    """Parse config.yml as it is, without defaults, {} when missing."""
    config = {}
    if not os.path.exists(config_file):
        return config

    logging.debug(_("Reading '{config_file}'").format(config_file=config_file))
    try:
        with open(config_file, encoding='utf-8') as fp:
            config = yaml.safe_load(fp)
    except yaml.YAMLError as e:
        raise MetaDataException(
            _("could not parse '{path}'").format(path=config_file) + '\n' + str(e)
        ) from e
    if not config:
        config = {}
    try:
        config_type_check(config_file, config)
    except TypeError as e:
        raise MetaDataException(str(e)) from e

    if any(k in config for k in ["keystore", "keystorepass", "keypass"]):
        st = os.stat(config_file)
        if st.st_mode & stat.S_IRWXG or st.st_mode & stat.S_IRWXO:
            logging.warning(_("unsafe permissions on '{config_file}' (should be 0600)!")
                            .format(config_file=config_file))
    return config


def read_config(config_file=CONFIG_FILE):
    """Read the repository config from config.yml.

    config.yml requires ASCII or UTF-8 encoding because this code does
    not auto-detect the file's encoding.  A missing file gives the
    defaults.  The config is returned rather than stored globally so
    that several repositories can be handled in one process.

    """
    config = load_config_file(config_file)

    confignames_to_delete = set()
    for configname, dictvalue in config.items():
        if isinstance(dictvalue, dict):
            for k, v in dictvalue.items():
                if k == 'env':
                    env = os.getenv(v)
                    if env:
                        config[configname] = env
                    else:
                        confignames_to_delete.add(configname)
                        logging.error(_('Environment variable {var} from {configname} is not set!')
                                      .format(var=v, configname=configname))
                else:
                    confignames_to_delete.add(configname)
                    logging.error(_('Unknown entry {key} in {configname}')
                                  .format(key=k, configname=configname))

    for configname in confignames_to_delete:
        del config[configname]

    fill_config_defaults(config)

    if not config['repo_url'].endswith('/repo'):
        raise FDroidRepoException(_('repo_url needs to end with /repo'))

    if 'archive_url' in config:
        if not config['archive_url'].endswith('/archive'):
            raise FDroidRepoException(_('archive_url needs to end with /archive'))

    return config


def write_to_config(config_file, key, value):
    """Write a key/value to config.yml, editing the file in place.

    Other lines, including comments, are kept as they are.  Setting
    value to None removes the key.

    """
    # load config file, create one if it doesn't exist
    if not os.path.exists(config_file):
        open(config_file, 'a').close()
        os.chmod(config_file, 0o600)
        logging.info("Creating empty " + config_file)
    with open(config_file, 'r', encoding='utf-8') as f:
        lines = f.readlines()

    # make sure the file ends with a carraige return
    if len(lines) > 0:
        if not lines[-1].endswith('\n'):
            lines[-1] += '\n'

    pattern = re.compile(r'^[\s#]*' + re.escape(key) + r':.*')
    if value is None:
        repl = ''
    else:
        repl = yaml.dump({key: value}, default_flow_style=False, allow_unicode=True,
                         width=float('inf'))

    # If we replaced this line once, we make sure won't be a
    # second instance of this line for this key in the document.
    didRepl = False
    with open(config_file, 'w', encoding='utf-8') as f:
        i = 0
        while i < len(lines):
            line = lines[i]
            i += 1
            if pattern.match(line):
                if not line.lstrip().startswith('#'):
                    # drop the rest of a value that spans several lines
                    while _continues_value(lines, i, len(line) - len(line.lstrip())):
                        i += 1
                if not didRepl:
                    f.write(repl)
                    didRepl = True
            else:
                f.write(line)
        if not didRepl and value is not None:
            f.write(repl)


def _continues_value(lines, i, indent):
    """Check whether lines[i] still belongs to a value started above it."""
    while i < len(lines) and not lines[i].strip():
        i += 1
    if i >= len(lines):
        return False
    line = lines[i]
    return len(line) - len(line.lstrip()) > indent


def find_command(command):
    """Find the full path of a command, or None if it can't be found in the PATH."""
    def is_exe(fpath):
        return os.path.isfile(fpath) and os.access(fpath, os.X_OK)

    fpath, fname = os.path.split(command)
    if fpath:
        if is_exe(command):
            return command
    else:
        for path in os.environ.get("PATH", "").split(os.pathsep):
            path = path.strip('"')
            exe_file = os.path.join(path, command)
            if is_exe(exe_file):
                return exe_file

    return None


def find_sdk_tools_cmd(cmd, config):
    """Find a working path to a tool from the Android SDK.

    An explicit path in the config wins, then the newest build-tools
    in sdk_path, then the PATH.

    Raises
    ------
    ToolUnavailableError
        if the tool cannot be found anywhere.

    """
    if config.get(cmd):
        path = find_command(config[cmd])
        if path:
            return path
        raise ToolUnavailableError(
            _("'{path}' from config does not exist or is not executable!").format(path=config[cmd]),
            tool=cmd,
        )

    tooldirs = []
    sdk_path = config.get('sdk_path')
    if sdk_path and os.path.exists(sdk_path):
        build_tools = os.path.join(sdk_path, 'build-tools')
        if os.path.isdir(build_tools):
            for f in sorted(glob.glob(os.path.join(build_tools, '*')), reverse=True):
                if os.path.isdir(f):
                    tooldirs.append(f)
    for d in tooldirs:
        path = os.path.join(d, cmd)
        if os.path.isfile(path) and os.access(path, os.X_OK):
            return path

    path = find_command(cmd)
    if path:
        return path
    raise ToolUnavailableError(
        _("Android SDK tool {cmd} not found!").format(cmd=cmd), tool=cmd
    )


class PopenResult:
    def __init__(self, returncode=None, output=None):
        self.returncode = returncode
        self.output = output


def FDroidPopen(commands, cwd=None, envs=None):
    """
    Run a command and capture its output as a str.

    stderr is merged into the output so tool errors end up in
    exception details.

    Parameters
    ----------
    commands
        command and argument list like in subprocess.Popen
    cwd
        optionally specifies a working directory
    envs
        a optional dictionary of environment variables and their values

    Raises
    ------
    ToolUnavailableError
        when the command cannot be executed at all.

    Returns
    -------
    A PopenResult.
    """
    process_env = os.environ.copy()
    if envs:
        process_env.update(envs)

    if cwd:
        cwd = os.path.normpath(cwd)
        logging.debug("Directory: %s" % cwd)
    logging.debug("> %s" % ' '.join(str(c) for c in commands))

    result = PopenResult()
    try:
        p = subprocess.Popen(commands, cwd=cwd, shell=False, env=process_env,
                             stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                             stderr=subprocess.STDOUT)
    except OSError as e:
        raise ToolUnavailableError(
            "OSError while trying to execute " + ' '.join(str(c) for c in commands) + ': ' + str(e),
            tool=commands[0],
        ) from e

    stdout, _ignored = p.communicate()
    result.returncode = p.returncode
    result.output = stdout.decode('utf-8', 'ignore')
    return result


def get_file_extension(filename):
    """Get the normalized file extension, can be blank string but never None."""
    if isinstance(filename, bytes):
        filename = filename.decode('utf-8')
    return os.path.splitext(filename)[1].lower()[1:]


def is_valid_package_name(name):
    """Check whether name is a valid fdroid package name.

    APKs and manually defined package names must use a valid Java
    Package Name.

    """
    return VALID_APPLICATION_ID_REGEX.match(name) is not None \
        or FDROID_PACKAGE_NAME_REGEX.match(name) is not None


def is_strict_application_id(name):
    """Check whether name is a valid Android Application ID.

    The Android ApplicationID is basically a Java Package Name, but
    with more restrictive naming rules:

    * It must have at least two segments (one or more dots).
    * Each segment must start with a letter.
    * All characters must be alphanumeric or an underscore [a-zA-Z0-9_].

    References
    ----------
    https://developer.android.com/studio/build/application-id

    """
    return STRICT_APPLICATION_ID_REGEX.match(name) is not None \
        and '.' in name


def sha256sum(filename):
    """Calculate the sha256 of the given file."""
    sha = hashlib.sha256()
    with open(filename, 'rb') as f:
        while True:
            t = f.read(16384)
            if len(t) == 0:
                break
            sha.update(t)
    return sha.hexdigest()


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def datetime_to_millis(dt):
    """Java prefers milliseconds since the epoch."""
    return (dt - EPOCH) // timedelta(milliseconds=1)


def millis_to_datetime(millis):
    return EPOCH + timedelta(milliseconds=millis)


class Encoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, set):
            return sorted(obj)
        elif isinstance(obj, datetime):
            return datetime_to_millis(obj)
        return super().default(obj)


def signer_fingerprint(cert_encoded):
    """Return SHA-256 signer fingerprint for PKCS#7 DER-encoded signature.

    Parameters
    ----------
    Contents of an APK signature.

    Returns
    -------
    Standard SHA-256 signer fingerprint.

    """
    return hashlib.sha256(cert_encoded).hexdigest()


def _find_matching_certificate(signer_info, certificate):
    """Find the certificates that matches signer_info using issuer and serial number.

    https://android.googlesource.com/platform/tools/apksig/+/refs/tags/android-13.0.0_r3/src/main/java/com/android/apksig/internal/apk/v1/V1SchemeVerifier.java#590

    """
    certificate_serial = certificate.chosen['tbs_certificate']['serial_number']
    expected_issuer_serial = signer_info['sid'].chosen
    return (
        expected_issuer_serial['issuer'] == certificate.chosen.issuer
        and expected_issuer_serial['serial_number'] == certificate_serial
    )


def get_certificates(signature_block_file):
    """Extract the DER signer certificates from a JAR Signature Block File.

    PKCS#7-signed data can include whole certificate chains.  Android
    does not validate the chain, so only the certificates referenced by
    a SignerInfo are returned.  This does not verify the signatures.

    Parameters
    ----------
    signature_block_file
        Bytes representing the PKCS#7 signer certificate and
        signature, as read directly out of the JAR/APK, e.g. CERT.RSA.

    Returns
    -------
    A list of DER encoded certificates.

    """
    pkcs7obj = cms.ContentInfo.load(signature_block_file)
    certificates = pkcs7obj['content']['certificates']
    if len(certificates) == 1:
        return [certificates[0].chosen.dump()]
    found = []
    for signer_info in pkcs7obj['content']['signer_infos']:
        for certificate in certificates:
            if _find_matching_certificate(signer_info, certificate):
                found.append(certificate.chosen.dump())
                break
        else:
            logging.info('No certificate found that matches signer info!')
    return found


def _androguard_logging_level(level=logging.ERROR):
    """Tames androguard's default debug output.

    To get coverage across the full range of androguard >= 3.3.5, this
    includes all known logger names that are relevant.  So some of
    these names might not be present in the version of androguard
    currently in use.

    """
    for name in (
        'androguard.apk',
        'androguard.axml',
        'androguard.core.api_specific_resources',
        'androguard.core.apk',
        'androguard.core.axml',
    ):
        logging.getLogger(name).setLevel(level)

    # some parts of androguard 4.x use loguru instead of logging
    try:
        from loguru import logger
        logger.remove()
    except ImportError:
        pass


def get_androguard_APK(apkfile, skip_analysis=False):
    try:
        # these were moved in androguard 4.0
        from androguard.core.apk import APK
    except ImportError:
        from androguard.core.bytecodes.apk import APK
    _androguard_logging_level()

    return APK(apkfile, skip_analysis=skip_analysis)


def get_signer_fingerprints(apkpath):
    """Get the SHA-256 fingerprints of all signers of an APK.

    APK Signature v3 and v2 blocks are read with androguard, the JAR
    Signature Block Files directly from the ZIP.  apksigner requires
    the signers of all present schemes to match, so a mismatch makes
    the APK unusable here as well.

    Raises
    ------
    ExtractionError
        when the schemes have different signers.

    Returns
    -------
    A set of fingerprint strings, empty if the APK is not signed.

    """
    apkobject = get_androguard_APK(apkpath, skip_analysis=True)
    per_scheme = []
    certs_v3 = apkobject.get_certificates_der_v3()
    if certs_v3:
        logging.debug(_('Using APK Signature v3'))
        per_scheme.append(certs_v3)
    certs_v2 = apkobject.get_certificates_der_v2()
    if certs_v2:
        logging.debug(_('Using APK Signature v2'))
        per_scheme.append(certs_v2)

    with zipfile.ZipFile(apkpath, 'r') as apk:
        certs_v1 = []
        for n in sorted(apk.namelist()):
            if SIGNATURE_BLOCK_FILE_REGEX.match(n):
                certs_v1 += get_certificates(apk.read(n))
    if certs_v1:
        logging.debug(_('Using JAR Signature'))
        per_scheme.append(certs_v1)

    fingerprints = [set(signer_fingerprint(c) for c in certs) for certs in per_scheme]
    if not fingerprints:
        return set()
    if not all(f == fingerprints[0] for f in fingerprints):
        raise ExtractionError(
            _("APK signatures have different certificates in {path}:").format(path=apkpath),
            detail='\n'.join(' '.join(sorted(f)) for f in fingerprints),
            path=apkpath,
        )
    return fingerprints[0]
