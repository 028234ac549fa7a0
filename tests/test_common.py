#!/usr/bin/env python3

import hashlib
import json
import logging
import os
import sys
import textwrap
import unittest
import zipfile
from datetime import datetime, timezone
from unittest import mock

import fdroidrepo
from fdroidrepo import common
from fdroidrepo.exception import (ExtractionError, FDroidRepoException,
                                  MetaDataException, ToolUnavailableError)
from .testcommon import NOW, TmpCwd, mkdtemp


class CommonTest(unittest.TestCase):
    '''fdroidrepo/common.py'''

    def setUp(self):
        self._td = mkdtemp()
        self.testdir = self._td.name

    def tearDown(self):
        self._td.cleanup()

    def test_is_valid_package_name(self):
        for name in (
            "cafebabe",
            "org.fdroid.fdroid",
            "org.f_droid.fdr0ID",
            "SpeedoMeterApp.main",
            "05041684efd9b16c2888b1eddbadd0359f655f311b89bdd1737f560a10d20fb8",
        ):
            self.assertTrue(common.is_valid_package_name(name), "{0} should be a valid package name".format(name))
        for name in (
            "0rg.fdroid.fdroid",
            ".f_droid.fdr0ID",
            "trailingdot.",
            "org.fdroid/fdroid",
            "/org.fdroid.fdroid",
        ):
            self.assertFalse(common.is_valid_package_name(name), "{0} should not be a valid package name".format(name))

    def test_is_strict_application_id(self):
        self.assertTrue(common.is_strict_application_id('org.fdroid.fdroid'))
        self.assertTrue(common.is_strict_application_id('io.github.a_b'))
        self.assertFalse(common.is_strict_application_id('cafebabe'))
        self.assertFalse(common.is_strict_application_id('org.9fdroid'))

    def test_get_file_extension(self):
        self.assertEqual('png', common.get_file_extension('repo/icons/icon.PNG'))
        self.assertEqual('', common.get_file_extension('Makefile'))
        self.assertEqual('apk', common.get_file_extension(b'a.b.apk'))

    def test_sha256sum(self):
        path = os.path.join(self.testdir, 'f')
        data = b'x' * 40000
        with open(path, 'wb') as fp:
            fp.write(data)
        self.assertEqual(hashlib.sha256(data).hexdigest(), common.sha256sum(path))

    def test_millis(self):
        self.assertEqual(1709294400000, common.datetime_to_millis(NOW))
        self.assertEqual(NOW, common.millis_to_datetime(1709294400000))
        dt = datetime(2001, 2, 3, 4, 5, 6, 789000, tzinfo=timezone.utc)
        self.assertEqual(dt, common.millis_to_datetime(common.datetime_to_millis(dt)))

    def test_encoder(self):
        self.assertEqual(
            '{"a": ["x", "y"], "b": 0}',
            json.dumps({'a': {'y', 'x'}, 'b': common.EPOCH}, cls=common.Encoder, sort_keys=True),
        )
        with self.assertRaises(TypeError):
            json.dumps(object(), cls=common.Encoder)

    def test_set_console_logging(self):
        with mock.patch('logging.basicConfig') as basicConfig:
            common.set_console_logging(verbose=True, color=True)
        kwargs = basicConfig.call_args[1]
        self.assertEqual(logging.DEBUG, kwargs['level'])
        stdout_handler, stderr_handler = kwargs['handlers']
        self.assertIsInstance(stdout_handler.formatter, common.ColorFormatter)
        self.assertEqual(logging.ERROR, stderr_handler.level)

        with mock.patch('logging.basicConfig') as basicConfig:
            common.set_console_logging(verbose=False, color=False)
        kwargs = basicConfig.call_args[1]
        self.assertEqual(logging.INFO, kwargs['level'])
        self.assertNotIsInstance(kwargs['handlers'][0].formatter, common.ColorFormatter)

    def test_color_formatter(self):
        record = logging.LogRecord('x', logging.WARNING, __file__, 1, 'careful', None, None)
        self.assertEqual('\x1b[33;20mcareful\x1b[0m', common.ColorFormatter('%(message)s').format(record))


class ConfigTest(unittest.TestCase):
    '''fdroidrepo/common.py config.yml handling'''

    def setUp(self):
        self._td = mkdtemp()
        self.testdir = self._td.name
        self.config_file = os.path.join(self.testdir, common.CONFIG_FILE)

    def tearDown(self):
        self._td.cleanup()

    def _write(self, content, mode=0o600):
        with open(self.config_file, 'w') as fp:
            fp.write(textwrap.dedent(content))
        os.chmod(self.config_file, mode)

    def test_read_config_missing_file(self):
        config = common.read_config(self.config_file)
        self.assertEqual(common.default_config['repo_name'], config['repo_name'])
        self.assertEqual(60, config['lock_timeout'])

    def test_read_config_default_path(self):
        self._write('repo_name: In cwd\n')
        with TmpCwd(self.testdir):
            self.assertEqual('In cwd', common.read_config()['repo_name'])

    def test_read_config(self):
        self._write("""\
            repo_url: https://example.org/fdroid/repo
            repo_name: Example
            keystore: ~/keystore.p12
            keystorepass: secret
            """)
        config = common.read_config(self.config_file)
        self.assertEqual('Example', config['repo_name'])
        self.assertEqual(os.path.expanduser('~/keystore.p12'), config['keystore'])
        self.assertEqual('~/keystore.p12', config['keystore_orig'])
        self.assertEqual('secret', config['keystorepass'])

    def test_read_config_env(self):
        self._write("""\
            keystorepass: {env: FDROIDREPO_TEST_KEYSTOREPASS}
            keypass: {env: FDROIDREPO_TEST_UNSET}
            """)
        with mock.patch.dict(os.environ, {'FDROIDREPO_TEST_KEYSTOREPASS': 'from env'}):
            os.environ.pop('FDROIDREPO_TEST_UNSET', None)
            with self.assertLogs(level='ERROR'):
                config = common.read_config(self.config_file)
        self.assertEqual('from env', config['keystorepass'])
        self.assertNotIn('keypass', config)

    def test_read_config_unsafe_permissions(self):
        self._write('keystorepass: secret\n', mode=0o644)
        with self.assertLogs(level='WARNING'):
            common.read_config(self.config_file)

    def test_read_config_invalid(self):
        self._write('- not\n- a dict\n')
        self.assertRaises(MetaDataException, common.read_config, self.config_file)
        self._write('repo_name: [unclosed\n')
        self.assertRaises(MetaDataException, common.read_config, self.config_file)

    def test_read_config_urls(self):
        self._write('repo_url: https://example.org/fdroid\n')
        self.assertRaises(FDroidRepoException, common.read_config, self.config_file)
        self._write("""\
            repo_url: https://example.org/fdroid/repo
            archive_url: https://example.org/fdroid/repo
            """)
        self.assertRaises(FDroidRepoException, common.read_config, self.config_file)

    def test_load_config_file(self):
        self.assertEqual({}, common.load_config_file(self.config_file))
        self._write('repo_name: Example\n')
        self.assertEqual({'repo_name': 'Example'}, common.load_config_file(self.config_file))

    def test_write_to_config(self):
        self._write("""\
            # repo settings
            repo_name: Old name
            # repo_description: commented out
            keystorepass: secret

            repo_url: https://example.org/fdroid/repo""")
        common.write_to_config(self.config_file, 'repo_name', 'New name')
        common.write_to_config(self.config_file, 'repo_description', 'A description')
        common.write_to_config(self.config_file, 'repo_url', None)
        common.write_to_config(self.config_file, 'archive_older', 3)
        with open(self.config_file) as fp:
            self.assertEqual(
                textwrap.dedent("""\
                    # repo settings
                    repo_name: New name
                    repo_description: A description
                    keystorepass: secret

                    archive_older: 3
                    """),
                fp.read(),
            )

    def test_write_to_config_multiline_value(self):
        self._write("""\
            repo_description: |
                first paragraph

                second paragraph
            # repo_icon: icon.png
            #   indented comment

            repo_name: Example
            """)
        long_value = ' '.join(['word'] * 40)
        common.write_to_config(self.config_file, 'repo_description', long_value)
        common.write_to_config(self.config_file, 'repo_icon', 'logo.png')
        with open(self.config_file) as fp:
            self.assertEqual(
                textwrap.dedent("""\
                    repo_description: %s
                    repo_icon: logo.png
                    #   indented comment

                    repo_name: Example
                    """ % long_value),
                fp.read(),
            )
        common.write_to_config(self.config_file, 'repo_description', long_value)
        self.assertEqual(long_value, common.load_config_file(self.config_file)['repo_description'])

    def test_write_to_config_new_file(self):
        common.write_to_config(self.config_file, 'repo_name', 'Example')
        self.assertEqual(0o600, os.stat(self.config_file).st_mode & 0o777)
        self.assertEqual('Example', common.read_config(self.config_file)['repo_name'])


class ToolsTest(unittest.TestCase):
    '''fdroidrepo/common.py external tools'''

    def setUp(self):
        self._td = mkdtemp()
        self.testdir = self._td.name

    def tearDown(self):
        self._td.cleanup()

    def test_find_sdk_tools_cmd_from_config(self):
        self.assertEqual(sys.executable, common.find_sdk_tools_cmd('aapt', {'aapt': sys.executable}))
        with self.assertRaises(ToolUnavailableError):
            common.find_sdk_tools_cmd('aapt', {'aapt': os.path.join(self.testdir, 'nope')})

    def test_find_command(self):
        self.assertEqual(sys.executable, common.find_command(sys.executable))
        self.assertIsNone(common.find_command(os.path.join(self.testdir, 'nope')))
        self.assertIsNone(common.find_command('fdroidrepo-no-such-command'))

    def test_FDroidPopen(self):
        p = common.FDroidPopen([sys.executable, '-c', 'import sys; print("out"); print("err", file=sys.stderr); sys.exit(3)'],
                               cwd=self.testdir)
        self.assertEqual(3, p.returncode)
        self.assertIn('out', p.output)
        self.assertIn('err', p.output)

    def test_FDroidPopen_envs(self):
        p = common.FDroidPopen([sys.executable, '-c', 'import os; print(os.getenv("FDROIDREPO_TEST"))'],
                               envs={'FDROIDREPO_TEST': 'set'})
        self.assertEqual(0, p.returncode)
        self.assertEqual('set', p.output.strip())

    def test_FDroidPopen_missing_command(self):
        with self.assertRaises(ToolUnavailableError):
            common.FDroidPopen([os.path.join(self.testdir, 'nope')])


class SignerTest(unittest.TestCase):
    '''fdroidrepo/common.py APK signer fingerprints'''

    def setUp(self):
        self._td = mkdtemp()
        self.apkfile = os.path.join(self._td.name, 'test.apk')
        with zipfile.ZipFile(self.apkfile, 'w') as zf:
            zf.writestr('AndroidManifest.xml', b'\x03\x00\x08\x00')
            zf.writestr('classes.dex', b'dex\n035\x00')

    def tearDown(self):
        self._td.cleanup()

    def _apk(self, v3=None, v2=None):
        apkobject = mock.Mock()
        apkobject.get_certificates_der_v3.return_value = v3 or []
        apkobject.get_certificates_der_v2.return_value = v2 or []
        return apkobject

    def test_signer_fingerprint(self):
        self.assertEqual(hashlib.sha256(b'cert').hexdigest(), common.signer_fingerprint(b'cert'))

    def test_unsigned(self):
        with mock.patch('fdroidrepo.common.get_androguard_APK', return_value=self._apk()):
            self.assertEqual(set(), common.get_signer_fingerprints(self.apkfile))

    def test_v2_and_v3(self):
        apkobject = self._apk(v3=[b'cert'], v2=[b'cert'])
        with mock.patch('fdroidrepo.common.get_androguard_APK', return_value=apkobject):
            self.assertEqual(
                {hashlib.sha256(b'cert').hexdigest()},
                common.get_signer_fingerprints(self.apkfile),
            )

    def test_mismatch(self):
        apkobject = self._apk(v3=[b'cert'], v2=[b'other'])
        with mock.patch('fdroidrepo.common.get_androguard_APK', return_value=apkobject):
            with self.assertRaises(ExtractionError) as cm:
                common.get_signer_fingerprints(self.apkfile)
        self.assertEqual(self.apkfile, cm.exception.path)

    def test_v1(self):
        with zipfile.ZipFile(self.apkfile, 'a') as zf:
            zf.writestr('META-INF/CERT.RSA', b'pkcs7')
        with mock.patch('fdroidrepo.common.get_androguard_APK', return_value=self._apk(v2=[b'cert'])), \
                mock.patch('fdroidrepo.common.get_certificates', return_value=[b'cert']) as get_certificates:
            self.assertEqual(
                {hashlib.sha256(b'cert').hexdigest()},
                common.get_signer_fingerprints(self.apkfile),
            )
        get_certificates.assert_called_once_with(b'pkcs7')


class GettextTest(unittest.TestCase):
    def test_underscore(self):
        self.assertEqual('untranslated', fdroidrepo._('untranslated'))


if __name__ == "__main__":
    unittest.main()
