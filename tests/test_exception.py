#!/usr/bin/env python3

import unittest
import fdroidrepo
from fdroidrepo.exception import (ConflictError, ExtractionError, FDroidRepoException,
                                  MetaDataException, PersistenceError,
                                  RepositoryLockedError, ToolInvocationError,
                                  ToolUnavailableError)


class ExceptionTest(unittest.TestCase):
    '''fdroidrepo/exception.py'''

    def test_FDroidRepoException(self):
        try:
            raise fdroidrepo.exception.FDroidRepoException()
        except fdroidrepo.exception.FDroidRepoException as e:
            str(e)

        try:
            raise fdroidrepo.exception.FDroidRepoException(9)
        except fdroidrepo.exception.FDroidRepoException as e:
            str(e)

        try:
            raise fdroidrepo.exception.FDroidRepoException(-123.12234)
        except fdroidrepo.exception.FDroidRepoException as e:
            str(e)

        try:
            raise fdroidrepo.exception.FDroidRepoException("this is a string")
        except fdroidrepo.exception.FDroidRepoException as e:
            str(e)

        try:
            raise fdroidrepo.exception.FDroidRepoException(['one', 'two', 'three'])
        except fdroidrepo.exception.FDroidRepoException as e:
            str(e)

    def test_detail(self):
        e = FDroidRepoException('aapt failed', detail='ERROR: bad manifest\n')
        self.assertEqual(
            'aapt failed\n==== detail begin ====\nERROR: bad manifest\n==== detail end ====',
            str(e),
        )
        self.assertEqual('aapt failed', str(FDroidRepoException('aapt failed')))

    def test_shortened_detail(self):
        e = FDroidRepoException('long', detail='x' * 20000)
        self.assertTrue(e.shortened_detail().startswith('[...]\n'))
        self.assertEqual(16000 + len('[...]\n'), len(e.shortened_detail()))
        self.assertEqual('short', FDroidRepoException('s', detail='short').shortened_detail())

    def test_hierarchy(self):
        for cls in (ConflictError, ExtractionError, MetaDataException, PersistenceError,
                    RepositoryLockedError, ToolInvocationError, ToolUnavailableError):
            self.assertTrue(issubclass(cls, FDroidRepoException))

    def test_context(self):
        e = ConflictError('signer mismatch', path='repo/a.apk', appid='org.example.a')
        self.assertEqual(('repo/a.apk', 'org.example.a'), (e.path, e.appid))
        e = ToolInvocationError('failed', detail='output', command='fdroid update', returncode=2)
        self.assertEqual(('fdroid update', 2), (e.command, e.returncode))
        self.assertIn('output', str(e))
        self.assertEqual('aapt', ToolUnavailableError('missing', tool='aapt').tool)
        self.assertEqual('repoindex.json', PersistenceError('bad', path='repoindex.json').path)
        self.assertEqual('x.apk', ExtractionError('bad', path='x.apk').path)

    def test_MetaDataException(self):
        self.assertEqual('invalid', str(MetaDataException('invalid')))


if __name__ == "__main__":
    unittest.main()
