#!/usr/bin/env python3

import subprocess
import sys

from setuptools import Command, setup


class VersionCheckCommand(Command):
    """Make sure git tag and version match before uploading."""

    user_options = []

    def initialize_options(self):
        """Abstract method that is required to be overwritten."""

    def finalize_options(self):
        """Abstract method that is required to be overwritten."""

    def run(self):
        version = self.distribution.get_version()
        version_git = (
            subprocess.check_output(['git', 'describe', '--tags', '--always'])
            .rstrip()
            .decode('utf-8')
        )
        if version != version_git:
            print(
                'ERROR: Release version mismatch! setup.py (%s) does not match git (%s)'
                % (version, version_git)
            )
            sys.exit(1)
        print('Upload using: twine upload --sign dist/fdroidrepo-%s.tar.gz' % version)


setup(
    name='fdroidrepo',
    version='0.1.0',
    description='Manage an F-Droid app repository directory from Python',
    author='The fdroidrepo authors',
    license='AGPL-3.0',
    packages=['fdroidrepo'],
    python_requires='>=3.9',
    cmdclass={
        'versioncheck': VersionCheckCommand,
    },
    install_requires=[
        'androguard >= 3.3.5',
        'asn1crypto',
        'PyYAML',
        'ruamel.yaml >= 0.15, < 0.17.22',
    ],
    # fdroidserver provides the "fdroid" command that signs and
    # publishes the index, it is run as an external tool
    extras_require={
        'fdroidserver': ['fdroidserver'],
        'test': ['pytest'],
    },
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: GNU Affero General Public License v3 or later (AGPLv3+)',
        'Operating System :: POSIX',
        'Operating System :: Unix',
        'Topic :: Utilities',
    ],
)
