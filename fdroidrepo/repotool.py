#!/usr/bin/env python3
#
# repotool.py - part of fdroidrepo
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

"""Run the "fdroid" tool from fdroidserver on a repository directory.

"fdroid update" does the signing and writes the published index files,
this library only feeds it.

"""

import logging
import os

from . import _
from . import common
from .exception import ToolInvocationError, ToolUnavailableError

# options of invoke_repo_tool -> config.yml key
REPO_TOOL_OPTIONS = (
    ('name', 'repo_name'),
    ('description', 'repo_description'),
    ('address', 'repo_url'),
    ('keystore', 'keystore'),
)


class FDroidTool:
    """The repository management tool, found via config key fdroid or the PATH."""

    def __init__(self, config=None, fdroid=None):
        self.config = config or dict()
        self._fdroid = fdroid

    @property
    def fdroid(self):
        if self._fdroid is None:
            if self.config.get('fdroid'):
                path = common.find_command(self.config['fdroid'])
            else:
                path = common.find_command('fdroid')
            if not path:
                raise ToolUnavailableError(
                    _("No 'fdroid' command found, is fdroidserver installed?"), tool='fdroid'
                )
            self._fdroid = path
        return self._fdroid

    def run(self, repodir, command, args=None):
        """Run "fdroid <command> <args>" in repodir.

        Raises
        ------
        ToolUnavailableError
            when fdroid cannot be found or executed.
        ToolInvocationError
            when it exits with an error, the output is in the detail.

        Returns
        -------
        The output of the command.
        """
        commands = [self.fdroid, command] + list(args or [])
        logging.info(_('Running command: "fdroid {command}" with arguments: {args}')
                     .format(command=command, args=' '.join(args or [])))
        p = common.FDroidPopen(commands, cwd=str(repodir))
        if p.returncode != 0:
            raise ToolInvocationError(
                _('"fdroid {command}" failed with exit code {returncode}')
                .format(command=command, returncode=p.returncode),
                detail=p.output,
                command=' '.join(['fdroid', command] + list(args or [])),
                returncode=p.returncode,
            )
        return p.output

    def invoke_repo_tool(self, repodir, options):
        """Write options into config.yml and rebuild the signed index.

        Parameters
        ----------
        repodir
          the repository root, where config.yml is
        options
          dict with any of name, description, address and keystore,
          unset values and values config.yml already has are left alone
        """
        config_file = os.path.join(str(repodir), common.CONFIG_FILE)
        current = common.load_config_file(config_file)
        for option, key in REPO_TOOL_OPTIONS:
            value = options.get(option)
            if value is None or current.get(key) == str(value):
                continue
            logging.debug('Setting %s in %s' % (key, config_file))
            common.write_to_config(config_file, key, str(value))
        return self.run(repodir, 'update')
