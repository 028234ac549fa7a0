import gettext
import glob
import os
import sys


# support running straight from git and standard installs
rootpaths = [
    os.path.realpath(os.path.join(os.path.dirname(__file__), '..')),
    os.path.realpath(
        os.path.join(os.path.dirname(__file__), '..', '..', '..', '..', 'share')
    ),
    os.path.join(sys.prefix, 'share'),
]

localedir = None
for rootpath in rootpaths:
    if len(glob.glob(os.path.join(rootpath, 'locale', '*', 'LC_MESSAGES', 'fdroidrepo.mo'))) > 0:
        localedir = os.path.join(rootpath, 'locale')
        break

gettext.bindtextdomain('fdroidrepo', localedir)
gettext.textdomain('fdroidrepo')
_ = gettext.gettext


from fdroidrepo.exception import (FDroidRepoException,
                                  ConflictError,
                                  ExtractionError,
                                  PersistenceError,
                                  ToolInvocationError,
                                  ToolUnavailableError)  # NOQA: E402
FDroidRepoException  # NOQA: B101
ConflictError  # NOQA: B101
ExtractionError  # NOQA: B101
PersistenceError  # NOQA: B101
ToolInvocationError  # NOQA: B101
ToolUnavailableError  # NOQA: B101

from fdroidrepo.metadata import App, Release  # NOQA: E402
App  # NOQA: B101
Release  # NOQA: B101
from fdroidrepo.index import RepoIndex  # NOQA: E402
RepoIndex  # NOQA: B101
from fdroidrepo.extract import AaptExtractor  # NOQA: E402
AaptExtractor  # NOQA: B101
from fdroidrepo.update import (ChangeReport,
                               reconcile,
                               scan_repo)  # NOQA: E402
ChangeReport  # NOQA: B101
reconcile  # NOQA: B101
scan_repo  # NOQA: B101
from fdroidrepo.repotool import FDroidTool  # NOQA: E402
FDroidTool  # NOQA: B101
from fdroidrepo.repository import Repository  # NOQA: E402
Repository  # NOQA: B101
