class FDroidRepoException(Exception):
    def __init__(self, value=None, detail=None):
        super().__init__()
        self.value = value
        self.detail = detail

    def shortened_detail(self):
        if len(self.detail) < 16000:
            return self.detail
        return '[...]\n' + self.detail[-16000:]

    def __str__(self):
        if self.value is None:
            ret = __name__
        else:
            ret = str(self.value)
        if self.detail:
            ret += (
                "\n==== detail begin ====\n%s\n==== detail end ===="
                % ''.join(self.detail).strip()
            )
        return ret


class MetaDataException(FDroidRepoException):
    """A metadata file or config.yml is invalid."""

    def __init__(self, value):
        super().__init__(value)

    def __str__(self):
        return self.value


class ExtractionError(FDroidRepoException):
    """A package file could not be parsed, the file gets skipped."""

    def __init__(self, value=None, detail=None, path=None):
        super().__init__(value, detail)
        self.path = path


class ConflictError(FDroidRepoException):
    """A package clashes with a release already in the index."""

    def __init__(self, value=None, detail=None, path=None, appid=None):
        super().__init__(value, detail)
        self.path = path
        self.appid = appid


class ToolUnavailableError(FDroidRepoException):
    def __init__(self, value=None, detail=None, tool=None):
        super().__init__(value, detail)
        self.tool = tool


class PersistenceError(FDroidRepoException):
    def __init__(self, value=None, detail=None, path=None):
        super().__init__(value, detail)
        self.path = path


class ToolInvocationError(FDroidRepoException):
    """The repository management tool failed.

    When this is raised after the index was persisted, the persisted
    index and the signed index on disk may differ until the next
    successful cycle.
    """

    def __init__(self, value=None, detail=None, command=None, returncode=None):
        super().__init__(value, detail)
        self.command = command
        self.returncode = returncode


class RepositoryLockedError(FDroidRepoException):
    pass
