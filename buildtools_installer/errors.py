from __future__ import annotations


class InstallerError(RuntimeError):
    """Base class for every fatal installer condition."""


class ResolutionFailure(InstallerError):
    """No applicable package (or channel item) for an identifier."""


class IntegrityFailure(InstallerError):
    """Downloaded bytes or manifest signature did not verify."""


class TransportFailure(InstallerError):
    """A fetch could not complete."""


class DecodeFailure(InstallerError):
    """Channel or manifest data is not in the expected shape."""


class ConfigurationFailure(InstallerError):
    """Install parameters or package metadata cannot be acted on safely."""


class SubprocessFailure(InstallerError):
    def __init__(self, message: str, *, argv: list[str] | None = None, returncode: int | None = None):
        super().__init__(message)
        self.argv = list(argv or [])
        self.returncode = returncode
