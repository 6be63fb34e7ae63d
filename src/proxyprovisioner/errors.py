"""Domain errors for proxyprovisioner."""

from typing import Iterable, List, Optional


class ProvisionerError(RuntimeError):
    """Raised when provisioning cannot continue safely."""

    def __init__(self, message: str, diagnostics: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.diagnostics: List[str] = list(diagnostics or [])


class ValidationError(ProvisionerError):
    """Bad or missing input."""


class ResourceUnavailableError(ProvisionerError):
    """A host resource (port, container engine, lock) is not available."""


class NoFreePortError(ResourceUnavailableError):
    """The requested port is taken or the scan range is exhausted."""


class LaunchError(ProvisionerError):
    """The container could not be created or did not reach the running state."""


class ProbeWarning(ProvisionerError):
    """The functional probe through the proxy failed. Never fatal."""


class CommandError(ProvisionerError):
    """An external command failed, timed out or is not installed."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr
