"""Exception types shared across the provisioning stack."""
from __future__ import annotations


class VMManagerError(Exception):
    """Base class for every error raised by this package."""


class RemoteError(VMManagerError):
    """A remote execution channel failed."""


class RemoteTimeoutError(RemoteError):
    """A single remote command did not finish within its timeout."""

    def __init__(self, message: str, timeout: float):
        super().__init__(message)
        self.timeout = timeout


class RemoteConnectionError(RemoteError):
    """The connect retry budget was exhausted."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class RemoteAuthError(RemoteError):
    """The target rejected our credentials. Retrying will not help."""

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class ProviderError(VMManagerError):
    """The cloud provider API answered with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InstanceNotReadyError(VMManagerError):
    """An instance did not reach the ready state before the deadline."""


class AuthError(VMManagerError):
    """Bad credentials or an invalid session token."""


class QuotaExceededError(VMManagerError):
    """The request would push a user past their instance quota."""
