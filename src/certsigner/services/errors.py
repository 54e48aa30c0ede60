"""Error taxonomy shared by the provisioning services and the CLI."""
from __future__ import annotations

__all__ = [
    "CertSignerError",
    "ConfigError",
    "StorageAccessError",
    "StorageWriteError",
    "PersistenceError",
    "RequestRejectedError",
    "SigningServiceError",
    "SigningServiceUnavailable",
    "ChainMismatchError",
    "PollTimeoutError",
    "PollCancelledError",
]


class CertSignerError(RuntimeError):
    """Base class for provisioning failures surfaced to the operator."""

    exit_code: int = 1

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(CertSignerError):
    """Raised when the configuration file or values are invalid."""

    exit_code: int = 2


class StorageAccessError(CertSignerError):
    """Raised when a secure container is unreadable, corrupt or the password is wrong."""

    exit_code: int = 3


class StorageWriteError(CertSignerError):
    """Raised when a secure container cannot be written."""

    exit_code: int = 3


class PersistenceError(CertSignerError):
    """Raised when the outstanding request id cannot be persisted or read back."""

    exit_code: int = 4

    def __init__(self, message: str, *, request_id: str | None = None, exit_code: int | None = None) -> None:
        super().__init__(message, exit_code=exit_code)
        self.request_id = request_id


class RequestRejectedError(CertSignerError):
    """Raised when the signing authority rejects a certificate signing request."""

    exit_code: int = 5

    def __init__(self, message: str, *, request_id: str | None = None, exit_code: int | None = None) -> None:
        super().__init__(message, exit_code=exit_code)
        self.request_id = request_id


class SigningServiceError(CertSignerError):
    """Raised when the signing authority answers with an unexpected response."""

    exit_code: int = 6

    def __init__(self, message: str, *, status_code: int = 0, exit_code: int | None = None) -> None:
        super().__init__(message, exit_code=exit_code)
        self.status_code = status_code


class SigningServiceUnavailable(SigningServiceError):
    """Raised on transport failures; retried while polling."""


class ChainMismatchError(CertSignerError):
    """Raised when the returned leaf certificate does not belong to our key pair."""

    exit_code: int = 7


class PollTimeoutError(CertSignerError):
    exit_code: int = 8


class PollCancelledError(CertSignerError):
    exit_code: int = 8
