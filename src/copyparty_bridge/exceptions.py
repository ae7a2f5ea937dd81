"""Exception hierarchy for the copyparty_bridge library."""

from __future__ import annotations


class CopypartyError(Exception):
    """Base exception for all copyparty_bridge errors."""

    pass


class NotConfiguredError(CopypartyError):
    """Raised when no copyparty backend is configured."""

    pass


class UpstreamUnavailableError(CopypartyError):
    """Raised when a listing returns a non-2xx status or a body that is not JSON."""

    pass


class RequestTimeoutError(CopypartyError):
    """Raised when a request to copyparty exceeds its deadline."""

    pass


class NetworkError(CopypartyError):
    """Raised on transport-level failures (connection refused, reset, DNS)."""

    pass


class ValidationError(CopypartyError):
    """Raised for invalid names or paths, always before any network call."""

    pass


class MutationError(CopypartyError):
    """Raised when copyparty rejects a delete, move, rename or mkdir."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermissionDeniedError(MutationError):
    """Raised when copyparty denies move-access for a path (HTTP 401)."""

    pass


class DestinationRejectedError(MutationError):
    """Raised when copyparty rejects a WebDAV destination as unprocessable (HTTP 422)."""

    pass


class AlreadyExistsError(MutationError):
    """Raised when a folder being created already exists (HTTP 405/409)."""

    pass


class PartialSuccessError(CopypartyError):
    """Raised when an upload's bytes arrived but moving it into place failed."""

    def __init__(self, message: str, uploaded_path: str) -> None:
        super().__init__(message)
        self.uploaded_path = uploaded_path


class BatchOperationError(CopypartyError):
    """Raised when a bulk operation stops at its first failure.

    ``succeeded`` holds the paths that were already applied; they are not
    rolled back.
    """

    def __init__(self, message: str, succeeded: list[str], failed_path: str) -> None:
        super().__init__(message)
        self.succeeded = succeeded
        self.failed_path = failed_path
