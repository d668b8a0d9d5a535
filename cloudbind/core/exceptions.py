"""Custom exceptions for the cloudbind SDK.

All exceptions inherit from CloudError to allow catching any SDK error.
Secrets (access tokens) are never included in exception messages.
"""

from __future__ import annotations

from typing import Any, Optional


class CloudError(Exception):
    """Base exception for all cloudbind SDK errors.

    Remote faults carry the HTTP ``status_code``, the service's canonical
    ``status`` string (e.g. ``"NOT_FOUND"``) and the raw error ``details``.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        status: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.status = status
        self.details = details


# -- remote faults ----------------------------------------------------------


class TransportError(CloudError):
    """Raised when the service could not be reached at all."""


class InvalidArgumentError(CloudError):
    """400 / INVALID_ARGUMENT."""


class AuthError(CloudError):
    """Raised when the access token is missing, invalid or rejected."""


class PermissionDeniedError(CloudError):
    """403 / PERMISSION_DENIED."""


class NotFoundError(CloudError):
    """404 / NOT_FOUND. Lookup methods translate this into ``None``."""


class AlreadyExistsError(CloudError):
    """409 / ALREADY_EXISTS."""


class AbortedError(CloudError):
    """409 / ABORTED. The transaction was aborted by the service."""


class FailedPreconditionError(CloudError):
    """400 / FAILED_PRECONDITION."""


class ResourceExhaustedError(CloudError):
    """429 / RESOURCE_EXHAUSTED."""


class DeadlineExceededError(CloudError):
    """504 / DEADLINE_EXCEEDED."""


class UnavailableError(CloudError):
    """502, 503 / UNAVAILABLE."""


class InternalError(CloudError):
    """500 / INTERNAL."""


# -- local conditions -------------------------------------------------------


class ConfigurationError(CloudError, ValueError):
    """Raised synchronously when client or pool options are invalid."""


class ProjectResolutionError(CloudError):
    """Raised when no project id is given and none can be discovered."""


class SessionLimitError(CloudError):
    """Raised when the session pool is exhausted and ``fail`` is set."""


class ClientClosedError(CloudError):
    """Raised when using a client (or its pool) after ``close()``."""


class EvaluationError(CloudError):
    """Raised when a debugger expression cannot be evaluated safely."""


_STATUS_ERRORS: dict[str, type[CloudError]] = {
    "INVALID_ARGUMENT": InvalidArgumentError,
    "OUT_OF_RANGE": InvalidArgumentError,
    "UNAUTHENTICATED": AuthError,
    "PERMISSION_DENIED": PermissionDeniedError,
    "NOT_FOUND": NotFoundError,
    "ALREADY_EXISTS": AlreadyExistsError,
    "ABORTED": AbortedError,
    "FAILED_PRECONDITION": FailedPreconditionError,
    "RESOURCE_EXHAUSTED": ResourceExhaustedError,
    "DEADLINE_EXCEEDED": DeadlineExceededError,
    "UNAVAILABLE": UnavailableError,
    "INTERNAL": InternalError,
}

_HTTP_ERRORS: dict[int, type[CloudError]] = {
    400: InvalidArgumentError,
    401: AuthError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: AlreadyExistsError,
    429: ResourceExhaustedError,
    500: InternalError,
    502: UnavailableError,
    503: UnavailableError,
    504: DeadlineExceededError,
}


def error_for_status(
    status_code: int,
    message: str,
    status: Optional[str] = None,
    details: Any = None,
) -> CloudError:
    """Return the exception matching a remote fault.

    The canonical ``status`` string wins over the HTTP code, since several
    statuses share one code (409 is both ALREADY_EXISTS and ABORTED).
    """
    cls = _STATUS_ERRORS.get(status or "") or _HTTP_ERRORS.get(status_code, CloudError)
    return cls(message, status_code=status_code, status=status, details=details)
