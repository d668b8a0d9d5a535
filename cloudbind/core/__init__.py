"""cloudbind core: service-agnostic infrastructure shared by the client libraries.

This module provides the foundation for the Spanner and Debugger bindings:

* Connection — authenticated REST connection with fault translation
* Credentials — bearer access tokens (explicit, environment or metadata server)
* MetadataResolver / resolve_project_id — environment-derived defaults
* Page — token-based pagination
* Job — long-running operation handle
* Exception hierarchy — all cloudbind errors
"""

from __future__ import annotations

from cloudbind.core.connection import Connection
from cloudbind.core.credentials import AccessToken, Credentials
from cloudbind.core.env import (
    DEBUGGER_PROJECT_VARS,
    SPANNER_PROJECT_VARS,
    MetadataResolver,
    resolve_project_id,
)
from cloudbind.core.exceptions import (
    AbortedError,
    AlreadyExistsError,
    AuthError,
    ClientClosedError,
    CloudError,
    ConfigurationError,
    DeadlineExceededError,
    EvaluationError,
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    ProjectResolutionError,
    ResourceExhaustedError,
    SessionLimitError,
    TransportError,
    UnavailableError,
)
from cloudbind.core.jobs import Job
from cloudbind.core.paging import Page

__all__ = [
    # Transport
    "Connection",
    "Credentials",
    "AccessToken",
    # Environment
    "MetadataResolver",
    "resolve_project_id",
    "SPANNER_PROJECT_VARS",
    "DEBUGGER_PROJECT_VARS",
    # Helpers
    "Page",
    "Job",
    # Exceptions
    "CloudError",
    "TransportError",
    "InvalidArgumentError",
    "AuthError",
    "PermissionDeniedError",
    "NotFoundError",
    "AlreadyExistsError",
    "AbortedError",
    "FailedPreconditionError",
    "ResourceExhaustedError",
    "DeadlineExceededError",
    "UnavailableError",
    "InternalError",
    "ConfigurationError",
    "ProjectResolutionError",
    "SessionLimitError",
    "ClientClosedError",
    "EvaluationError",
]
