"""Long-running operation handles."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Generic, Optional, TypeVar

from cloudbind.core.exceptions import CloudError, error_for_status

logger = logging.getLogger("cloudbind.core.jobs")

T = TypeVar("T")

# google.rpc.Code -> HTTP status, for errors embedded in operations.
_RPC_CODE_HTTP = {
    3: 400, 5: 404, 6: 409, 7: 403, 8: 429, 9: 400,
    10: 409, 13: 500, 14: 503, 4: 504, 16: 401,
}
_RPC_CODE_STATUS = {
    3: "INVALID_ARGUMENT", 4: "DEADLINE_EXCEEDED", 5: "NOT_FOUND",
    6: "ALREADY_EXISTS", 7: "PERMISSION_DENIED", 8: "RESOURCE_EXHAUSTED",
    9: "FAILED_PRECONDITION", 10: "ABORTED", 13: "INTERNAL",
    14: "UNAVAILABLE", 16: "UNAUTHENTICATED",
}


class Job(Generic[T]):
    """Handle to an asynchronous server-side operation.

    ``done`` reflects the last fetched state; :meth:`reload` re-fetches it.
    Once done, :attr:`result` wraps the operation response (e.g. into an
    ``Instance``) and :attr:`error` holds the failure, if any.

    Examples
    --------
    >>> job = project.create_instance("my-instance", name="My", config="regional-us-central1", nodes=1)
    >>> job.wait_until_done()
    >>> instance = job.result
    """

    def __init__(
        self,
        data: dict[str, Any],
        *,
        get: Callable[[str], dict[str, Any]],
        wrap: Optional[Callable[[dict[str, Any]], T]] = None,
    ) -> None:
        self._data = data
        self._get = get
        self._wrap = wrap

    @property
    def name(self) -> str:
        return self._data.get("name", "")

    @property
    def done(self) -> bool:
        return bool(self._data.get("done"))

    @property
    def metadata(self) -> dict[str, Any]:
        return self._data.get("metadata") or {}

    @property
    def error(self) -> Optional[CloudError]:
        """The operation's failure, as the matching exception (not raised)."""
        err = self._data.get("error")
        if not err:
            return None
        code = int(err.get("code", 2))
        return error_for_status(
            _RPC_CODE_HTTP.get(code, 500),
            err.get("message", "Operation failed"),
            status=_RPC_CODE_STATUS.get(code),
            details=err.get("details"),
        )

    @property
    def result(self) -> Optional[T]:
        """The wrapped response of a successfully completed operation."""
        if not self.done or "response" not in self._data:
            return None
        response = self._data["response"]
        return self._wrap(response) if self._wrap else response

    def reload(self) -> Job[T]:
        """Re-fetch the operation state from the service."""
        self._data = self._get(self.name)
        return self

    refresh = reload

    def wait_until_done(
        self,
        *,
        interval: float = 1.0,
        max_interval: float = 60.0,
        timeout: Optional[float] = None,
    ) -> Job[T]:
        """Poll until the operation is done, backing off between reloads.

        Raises ``TimeoutError`` when ``timeout`` elapses first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        delay = interval
        while not self.done:
            if deadline is not None and time.monotonic() + delay > deadline:
                raise TimeoutError(f"Operation {self.name} not done after {timeout}s")
            time.sleep(delay)
            self.reload()
            delay = min(delay * 1.3, max_interval)
        logger.debug("Operation %s done (error=%s)", self.name, self.error is not None)
        return self

    def __repr__(self) -> str:
        return f"Job(name={self.name!r}, done={self.done})"
