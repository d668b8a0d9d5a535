"""Authenticated REST connection shared by the service facades.

Every call returns the decoded JSON body.  Non-2xx responses are converted
into the matching :class:`CloudError` subclass; nothing is retried here.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import httpx

from cloudbind.core.credentials import Credentials
from cloudbind.core.exceptions import ClientClosedError, TransportError, error_for_status

logger = logging.getLogger("cloudbind.core.connection")

_DEFAULT_TIMEOUT = 60.0
_USER_AGENT = "cloudbind-python"


class Connection:
    """A persistent ``httpx.Client`` bound to one API root.

    Parameters
    ----------
    base_url:
        Root URL of the API, e.g. ``"https://spanner.googleapis.com/v1"``.
    credentials:
        Supplies the bearer token for each request.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        credentials: Credentials,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": _USER_AGENT},
        )
        self._lock = threading.Lock()
        self._closed = False

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def closed(self) -> bool:
        return self._closed

    # -- verbs -------------------------------------------------------------

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        return self.request("POST", path, body=body if body is not None else {})

    def patch(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("PATCH", path, body=body)

    def put(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        return self.request("PUT", path, body=body)

    def delete(self, path: str) -> dict[str, Any]:
        return self.request("DELETE", path)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send one request and return the JSON body (``{}`` when empty)."""
        if self._closed:
            raise ClientClosedError("Connection has been closed")

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        logger.debug("%s %s", method, path)
        try:
            resp = self._client.request(
                method,
                "/" + path.lstrip("/"),
                params=params or None,
                json=body,
                headers=self._credentials.headers(),
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 401:
            self._credentials.invalidate()
        if resp.status_code >= 400:
            raise self._error(resp)

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(
                f"{method} {path} returned a body that is not JSON: {exc}"
            ) from exc

    def close(self) -> None:
        """Close the underlying HTTP client (idempotent)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._client.close()
        logger.debug("Connection to %s closed", self._base_url)

    # -- private -----------------------------------------------------------

    @staticmethod
    def _error(resp: httpx.Response) -> Exception:
        status = None
        details = None
        message = f"HTTP {resp.status_code}"
        try:
            data = resp.json()
        except ValueError:
            data = None
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            message = error.get("message") or message
            status = error.get("status")
            details = error.get("details")
        return error_for_status(resp.status_code, message, status=status, details=details)
