"""Debugger controller REST facade."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from cloudbind.core.connection import Connection
from cloudbind.core.credentials import Credentials

logger = logging.getLogger("cloudbind.debugger.service")

DEFAULT_HOST = "https://clouddebugger.googleapis.com"
_API_VERSION = "v2"

# The controller holds a list request open for up to ~40s before answering
# with ``waitExpired``.
_POLL_TIMEOUT = 60.0


class Service:
    """Controller endpoints an agent needs: register, poll and report."""

    def __init__(
        self,
        credentials: Credentials,
        *,
        host: str = DEFAULT_HOST,
        timeout: float = _POLL_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.credentials = credentials
        self.host = host
        self.connection = Connection(
            f"{host.rstrip('/')}/{_API_VERSION}",
            credentials,
            timeout=timeout,
            transport=transport,
        )

    def register_debuggee(self, debuggee: dict[str, Any]) -> dict[str, Any]:
        return self.connection.post("controller/debuggees/register", {"debuggee": debuggee})

    def list_active_breakpoints(
        self, debuggee_id: str, wait_token: Optional[str] = None
    ) -> dict[str, Any]:
        return self.connection.get(
            f"controller/debuggees/{debuggee_id}/breakpoints",
            params={"waitToken": wait_token, "successOnTimeout": "true"},
        )

    def update_active_breakpoint(
        self, debuggee_id: str, breakpoint: dict[str, Any]
    ) -> dict[str, Any]:
        logger.debug("Reporting breakpoint %s", breakpoint.get("id"))
        return self.connection.put(
            f"controller/debuggees/{debuggee_id}/breakpoints/{breakpoint['id']}",
            {"breakpoint": breakpoint},
        )

    def close(self) -> None:
        self.connection.close()
