"""Access-token credentials for the REST services.

A token is taken, in order, from the explicit ``token`` argument, the
``CLOUDBIND_ACCESS_TOKEN`` environment variable, or the metadata server's
default service account.  Metadata tokens are cached and refreshed shortly
before they expire.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Mapping, Optional

from cloudbind.core.env import MetadataResolver, default_metadata
from cloudbind.core.exceptions import AuthError

logger = logging.getLogger("cloudbind.core.credentials")

TOKEN_ENV_VAR = "CLOUDBIND_ACCESS_TOKEN"

_TOKEN_PATH = "instance/service-accounts/default/token"
# Refresh this many seconds before the server-reported expiry.
_REFRESH_MARGIN = 60.0


@dataclass(frozen=True, slots=True)
class AccessToken:
    """Bearer token plus its absolute expiry (``None`` = never expires)."""

    value: str
    expires_at: Optional[float] = None

    def expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        now = time.time() if now is None else now
        return now >= self.expires_at - _REFRESH_MARGIN


class Credentials:
    """Supplies the ``Authorization`` header for every request.

    Thread‑safe.  A single instance is shared by all services of a project.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
        metadata: Optional[MetadataResolver] = None,
    ) -> None:
        environ = os.environ if environ is None else environ
        static = token or environ.get(TOKEN_ENV_VAR)
        self._static: Optional[AccessToken] = AccessToken(static) if static else None
        self._metadata = metadata or default_metadata()
        self._cached: Optional[AccessToken] = None
        self._lock = threading.Lock()

    # -- public ------------------------------------------------------------

    def token(self) -> str:
        """Return a valid bearer token, refreshing from metadata if needed."""
        if self._static is not None:
            return self._static.value

        with self._lock:
            if self._cached is not None and not self._cached.expired():
                return self._cached.value

        # HTTP call outside the lock to avoid blocking other threads.
        fresh = self._fetch()

        with self._lock:
            self._cached = fresh

        return fresh.value

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token()}"}

    def invalidate(self) -> None:
        """Drop the cached metadata token (e.g. after a 401)."""
        with self._lock:
            self._cached = None

    # -- private -----------------------------------------------------------

    def _fetch(self) -> AccessToken:
        logger.debug("Requesting access token from metadata server")
        data = self._metadata.get_json(_TOKEN_PATH)
        if not data:
            raise AuthError(
                f"No access token given, {TOKEN_ENV_VAR} is unset and the "
                "metadata server did not provide one"
            )
        try:
            token = AccessToken(
                value=data["access_token"],
                expires_at=time.time() + float(data.get("expires_in", 3600)),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise AuthError(f"Malformed metadata token response: {exc}") from exc

        logger.debug("Access token obtained (expires in %ss)", data.get("expires_in"))
        return token
