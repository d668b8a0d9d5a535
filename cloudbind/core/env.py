"""Environment-derived defaults.

MetadataResolver — answers project id / token queries from the compute metadata server.
resolve_project_id — ordered project id fallback over an explicit environment snapshot.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Mapping, Optional, Sequence

import httpx

from cloudbind.core.exceptions import ProjectResolutionError

logger = logging.getLogger("cloudbind.core.env")

# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

_DEFAULT_METADATA_URL = "http://metadata.google.internal"
_METADATA_PREFIX = "/computeMetadata/v1/"
_METADATA_HEADERS = {"Metadata-Flavor": "Google"}
_METADATA_TIMEOUT = 2.0

SPANNER_PROJECT_VARS: tuple[str, ...] = (
    "SPANNER_PROJECT",
    "GOOGLE_CLOUD_PROJECT",
    "GCLOUD_PROJECT",
)

DEBUGGER_PROJECT_VARS: tuple[str, ...] = (
    "DEBUGGER_PROJECT",
    "GOOGLE_CLOUD_PROJECT",
    "GCLOUD_PROJECT",
)


# ---------------------------------------------------------------------------
# Metadata server
# ---------------------------------------------------------------------------


class MetadataResolver:
    """Queries the compute metadata server.

    Values are cached for the lifetime of the resolver instance so each key
    costs at most one HTTP call.  A failed lookup caches ``None`` too: off
    cloud, the server never appears later.  Thread‑safe.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = (
            base_url or os.environ.get("GCE_METADATA_HOST_URL") or _DEFAULT_METADATA_URL
        ).rstrip("/")
        self._transport = transport
        self._cache: dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    # -- public ------------------------------------------------------------

    def project_id(self) -> Optional[str]:
        """Return the project id of the host, or ``None`` off cloud."""
        return self.get("project/project-id")

    def get(self, path: str) -> Optional[str]:
        """Return a metadata value as text, calling the server if not cached."""
        with self._lock:
            if path in self._cache:
                return self._cache[path]

        # HTTP call outside the lock to avoid blocking other threads.
        value = self._fetch(path)

        with self._lock:
            self._cache[path] = value

        return value

    def get_json(self, path: str) -> Optional[dict[str, Any]]:
        """Fetch a JSON metadata document.  Never cached (tokens expire)."""
        try:
            resp = self._request(path)
        except httpx.HTTPError as exc:
            logger.debug("Metadata server unreachable: %s", exc)
            return None
        if resp.status_code != 200:
            logger.debug("Metadata %s returned HTTP %d", path, resp.status_code)
            return None
        return resp.json()

    def invalidate(self) -> None:
        """Clear the cached values."""
        with self._lock:
            self._cache.clear()

    # -- private -----------------------------------------------------------

    def _request(self, path: str) -> httpx.Response:
        url = f"{self._base_url}{_METADATA_PREFIX}{path}"
        with httpx.Client(timeout=_METADATA_TIMEOUT, transport=self._transport) as client:
            return client.get(url, headers=_METADATA_HEADERS)

    def _fetch(self, path: str) -> Optional[str]:
        logger.debug("Querying metadata server for %s", path)
        try:
            resp = self._request(path)
        except httpx.HTTPError as exc:
            logger.debug("Metadata server unreachable: %s", exc)
            return None

        if resp.status_code != 200:
            logger.debug("Metadata %s returned HTTP %d", path, resp.status_code)
            return None
        return resp.text.strip() or None


_default_metadata = MetadataResolver()


def default_metadata() -> MetadataResolver:
    """Return the process-wide metadata resolver."""
    return _default_metadata


# ---------------------------------------------------------------------------
# Project id resolution
# ---------------------------------------------------------------------------


def resolve_project_id(
    project_id: Optional[str] = None,
    *,
    env_vars: Sequence[str] = SPANNER_PROJECT_VARS,
    environ: Optional[Mapping[str, str]] = None,
    metadata: Optional[MetadataResolver] = None,
) -> str:
    """Resolve a project id.

    Order: the explicit ``project_id``, then each variable of ``env_vars``
    looked up in ``environ`` (``os.environ`` when omitted), then the
    metadata server.  Empty values are skipped.

    Raises
    ------
    ProjectResolutionError
        When every source comes up empty.
    """
    if project_id:
        return project_id

    environ = os.environ if environ is None else environ
    for name in env_vars:
        value = environ.get(name)
        if value:
            logger.debug("Project id taken from %s", name)
            return value

    metadata = metadata or default_metadata()
    value = metadata.project_id()
    if value:
        logger.debug("Project id taken from metadata server")
        return value

    raise ProjectResolutionError(
        "No project id given and none found in "
        f"{', '.join(env_vars)} or the metadata server"
    )
