"""Cloud Spanner bindings for cloudbind.

Quick start::

    from cloudbind import spanner

    project = spanner.new()                    # project id from the environment
    db = project.client("my-instance", "my-database", pool={"min": 5})

    with db.transaction() as tx:
        for row in tx.execute("SELECT id, name FROM users"):
            print(row["id"], row["name"])

    db.close()
"""

from __future__ import annotations

from typing import Mapping, Optional

import httpx

from cloudbind.core.credentials import Credentials
from cloudbind.core.env import SPANNER_PROJECT_VARS, MetadataResolver, resolve_project_id
from cloudbind.spanner.client import Client
from cloudbind.spanner.database import Database, DatabaseInfo
from cloudbind.spanner.instance import Instance, InstanceConfig, InstanceConfigInfo, InstanceInfo
from cloudbind.spanner.pool import SessionPool, SessionPoolOptions
from cloudbind.spanner.project import Project
from cloudbind.spanner.range import KeyRange
from cloudbind.spanner.results import Field, Results
from cloudbind.spanner.service import DEFAULT_HOST, Service
from cloudbind.spanner.session import Session
from cloudbind.spanner.transaction import Commit, Snapshot, Transaction

__all__ = [
    "new",
    "default_project_id",
    "Project",
    "Instance",
    "InstanceInfo",
    "InstanceConfig",
    "InstanceConfigInfo",
    "Database",
    "DatabaseInfo",
    "Client",
    "Session",
    "SessionPool",
    "SessionPoolOptions",
    "Transaction",
    "Snapshot",
    "Commit",
    "Results",
    "Field",
    "KeyRange",
    "Service",
]


def default_project_id(
    environ: Optional[Mapping[str, str]] = None,
    metadata: Optional[MetadataResolver] = None,
) -> str:
    """Resolve the project from SPANNER_PROJECT, GOOGLE_CLOUD_PROJECT, GCLOUD_PROJECT, then metadata."""
    return resolve_project_id(env_vars=SPANNER_PROJECT_VARS, environ=environ, metadata=metadata)


def new(
    project_id: Optional[str] = None,
    *,
    token: Optional[str] = None,
    host: str = DEFAULT_HOST,
    timeout: float = 60.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> Project:
    """Create a Spanner project handle.

    Parameters
    ----------
    project_id : str, optional
        Project id; resolved from the environment when omitted.
    token : str, optional
        OAuth2 access token; taken from ``CLOUDBIND_ACCESS_TOKEN`` or the
        metadata server when omitted.
    host : str, optional
        Override the API host (e.g. an emulator).
    timeout : float, optional
        Per-request timeout in seconds (default: 60).
    transport : httpx.BaseTransport, optional
        Custom HTTP transport.

    Returns
    -------
    Project

    Examples
    --------
    >>> from cloudbind import spanner
    >>> project = spanner.new("my-project")
    >>> instance = project.instance("my-instance")
    """
    project_id = resolve_project_id(project_id, env_vars=SPANNER_PROJECT_VARS)
    credentials = Credentials(token)
    service = Service(project_id, credentials, host=host, timeout=timeout, transport=transport)
    return Project(service)
