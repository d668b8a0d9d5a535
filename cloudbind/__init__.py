"""cloudbind — Python bindings for Cloud Spanner and the Cloud Debugger.

Quick start::

    from cloudbind import spanner, debugger

    # Spanner
    with spanner.new("my-project") as project:
        db = project.client("my-instance", "my-database")
        db.insert("users", {"id": 1, "name": "Ada"})
        for row in db.execute("SELECT id, name FROM users"):
            print(row)
        db.close()

    # Debugger agent
    agent = debugger.new("my-project")
    agent.start()
"""

from __future__ import annotations

import logging

from cloudbind import debugger, spanner
from cloudbind.core.exceptions import (
    AbortedError,
    AlreadyExistsError,
    AuthError,
    ClientClosedError,
    CloudError,
    ConfigurationError,
    EvaluationError,
    NotFoundError,
    ProjectResolutionError,
    SessionLimitError,
    TransportError,
)
from cloudbind.debugger import Agent
from cloudbind.spanner import Client, Project

logger = logging.getLogger("cloudbind")

__all__ = [
    "spanner",
    "debugger",
    "Project",
    "Client",
    "Agent",
    "CloudError",
    "TransportError",
    "AuthError",
    "NotFoundError",
    "AlreadyExistsError",
    "AbortedError",
    "ConfigurationError",
    "ProjectResolutionError",
    "SessionLimitError",
    "ClientClosedError",
    "EvaluationError",
]

__version__ = "0.1.0"
