"""In-process debugger agent for cloudbind.

Quick start::

    from cloudbind import debugger

    agent = debugger.new(service_name="api", service_version="v3")
    agent.start()       # snapshots and logpoints are now served
    ...
    agent.stop()
"""

from __future__ import annotations

from typing import Mapping, Optional

import httpx

from cloudbind.core.credentials import Credentials
from cloudbind.core.env import DEBUGGER_PROJECT_VARS, MetadataResolver, resolve_project_id
from cloudbind.debugger.agent import Agent, debuggee_from_env
from cloudbind.debugger.breakpoint import Breakpoint, Debuggee
from cloudbind.debugger.evaluator import compile_expression, evaluate, format_message
from cloudbind.debugger.service import DEFAULT_HOST, Service
from cloudbind.debugger.tracer import Tracer

__all__ = [
    "new",
    "default_project_id",
    "Agent",
    "Breakpoint",
    "Debuggee",
    "Service",
    "Tracer",
    "compile_expression",
    "evaluate",
    "format_message",
]


def default_project_id(
    environ: Optional[Mapping[str, str]] = None,
    metadata: Optional[MetadataResolver] = None,
) -> str:
    """Resolve the project from DEBUGGER_PROJECT, GOOGLE_CLOUD_PROJECT, GCLOUD_PROJECT, then metadata."""
    return resolve_project_id(env_vars=DEBUGGER_PROJECT_VARS, environ=environ, metadata=metadata)


def new(
    project_id: Optional[str] = None,
    *,
    service_name: Optional[str] = None,
    service_version: Optional[str] = None,
    token: Optional[str] = None,
    host: str = DEFAULT_HOST,
    transport: Optional[httpx.BaseTransport] = None,
) -> Agent:
    """Create a debugger agent (not yet started).

    Parameters
    ----------
    project_id : str, optional
        Project id; resolved from the environment when omitted.
    service_name, service_version : str, optional
        Debuggee labels; default to ``GAE_SERVICE`` / ``GAE_VERSION``.
    token : str, optional
        OAuth2 access token.
    host : str, optional
        Override the controller host.
    transport : httpx.BaseTransport, optional
        Custom HTTP transport.

    Returns
    -------
    Agent
    """
    project_id = resolve_project_id(project_id, env_vars=DEBUGGER_PROJECT_VARS)
    service = Service(Credentials(token), host=host, transport=transport)
    return Agent(service, debuggee_from_env(project_id, service_name, service_version))
