"""Instances and instance configurations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence, Union

from cloudbind.core.exceptions import NotFoundError
from cloudbind.core.jobs import Job
from cloudbind.core.paging import Page
from cloudbind.spanner.client import Client
from cloudbind.spanner.database import Database
from cloudbind.spanner.pool import SessionPoolOptions
from cloudbind.spanner.service import Service

logger = logging.getLogger("cloudbind.spanner.instance")


def _parse_path(path: str, *kinds: str) -> dict[str, str]:
    """Split ``projects/p/instances/i`` style paths into ``{"projects": "p", ...}``."""
    parts = path.split("/")
    ids = dict(zip(parts[::2], parts[1::2]))
    return {kind: ids.get(kind, "") for kind in kinds}


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstanceInfo:
    """Server-reported state of an instance."""

    project_id: str
    instance_id: str
    name: str = ""
    config: str = ""
    nodes: int = 0
    state: str = "STATE_UNSPECIFIED"
    labels: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> InstanceInfo:
        ids = _parse_path(data["name"], "projects", "instances")
        return cls(
            project_id=ids["projects"],
            instance_id=ids["instances"],
            name=data.get("displayName", ""),
            config=data.get("config", ""),
            nodes=int(data.get("nodeCount", 0)),
            state=data.get("state", "STATE_UNSPECIFIED"),
            labels=dict(data.get("labels") or {}),
        )


@dataclass(frozen=True)
class InstanceConfigInfo:
    """Server-reported instance configuration."""

    project_id: str
    instance_config_id: str
    name: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> InstanceConfigInfo:
        ids = _parse_path(data["name"], "projects", "instanceConfigs")
        return cls(
            project_id=ids["projects"],
            instance_config_id=ids["instanceConfigs"],
            name=data.get("displayName", ""),
        )


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class InstanceConfig:
    """Geographic placement of an instance's nodes (e.g. ``regional-us-central1``)."""

    def __init__(self, info: InstanceConfigInfo) -> None:
        self.info = info

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> InstanceConfig:
        return cls(InstanceConfigInfo.from_api(data))

    @property
    def project_id(self) -> str:
        return self.info.project_id

    @property
    def instance_config_id(self) -> str:
        return self.info.instance_config_id

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def path(self) -> str:
        return f"projects/{self.project_id}/instanceConfigs/{self.instance_config_id}"

    def __repr__(self) -> str:
        return f"InstanceConfig(id={self.instance_config_id!r})"


class Instance:
    """A Spanner instance: the compute and storage that databases live in.

    Accessors reflect the last state fetched from the service; call
    :meth:`reload` to refresh.
    """

    def __init__(self, info: InstanceInfo, service: Service) -> None:
        self.info = info
        self.service = service

    @classmethod
    def from_api(cls, data: dict[str, Any], service: Service) -> Instance:
        return cls(InstanceInfo.from_api(data), service)

    # -- accessors ---------------------------------------------------------

    @property
    def project_id(self) -> str:
        return self.info.project_id

    @property
    def instance_id(self) -> str:
        return self.info.instance_id

    @property
    def path(self) -> str:
        return self.service.instance_path(self.instance_id)

    @property
    def name(self) -> str:
        """Display name."""
        return self.info.name

    @property
    def config(self) -> str:
        return self.info.config

    @property
    def nodes(self) -> int:
        return self.info.nodes

    @property
    def state(self) -> str:
        return self.info.state

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.info.labels)

    @property
    def creating(self) -> bool:
        return self.state == "CREATING"

    @property
    def ready(self) -> bool:
        return self.state == "READY"

    # -- lifecycle ---------------------------------------------------------

    def update(
        self,
        *,
        name: Optional[str] = None,
        nodes: Optional[int] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> Job[Instance]:
        """Change display name, node count and/or labels.

        The local snapshot is updated optimistically; the returned job tracks
        the server-side change.
        """
        data = self.service.update_instance(
            self.instance_id, name=name, nodes=nodes, labels=labels
        )
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if nodes is not None:
            changes["nodes"] = nodes
        if labels is not None:
            changes["labels"] = {str(k): str(v) for k, v in labels.items()}
        self.info = replace(self.info, **changes)
        return instance_job(data, self.service)

    save = update

    def reload(self) -> Instance:
        self.info = InstanceInfo.from_api(self.service.get_instance(self.instance_id))
        return self

    refresh = reload

    def delete(self) -> None:
        self.service.delete_instance(self.instance_id)

    # -- databases ---------------------------------------------------------

    def database(self, database_id: str) -> Optional[Database]:
        """Return the database, or ``None`` if it does not exist."""
        try:
            data = self.service.get_database(self.instance_id, database_id)
        except NotFoundError:
            return None
        return Database.from_api(data, self.service)

    def databases(self, token: Optional[str] = None, max: Optional[int] = None) -> Page[Database]:
        return database_page(self.service, self.instance_id, token, max)

    def create_database(self, database_id: str, statements: Sequence[str] = ()) -> Job[Database]:
        data = self.service.create_database(self.instance_id, database_id, statements)
        return database_job(data, self.service)

    def client(
        self,
        database_id: str,
        pool: Union[SessionPoolOptions, Mapping[str, Any], None] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> Client:
        return Client(self.service, self.instance_id, database_id, pool=pool, labels=labels)

    def __repr__(self) -> str:
        return f"Instance(id={self.instance_id!r}, state={self.state!r}, nodes={self.nodes})"


# ---------------------------------------------------------------------------
# Wiring helpers shared with Project
# ---------------------------------------------------------------------------


def instance_page(service: Service, token: Optional[str], max: Optional[int]) -> Page[Instance]:
    return Page.from_response(
        service.list_instances(token=token, max=max),
        key="instances",
        item=lambda raw: Instance.from_api(raw, service),
        fetch=lambda t, m: service.list_instances(token=t, max=m),
        max=max,
    )


def instance_config_page(
    service: Service, token: Optional[str], max: Optional[int]
) -> Page[InstanceConfig]:
    return Page.from_response(
        service.list_instance_configs(token=token, max=max),
        key="instanceConfigs",
        item=InstanceConfig.from_api,
        fetch=lambda t, m: service.list_instance_configs(token=t, max=m),
        max=max,
    )


def database_page(
    service: Service, instance_id: str, token: Optional[str], max: Optional[int]
) -> Page[Database]:
    return Page.from_response(
        service.list_databases(instance_id, token=token, max=max),
        key="databases",
        item=lambda raw: Database.from_api(raw, service),
        fetch=lambda t, m: service.list_databases(instance_id, token=t, max=m),
        max=max,
    )


def instance_job(data: dict[str, Any], service: Service) -> Job[Instance]:
    return Job(data, get=service.get_operation, wrap=lambda raw: Instance.from_api(raw, service))


def database_job(data: dict[str, Any], service: Service) -> Job[Database]:
    return Job(data, get=service.get_operation, wrap=lambda raw: Database.from_api(raw, service))
