"""Databases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

from cloudbind.core.jobs import Job
from cloudbind.spanner.client import Client
from cloudbind.spanner.pool import SessionPoolOptions
from cloudbind.spanner.service import Service

logger = logging.getLogger("cloudbind.spanner.database")


@dataclass(frozen=True)
class DatabaseInfo:
    """Server-reported state of a database."""

    project_id: str
    instance_id: str
    database_id: str
    state: str = "STATE_UNSPECIFIED"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> DatabaseInfo:
        parts = data["name"].split("/")
        ids = dict(zip(parts[::2], parts[1::2]))
        return cls(
            project_id=ids.get("projects", ""),
            instance_id=ids.get("instances", ""),
            database_id=ids.get("databases", ""),
            state=data.get("state", "STATE_UNSPECIFIED"),
        )


class Database:
    """A database inside an instance."""

    def __init__(self, info: DatabaseInfo, service: Service) -> None:
        self.info = info
        self.service = service
        self._ddl: Optional[list[str]] = None

    @classmethod
    def from_api(cls, data: dict[str, Any], service: Service) -> Database:
        return cls(DatabaseInfo.from_api(data), service)

    @property
    def project_id(self) -> str:
        return self.info.project_id

    @property
    def instance_id(self) -> str:
        return self.info.instance_id

    @property
    def database_id(self) -> str:
        return self.info.database_id

    @property
    def path(self) -> str:
        return self.service.database_path(self.instance_id, self.database_id)

    @property
    def state(self) -> str:
        return self.info.state

    @property
    def creating(self) -> bool:
        return self.state == "CREATING"

    @property
    def ready(self) -> bool:
        return self.state == "READY"

    def ddl(self, force: bool = False) -> list[str]:
        """The schema's DDL statements, cached after the first call."""
        if self._ddl is None or force:
            data = self.service.get_database_ddl(self.instance_id, self.database_id)
            self._ddl = list(data.get("statements") or [])
        return list(self._ddl)

    def update(
        self, statements: Sequence[str], operation_id: Optional[str] = None
    ) -> Job[None]:
        """Apply DDL statements; returns the schema-change job."""
        data = self.service.update_database_ddl(
            self.instance_id, self.database_id, statements, operation_id
        )
        self._ddl = None
        return Job(data, get=self.service.get_operation)

    def drop(self) -> None:
        self.service.drop_database(self.instance_id, self.database_id)

    def reload(self) -> Database:
        self.info = DatabaseInfo.from_api(
            self.service.get_database(self.instance_id, self.database_id)
        )
        return self

    refresh = reload

    def client(
        self,
        pool: Union[SessionPoolOptions, Mapping[str, Any], None] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> Client:
        return Client(self.service, self.instance_id, self.database_id, pool=pool, labels=labels)

    def __repr__(self) -> str:
        return f"Database(id={self.database_id!r}, state={self.state!r})"
