"""Project: the entry point for Spanner instances, databases and clients."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence, Union

from cloudbind.core.exceptions import NotFoundError
from cloudbind.core.jobs import Job
from cloudbind.core.paging import Page
from cloudbind.spanner.client import Client
from cloudbind.spanner.database import Database
from cloudbind.spanner.instance import (
    Instance,
    InstanceConfig,
    database_job,
    database_page,
    instance_config_page,
    instance_job,
    instance_page,
)
from cloudbind.spanner.pool import SessionPoolOptions
from cloudbind.spanner.service import Service

logger = logging.getLogger("cloudbind.spanner.project")


class Project:
    """Top-level container of instances and databases.

    Lookups of a single resource (:meth:`instance`, :meth:`instance_config`,
    :meth:`database`) return ``None`` when it does not exist; every other
    method lets :class:`NotFoundError` propagate.

    Usage::

        from cloudbind import spanner

        project = spanner.new()
        instance = project.instance("my-instance")
        db = project.client("my-instance", "my-database")
    """

    def __init__(self, service: Service) -> None:
        self.service = service

    @property
    def project_id(self) -> str:
        return self.service.project

    project = project_id

    # -- instances ---------------------------------------------------------

    def instances(self, token: Optional[str] = None, max: Optional[int] = None) -> Page[Instance]:
        return instance_page(self.service, token, max)

    def instance(self, instance_id: str) -> Optional[Instance]:
        """Return the instance, or ``None`` if it does not exist."""
        try:
            data = self.service.get_instance(instance_id)
        except NotFoundError:
            return None
        return Instance.from_api(data, self.service)

    def create_instance(
        self,
        instance_id: str,
        *,
        name: Optional[str] = None,
        config: Union[str, InstanceConfig, None] = None,
        nodes: Optional[int] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> Job[Instance]:
        """Start creating an instance; the returned job yields the new Instance."""
        if isinstance(config, InstanceConfig):
            config = config.path
        data = self.service.create_instance(
            instance_id, name=name, config=config, nodes=nodes, labels=labels
        )
        return instance_job(data, self.service)

    # -- instance configs --------------------------------------------------

    def instance_configs(
        self, token: Optional[str] = None, max: Optional[int] = None
    ) -> Page[InstanceConfig]:
        return instance_config_page(self.service, token, max)

    def instance_config(self, instance_config_id: str) -> Optional[InstanceConfig]:
        """Return the configuration, or ``None`` if it does not exist."""
        try:
            data = self.service.get_instance_config(instance_config_id)
        except NotFoundError:
            return None
        return InstanceConfig.from_api(data)

    # -- databases ---------------------------------------------------------

    def databases(
        self, instance_id: str, token: Optional[str] = None, max: Optional[int] = None
    ) -> Page[Database]:
        return database_page(self.service, instance_id, token, max)

    def database(self, instance_id: str, database_id: str) -> Optional[Database]:
        """Return the database, or ``None`` if it (or its instance) does not exist."""
        try:
            data = self.service.get_database(instance_id, database_id)
        except NotFoundError:
            return None
        return Database.from_api(data, self.service)

    def create_database(
        self, instance_id: str, database_id: str, statements: Sequence[str] = ()
    ) -> Job[Database]:
        data = self.service.create_database(instance_id, database_id, statements)
        return database_job(data, self.service)

    # -- clients -----------------------------------------------------------

    def client(
        self,
        instance_id: str,
        database_id: str,
        pool: Union[SessionPoolOptions, Mapping[str, Any], None] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> Client:
        """Create a data client with its own session pool."""
        return Client(self.service, instance_id, database_id, pool=pool, labels=labels)

    def close(self) -> None:
        """Close the HTTP connection.  Clients must be closed separately."""
        self.service.close()

    def __enter__(self) -> Project:
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Project(project_id={self.project_id!r})"
