"""Spanner REST service facade.

One method per remote operation.  Each builds the request body from typed
arguments, calls the endpoint and returns the raw JSON response; wrapping
into resource objects is the caller's job.  ``NotFoundError`` is raised for
missing resources; all other faults propagate unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from cloudbind.core.connection import Connection
from cloudbind.core.credentials import Credentials

logger = logging.getLogger("cloudbind.spanner.service")

DEFAULT_HOST = "https://spanner.googleapis.com"
_API_VERSION = "v1"


class Service:
    """Thin wrapper over the Spanner admin and data REST APIs.

    Parameters
    ----------
    project:
        Project id every path is scoped to.
    credentials:
        Bearer token supplier.
    host:
        Override the default API host (emulators, tests).
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional ``httpx`` transport.
    """

    def __init__(
        self,
        project: str,
        credentials: Credentials,
        *,
        host: str = DEFAULT_HOST,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.project = project
        self.credentials = credentials
        self.host = host
        self.connection = Connection(
            f"{host.rstrip('/')}/{_API_VERSION}",
            credentials,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.connection.close()

    # -- paths -------------------------------------------------------------

    def project_path(self) -> str:
        return f"projects/{self.project}"

    def instance_path(self, instance_id: str) -> str:
        if "/" in instance_id:
            return instance_id
        return f"{self.project_path()}/instances/{instance_id}"

    def instance_config_path(self, config: str) -> str:
        if "/" in config:
            return config
        return f"{self.project_path()}/instanceConfigs/{config}"

    def database_path(self, instance_id: str, database_id: str) -> str:
        return f"{self.instance_path(instance_id)}/databases/{database_id}"

    # -- instances ---------------------------------------------------------

    def list_instances(self, token: Optional[str] = None, max: Optional[int] = None) -> dict[str, Any]:
        return self.connection.get(
            f"{self.project_path()}/instances",
            params={"pageToken": token, "pageSize": max},
        )

    def get_instance(self, instance_id: str) -> dict[str, Any]:
        return self.connection.get(self.instance_path(instance_id))

    def create_instance(
        self,
        instance_id: str,
        *,
        name: Optional[str] = None,
        config: Optional[str] = None,
        nodes: Optional[int] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        instance: dict[str, Any] = {"name": self.instance_path(instance_id)}
        if name is not None:
            instance["displayName"] = name
        if config is not None:
            instance["config"] = self.instance_config_path(config)
        if nodes is not None:
            instance["nodeCount"] = nodes
        if labels is not None:
            instance["labels"] = {str(k): str(v) for k, v in labels.items()}
        logger.info("Creating instance %s", instance_id)
        return self.connection.post(
            f"{self.project_path()}/instances",
            {"instanceId": instance_id, "instance": instance},
        )

    def update_instance(
        self,
        instance_id: str,
        *,
        name: Optional[str] = None,
        nodes: Optional[int] = None,
        labels: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        instance: dict[str, Any] = {"name": self.instance_path(instance_id)}
        mask = []
        if name is not None:
            instance["displayName"] = name
            mask.append("displayName")
        if nodes is not None:
            instance["nodeCount"] = nodes
            mask.append("nodeCount")
        if labels is not None:
            instance["labels"] = {str(k): str(v) for k, v in labels.items()}
            mask.append("labels")
        return self.connection.patch(
            self.instance_path(instance_id),
            {"instance": instance, "fieldMask": ",".join(mask)},
        )

    def delete_instance(self, instance_id: str) -> dict[str, Any]:
        logger.info("Deleting instance %s", instance_id)
        return self.connection.delete(self.instance_path(instance_id))

    # -- instance configs --------------------------------------------------

    def list_instance_configs(
        self, token: Optional[str] = None, max: Optional[int] = None
    ) -> dict[str, Any]:
        return self.connection.get(
            f"{self.project_path()}/instanceConfigs",
            params={"pageToken": token, "pageSize": max},
        )

    def get_instance_config(self, config: str) -> dict[str, Any]:
        return self.connection.get(self.instance_config_path(config))

    # -- databases ---------------------------------------------------------

    def list_databases(
        self, instance_id: str, token: Optional[str] = None, max: Optional[int] = None
    ) -> dict[str, Any]:
        return self.connection.get(
            f"{self.instance_path(instance_id)}/databases",
            params={"pageToken": token, "pageSize": max},
        )

    def get_database(self, instance_id: str, database_id: str) -> dict[str, Any]:
        return self.connection.get(self.database_path(instance_id, database_id))

    def create_database(
        self,
        instance_id: str,
        database_id: str,
        statements: Sequence[str] = (),
    ) -> dict[str, Any]:
        logger.info("Creating database %s/%s", instance_id, database_id)
        return self.connection.post(
            f"{self.instance_path(instance_id)}/databases",
            {
                "createStatement": f"CREATE DATABASE `{database_id}`",
                "extraStatements": list(statements),
            },
        )

    def drop_database(self, instance_id: str, database_id: str) -> dict[str, Any]:
        logger.info("Dropping database %s/%s", instance_id, database_id)
        return self.connection.delete(self.database_path(instance_id, database_id))

    def get_database_ddl(self, instance_id: str, database_id: str) -> dict[str, Any]:
        return self.connection.get(f"{self.database_path(instance_id, database_id)}/ddl")

    def update_database_ddl(
        self,
        instance_id: str,
        database_id: str,
        statements: Sequence[str],
        operation_id: Optional[str] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"statements": list(statements)}
        if operation_id:
            body["operationId"] = operation_id
        return self.connection.patch(
            f"{self.database_path(instance_id, database_id)}/ddl", body
        )

    # -- sessions ----------------------------------------------------------

    def create_session(
        self, database_path: str, labels: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        session: dict[str, Any] = {}
        if labels:
            session["labels"] = labels
        return self.connection.post(f"{database_path}/sessions", {"session": session})

    def batch_create_sessions(
        self, database_path: str, count: int, labels: Optional[dict[str, str]] = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"sessionCount": count}
        if labels:
            body["sessionTemplate"] = {"labels": labels}
        return self.connection.post(f"{database_path}/sessions:batchCreate", body)

    def get_session(self, session_name: str) -> dict[str, Any]:
        return self.connection.get(session_name)

    def delete_session(self, session_name: str) -> dict[str, Any]:
        return self.connection.delete(session_name)

    # -- data --------------------------------------------------------------

    def execute_sql(
        self,
        session_name: str,
        sql: str,
        *,
        transaction: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        param_types: Optional[dict[str, Any]] = None,
        seqno: Optional[int] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"sql": sql}
        if transaction:
            body["transaction"] = transaction
        if params:
            body["params"] = params
            body["paramTypes"] = param_types or {}
        if seqno is not None:
            body["seqno"] = str(seqno)
        return self.connection.post(f"{session_name}:executeSql", body)

    def read(
        self,
        session_name: str,
        table: str,
        columns: Sequence[str],
        key_set: dict[str, Any],
        *,
        transaction: Optional[dict[str, Any]] = None,
        index: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "table": table,
            "columns": list(columns),
            "keySet": key_set,
        }
        if transaction:
            body["transaction"] = transaction
        if index:
            body["index"] = index
        if limit is not None:
            body["limit"] = str(limit)
        return self.connection.post(f"{session_name}:read", body)

    def begin_transaction(
        self, session_name: str, options: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        return self.connection.post(
            f"{session_name}:beginTransaction",
            {"options": options or {"readWrite": {}}},
        )

    def commit(
        self,
        session_name: str,
        mutations: Sequence[dict[str, Any]],
        transaction_id: Optional[str] = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"mutations": list(mutations)}
        if transaction_id:
            body["transactionId"] = transaction_id
        else:
            body["singleUseTransaction"] = {"readWrite": {}}
        return self.connection.post(f"{session_name}:commit", body)

    def rollback(self, session_name: str, transaction_id: str) -> dict[str, Any]:
        return self.connection.post(
            f"{session_name}:rollback", {"transactionId": transaction_id}
        )

    # -- operations --------------------------------------------------------

    def get_operation(self, name: str) -> dict[str, Any]:
        return self.connection.get(name)

    def __repr__(self) -> str:
        return f"Service(project={self.project!r}, host={self.host!r})"
