"""Server-side session handle."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Sequence

from cloudbind.core.exceptions import NotFoundError
from cloudbind.spanner import convert
from cloudbind.spanner.results import Results
from cloudbind.spanner.service import Service

logger = logging.getLogger("cloudbind.spanner.session")


class Session:
    """A session scoped to one database.

    Owned by the pool until leased.  ``transaction_id`` is set when a
    read-write transaction has been begun ahead of use; ``invalid`` marks a
    session the pool must discard on release instead of reusing.
    """

    def __init__(self, data: dict[str, Any], service: Service) -> None:
        self.name: str = data["name"]
        self.service = service
        self.transaction_id: Optional[str] = None
        self.invalid = False
        self.last_updated_at = time.monotonic()

    @classmethod
    def from_api(cls, data: dict[str, Any], service: Service) -> Session:
        return cls(data, service)

    @property
    def session_id(self) -> str:
        return self.name.rsplit("/", 1)[-1]

    @property
    def has_transaction(self) -> bool:
        return self.transaction_id is not None

    def touch(self) -> None:
        self.last_updated_at = time.monotonic()

    def idle_since(self, seconds: float, now: Optional[float] = None) -> bool:
        """True when the session has been idle for longer than ``seconds``."""
        now = time.monotonic() if now is None else now
        return self.last_updated_at + seconds < now

    # -- remote calls ------------------------------------------------------

    def execute(
        self,
        sql: str,
        *,
        params: Optional[dict[str, Any]] = None,
        types: Optional[dict[str, Any]] = None,
        transaction: Optional[dict[str, Any]] = None,
        seqno: Optional[int] = None,
    ) -> Results:
        encoded, param_types = convert.encode_params(params, types)
        data = self._call(
            self.service.execute_sql,
            self.name,
            sql,
            transaction=transaction,
            params=encoded,
            param_types=param_types,
            seqno=seqno,
        )
        return Results.from_api(data)

    def read(
        self,
        table: str,
        columns: Sequence[str],
        *,
        keys: Any = None,
        index: Optional[str] = None,
        limit: Optional[int] = None,
        transaction: Optional[dict[str, Any]] = None,
    ) -> Results:
        data = self._call(
            self.service.read,
            self.name,
            table,
            columns,
            convert.key_set(keys),
            transaction=transaction,
            index=index,
            limit=limit,
        )
        return Results.from_api(data)

    def begin_transaction(self, options: Optional[dict[str, Any]] = None) -> str:
        """Begin a transaction on this session and return its id."""
        data = self._call(self.service.begin_transaction, self.name, options)
        transaction_id = data["id"]
        if options is None or "readWrite" in options:
            self.transaction_id = transaction_id
        return transaction_id

    def commit(
        self,
        mutations: Sequence[dict[str, Any]],
        transaction_id: Optional[str] = None,
    ) -> Optional[str]:
        """Commit ``mutations`` and return the commit timestamp string."""
        try:
            data = self._call(self.service.commit, self.name, mutations, transaction_id)
        finally:
            if transaction_id and transaction_id == self.transaction_id:
                self.transaction_id = None
        return data.get("commitTimestamp")

    def rollback(self, transaction_id: str) -> None:
        try:
            self._call(self.service.rollback, self.name, transaction_id)
        finally:
            if transaction_id == self.transaction_id:
                self.transaction_id = None

    def keepalive(self) -> None:
        """Ping the session so the service does not expire it.

        Sessions carrying a pre-allocated transaction get a fresh one instead,
        since the old one may have timed out server-side.
        """
        if self.has_transaction:
            self.transaction_id = None
            self.begin_transaction()
        else:
            self.execute("SELECT 1")

    def delete(self) -> None:
        """Delete the session server-side; a session already gone is fine."""
        try:
            self.service.delete_session(self.name)
        except NotFoundError:
            logger.debug("Session %s already deleted", self.session_id)

    # -- private -----------------------------------------------------------

    def _call(self, fn: Any, *args: Any, **kwargs: Any) -> dict[str, Any]:
        try:
            data = fn(*args, **kwargs)
        except NotFoundError:
            # The service expired or deleted this session.
            self.invalid = True
            raise
        self.touch()
        return data

    def __repr__(self) -> str:
        return f"Session(id={self.session_id!r}, transaction={self.has_transaction})"
