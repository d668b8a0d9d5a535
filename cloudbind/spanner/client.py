"""Database client: pooled sessions plus transactional reads and writes.

Usage::

    db = spanner.client("my-instance", "my-database")

    results = db.execute("SELECT * FROM users WHERE id = @id", params={"id": 1})
    for row in results:
        print(row["name"])

    with db.transaction() as tx:
        tx.execute_update("UPDATE users SET active = true WHERE id = 1")
        tx.insert("audit", {"user_id": 1, "action": "activate"})

    db.close()
"""

from __future__ import annotations

import datetime
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Sequence, Union

from cloudbind.core.exceptions import ClientClosedError
from cloudbind.spanner.pool import SessionPool, SessionPoolOptions
from cloudbind.spanner.range import KeyRange
from cloudbind.spanner.results import Results
from cloudbind.spanner.service import Service
from cloudbind.spanner.session import Session
from cloudbind.spanner.transaction import Commit, Snapshot, Transaction, read_only_options

logger = logging.getLogger("cloudbind.spanner.client")


class Client:
    """Reads and writes data in one database.

    Parameters
    ----------
    service:
        Service facade of the owning project.
    instance_id / database_id:
        The database this client is bound to.
    pool:
        Session pool settings, as :class:`SessionPoolOptions` or a mapping
        with any of ``min``, ``max``, ``keepalive``, ``write_ratio``,
        ``fail``, ``threads``, ``interval``.  Invalid values raise
        :class:`ConfigurationError` here, before any session is created.
    labels:
        Labels applied to every session the client creates.
    """

    def __init__(
        self,
        service: Service,
        instance_id: str,
        database_id: str,
        *,
        pool: Union[SessionPoolOptions, Mapping[str, Any], None] = None,
        labels: Optional[dict[str, str]] = None,
        start: bool = True,
    ) -> None:
        options = pool if isinstance(pool, SessionPoolOptions) else SessionPoolOptions.from_dict(pool)
        self.service = service
        self.instance_id = instance_id
        self.database_id = database_id
        self.labels = labels
        self._closed = False
        self._pool = SessionPool(self.session, options, start=start)
        logger.debug("Client created for %s", self.database_path)

    @property
    def project_id(self) -> str:
        return self.service.project

    @property
    def database_path(self) -> str:
        return self.service.database_path(self.instance_id, self.database_id)

    @property
    def pool(self) -> SessionPool:
        return self._pool

    @property
    def closed(self) -> bool:
        return self._closed

    def session(self) -> Session:
        """Create a new session server-side (bypasses the pool)."""
        data = self.service.create_session(self.database_path, labels=self.labels)
        return Session.from_api(data, self.service)

    # -- reads -------------------------------------------------------------

    def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
        types: Optional[dict[str, Any]] = None,
        *,
        strong: Optional[bool] = None,
        timestamp: Optional[datetime.datetime] = None,
        staleness: Optional[float] = None,
    ) -> Results:
        """Run a query in a single-use read-only transaction."""
        selector = {
            "singleUse": read_only_options(strong=strong, timestamp=timestamp, staleness=staleness)
        }
        with self._lease() as session:
            return session.execute(sql, params=params, types=types, transaction=selector)

    query = execute

    def read(
        self,
        table: str,
        columns: Sequence[str],
        keys: Any = None,
        index: Optional[str] = None,
        limit: Optional[int] = None,
        *,
        strong: Optional[bool] = None,
        timestamp: Optional[datetime.datetime] = None,
        staleness: Optional[float] = None,
    ) -> Results:
        """Read rows by key (all rows when ``keys`` is omitted)."""
        selector = {
            "singleUse": read_only_options(strong=strong, timestamp=timestamp, staleness=staleness)
        }
        with self._lease() as session:
            return session.read(
                table, columns, keys=keys, index=index, limit=limit, transaction=selector
            )

    # -- writes ------------------------------------------------------------

    def insert(self, table: str, rows: Any) -> Optional[str]:
        with self.commit() as c:
            c.insert(table, rows)
        return c.committed_at

    def update(self, table: str, rows: Any) -> Optional[str]:
        with self.commit() as c:
            c.update(table, rows)
        return c.committed_at

    def upsert(self, table: str, rows: Any) -> Optional[str]:
        with self.commit() as c:
            c.upsert(table, rows)
        return c.committed_at

    save = upsert

    def replace(self, table: str, rows: Any) -> Optional[str]:
        with self.commit() as c:
            c.replace(table, rows)
        return c.committed_at

    def delete(self, table: str, keys: Any = None) -> Optional[str]:
        with self.commit() as c:
            c.delete(table, keys)
        return c.committed_at

    @contextmanager
    def commit(self) -> Iterator[Commit]:
        """Collect mutations and apply them in one single-use transaction.

        Nothing is sent when the block raises.  The commit timestamp is set on
        the yielded object's ``committed_at`` afterwards.
        """
        batch = Commit()
        yield batch
        if not batch.mutations:
            return
        with self._lease(write=True) as session:
            batch.committed_at = session.commit(batch.mutations)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run a read-write transaction.

        Commits on clean exit and rolls back when the block raises.  The
        session is returned to the pool either way.  An aborted commit raises
        :class:`AbortedError`; retrying is left to the caller.
        """
        with self._lease(write=True) as session:
            transaction_id = session.transaction_id or session.begin_transaction()
            tx = Transaction(session, transaction_id)
            try:
                yield tx
            except BaseException:
                try:
                    tx.rollback()
                except Exception:
                    logger.warning("Rollback failed on %s", session.session_id, exc_info=True)
                raise
            if not tx.finished:
                tx.commit()

    @contextmanager
    def snapshot(
        self,
        *,
        strong: Optional[bool] = None,
        timestamp: Optional[datetime.datetime] = None,
        staleness: Optional[float] = None,
    ) -> Iterator[Snapshot]:
        """Run several reads at one consistent timestamp."""
        options = read_only_options(strong=strong, timestamp=timestamp, staleness=staleness)
        with self._lease() as session:
            transaction_id = session.begin_transaction(options)
            yield Snapshot(session, transaction_id)

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def range(
        begin: Any,
        end: Any,
        exclude_begin: bool = False,
        exclude_end: bool = False,
    ) -> KeyRange:
        return KeyRange(begin, end, exclude_begin=exclude_begin, exclude_end=exclude_end)

    def close(self) -> None:
        """Close the session pool, deleting its sessions (idempotent)."""
        if self._closed:
            return
        self._closed = True
        self._pool.close()
        logger.info("Client for %s closed", self.database_path)

    def reset(self) -> None:
        """Recreate every pooled session."""
        self._ensure_open()
        self._pool.reset()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    # -- private -----------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClientClosedError(f"Client for {self.database_path} has been closed")

    @contextmanager
    def _lease(self, write: bool = False) -> Iterator[Session]:
        self._ensure_open()
        lease = self._pool.write_session() if write else self._pool.session()
        with lease as session:
            yield session

    def __repr__(self) -> str:
        return f"Client(database={self.database_path!r}, closed={self._closed})"
