"""Transactions, read-only snapshots and mutation batches."""

from __future__ import annotations

import datetime
import logging
from typing import Any, Optional, Sequence

from cloudbind.spanner import convert
from cloudbind.spanner.results import Results
from cloudbind.spanner.session import Session

logger = logging.getLogger("cloudbind.spanner.transaction")


def read_only_options(
    *,
    strong: Optional[bool] = None,
    timestamp: Optional[datetime.datetime] = None,
    staleness: Optional[float] = None,
) -> dict[str, Any]:
    """Build ``TransactionOptions.readOnly`` from a timestamp bound.

    At most one bound may be given; strong reads are the default.
    """
    given = [b for b in (strong, timestamp, staleness) if b is not None]
    if len(given) > 1:
        raise ValueError("Only one of strong, timestamp or staleness may be given")
    if timestamp is not None:
        bound: dict[str, Any] = {"readTimestamp": convert.format_timestamp(timestamp)}
    elif staleness is not None:
        bound = {"exactStaleness": f"{float(staleness)}s"}
    else:
        bound = {"strong": True}
    bound["returnReadTimestamp"] = True
    return {"readOnly": bound}


class Commit:
    """Collects mutations to be applied atomically.

    Examples
    --------
    >>> with client.commit() as c:
    ...     c.insert("users", {"id": 1, "name": "Charlie"})
    ...     c.delete("users", [2, 3])
    """

    def __init__(self) -> None:
        self.mutations: list[dict[str, Any]] = []
        self.committed_at: Optional[str] = None

    def insert(self, table: str, rows: Any) -> None:
        self.mutations.append(convert.mutation("insert", table, rows))

    def update(self, table: str, rows: Any) -> None:
        self.mutations.append(convert.mutation("update", table, rows))

    def upsert(self, table: str, rows: Any) -> None:
        self.mutations.append(convert.mutation("insertOrUpdate", table, rows))

    save = upsert

    def replace(self, table: str, rows: Any) -> None:
        self.mutations.append(convert.mutation("replace", table, rows))

    def delete(self, table: str, keys: Any = None) -> None:
        """Delete rows by key, key list or :class:`KeyRange`; all rows when omitted."""
        self.mutations.append(convert.delete_mutation(table, keys))

    def __len__(self) -> int:
        return len(self.mutations)


class Snapshot:
    """Read-only, multi-use transaction at a single timestamp."""

    def __init__(self, session: Session, transaction_id: str) -> None:
        self.session = session
        self.transaction_id = transaction_id

    def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
        types: Optional[dict[str, Any]] = None,
    ) -> Results:
        return self.session.execute(
            sql, params=params, types=types, transaction={"id": self.transaction_id}
        )

    query = execute

    def read(
        self,
        table: str,
        columns: Sequence[str],
        keys: Any = None,
        index: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Results:
        return self.session.read(
            table,
            columns,
            keys=keys,
            index=index,
            limit=limit,
            transaction={"id": self.transaction_id},
        )


class Transaction(Snapshot):
    """Read-write transaction.

    Reads and DML execute immediately inside the transaction; mutations are
    buffered and applied by :meth:`commit`.  The client's ``transaction()``
    context manager commits on success and rolls back on error.
    """

    def __init__(self, session: Session, transaction_id: str) -> None:
        super().__init__(session, transaction_id)
        self._commit = Commit()
        self._seqno = 0
        self.committed_at: Optional[str] = None
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def execute(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
        types: Optional[dict[str, Any]] = None,
    ) -> Results:
        # DML within a read-write transaction needs a unique sequence number.
        self._seqno += 1
        return self.session.execute(
            sql,
            params=params,
            types=types,
            transaction={"id": self.transaction_id},
            seqno=self._seqno,
        )

    query = execute

    def execute_update(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
        types: Optional[dict[str, Any]] = None,
    ) -> Optional[int]:
        """Run a DML statement and return the modified row count."""
        return self.execute(sql, params, types).row_count

    # -- mutations ---------------------------------------------------------

    def insert(self, table: str, rows: Any) -> None:
        self._commit.insert(table, rows)

    def update(self, table: str, rows: Any) -> None:
        self._commit.update(table, rows)

    def upsert(self, table: str, rows: Any) -> None:
        self._commit.upsert(table, rows)

    save = upsert

    def replace(self, table: str, rows: Any) -> None:
        self._commit.replace(table, rows)

    def delete(self, table: str, keys: Any = None) -> None:
        self._commit.delete(table, keys)

    @property
    def mutations(self) -> list[dict[str, Any]]:
        return list(self._commit.mutations)

    # -- completion --------------------------------------------------------

    def commit(self) -> Optional[str]:
        """Apply buffered mutations and return the commit timestamp."""
        if self._finished:
            raise ValueError("Transaction already committed or rolled back")
        self._finished = True
        self.committed_at = self.session.commit(self._commit.mutations, self.transaction_id)
        logger.debug(
            "Transaction committed on %s (%d mutations)",
            self.session.session_id,
            len(self._commit),
        )
        return self.committed_at

    def rollback(self) -> None:
        if self._finished:
            return
        self._finished = True
        self.session.rollback(self.transaction_id)
        logger.debug("Transaction rolled back on %s", self.session.session_id)
