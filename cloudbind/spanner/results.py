"""Query and read results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Optional

from cloudbind.spanner.convert import decode_row


@dataclass(frozen=True, slots=True)
class Field:
    """One column of a result set."""

    name: str
    type: dict[str, Any]

    @property
    def code(self) -> str:
        return self.type.get("code", "TYPE_CODE_UNSPECIFIED")


class Results:
    """Decoded rows of an executeSql or read response.

    Rows are exposed as dicts keyed by column name (position for unnamed
    columns) with values converted to Python types.
    """

    def __init__(self, data: dict[str, Any]) -> None:
        metadata = data.get("metadata") or {}
        raw_fields = (metadata.get("rowType") or {}).get("fields") or []
        self._raw_fields = raw_fields
        self.fields = [Field(f.get("name", ""), f.get("type") or {}) for f in raw_fields]
        self._rows = data.get("rows") or []
        self.stats: dict[str, Any] = data.get("stats") or {}
        self.transaction_id: Optional[str] = (metadata.get("transaction") or {}).get("id")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Results:
        return cls(data)

    def rows(self) -> Iterator[dict[str, Any]]:
        for values in self._rows:
            yield decode_row(values, self._raw_fields)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return self.rows()

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def row_count(self) -> Optional[int]:
        """Rows modified by a DML statement, when reported."""
        for key in ("rowCountExact", "rowCountLowerBound"):
            if key in self.stats:
                return int(self.stats[key])
        return None

    def __repr__(self) -> str:
        return f"Results(fields={[f.name for f in self.fields]}, rows={len(self)})"
