"""Key ranges for reads and deletes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class KeyRange:
    """A range of primary keys.

    ``begin`` and ``end`` are a single key value or a list for composite keys.
    Both ends are inclusive unless excluded.
    """

    begin: Any
    end: Any
    exclude_begin: bool = False
    exclude_end: bool = False

    @property
    def begin_closed(self) -> bool:
        return not self.exclude_begin

    @property
    def end_closed(self) -> bool:
        return not self.exclude_end
