"""Token-based pagination.

List operations return a :class:`Page`: a ``list`` of wrapped items plus the
continuation ``token`` for the next page.  An empty or absent token marks
the last page.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, Iterable, Iterator, Optional, TypeVar

T = TypeVar("T")

# fetch(token, max) -> raw response dict
Fetcher = Callable[[Optional[str], Optional[int]], dict]


class Page(list, Generic[T]):
    """One page of results.

    Examples
    --------
    >>> page = project.instances()
    >>> for instance in page.all():
    ...     print(instance.instance_id)
    """

    def __init__(
        self,
        items: Iterable[T],
        *,
        token: Optional[str],
        fetch: Fetcher,
        wrap: Callable[[dict], Page[T]],
        max: Optional[int] = None,
    ) -> None:
        super().__init__(items)
        self.token = token or None
        self._fetch = fetch
        self._wrap = wrap
        self._max = max

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        *,
        key: str,
        item: Callable[[dict], T],
        fetch: Fetcher,
        max: Optional[int] = None,
    ) -> Page[T]:
        """Build a page from a list response, wiring ``next_page()`` to ``fetch``."""

        def wrap(resp: dict) -> Page[T]:
            return cls.from_response(resp, key=key, item=item, fetch=fetch, max=max)

        return cls(
            (item(raw) for raw in data.get(key) or []),
            token=data.get("nextPageToken"),
            fetch=fetch,
            wrap=wrap,
            max=max,
        )

    def has_next(self) -> bool:
        return self.token is not None

    def next_page(self) -> Optional[Page[T]]:
        """Fetch the following page, or ``None`` on the last one."""
        if not self.has_next():
            return None
        return self._wrap(self._fetch(self.token, self._max))

    def all(self, request_limit: Optional[int] = None) -> Iterator[T]:
        """Iterate over this page and every following one.

        ``request_limit`` caps the number of additional API calls.
        """
        page: Optional[Page[T]] = self
        requests = 0
        while page is not None:
            yield from page
            if request_limit is not None and requests >= request_limit:
                return
            page = page.next_page()
            requests += 1

    def __repr__(self) -> str:
        return f"Page(items={len(self)}, token={self.token!r})"
