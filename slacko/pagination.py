"""Cursor-based pagination over list-style calls."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .request import RequestSpec

_LOGGER = logging.getLogger(__name__)

Execute = Callable[[RequestSpec], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Page:
    """One page of results and the cursor for the next one."""

    items: Sequence[Any]
    next_cursor: str = ""
    data: dict[str, Any] = field(default_factory=dict, repr=False)


Extractor = Callable[[dict[str, Any]], Page]


@dataclass
class PageState:
    """Cursor bookkeeping for one pass over the pages."""

    cursor: str = ""
    has_more: bool = True
    pages_fetched: int = 0

    def advance(self, next_cursor: str) -> None:
        self.pages_fetched += 1
        self.cursor = next_cursor or ""
        self.has_more = bool(self.cursor)


def cursor_extractor(items_key: str) -> Extractor:
    """Extractor for the common ``{items_key: [...], response_metadata: {next_cursor}}`` shape."""

    def extract(data: dict[str, Any]) -> Page:
        items = data.get(items_key) or []
        metadata = data.get("response_metadata") or {}
        next_cursor = metadata.get("next_cursor") or ""
        return Page(items=items, next_cursor=next_cursor, data=data)

    return extract


class CursorPager:
    """Lazy sequence of result pages.

    Every ``async for`` starts again from the first page; the cursor state
    lives only for the duration of one iteration.

    Usage:
        pager = client.paginate("conversations.list", "channels", limit=200)
        async for page in pager:
            ...
        channels = await pager.collect()
    """

    def __init__(
        self,
        execute: Execute,
        spec: RequestSpec,
        extractor: Extractor,
        *,
        cursor_param: str = "cursor",
        max_pages: int | None = None,
    ) -> None:
        self._execute = execute
        self._spec = spec
        self._extractor = extractor
        self._cursor_param = cursor_param
        self._max_pages = max_pages

    def __aiter__(self) -> AsyncIterator[Page]:
        return self._iter_pages()

    async def _iter_pages(self) -> AsyncIterator[Page]:
        state = PageState()
        while state.has_more:
            if self._max_pages is not None and state.pages_fetched >= self._max_pages:
                _LOGGER.debug(
                    "[%s] Stopping after %d pages", self._spec.method, state.pages_fetched
                )
                return

            spec = self._spec
            if state.cursor:
                spec = spec.with_params(**{self._cursor_param: state.cursor})

            page = self._extractor(await self._execute(spec))
            state.advance(page.next_cursor)
            _LOGGER.debug(
                "[%s] Page %d: %d items (more=%s)",
                self._spec.method,
                state.pages_fetched,
                len(page.items),
                state.has_more,
            )
            yield page

    async def items(self) -> AsyncIterator[Any]:
        """Iterate over the items of every page."""
        async for page in self:
            for item in page.items:
                yield item

    async def collect(self) -> list[Any]:
        """Fetch every page and return all items."""
        return [item async for item in self.items()]
