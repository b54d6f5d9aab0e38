"""
Cursor pagination

Twitch exposes archive videos and video comments through the same opaque
cursor contract. collect_from_cursor drains such a resource page by page.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")


class PaginationError(RuntimeError):
    """Raised when a resource reports more pages without a usable cursor."""


@dataclass
class Page(Generic[T]):
    items: List[T] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
    total_count: Optional[int] = None


# fetch(cursor, items_so_far) -> next page
PageFetcher = Callable[[Optional[str], List[T]], Awaitable[Page[T]]]


async def collect_from_cursor(fetch: PageFetcher[T]) -> List[T]:
    """
    Fetch every page of a cursor-paginated resource.

    The first call receives cursor None. Items are accumulated in the order the
    server returned them until a page reports has_more=False. Errors raised by
    fetch are not retried and abort the whole collection.

    Args:
        fetch: Coroutine function returning the page after the given cursor.
            It also receives the items collected so far (read-only, useful for
            progress logging).

    Returns:
        All items across all pages

    Raises:
        PaginationError: If a page claims more results but gives no new cursor
    """
    items: List[T] = []
    cursor: Optional[str] = None

    while True:
        page = await fetch(cursor, items)
        items.extend(page.items)

        if not page.has_more:
            return items

        if page.next_cursor is None or page.next_cursor == cursor:
            raise PaginationError(
                f"Resource reported more pages after cursor {cursor!r} "
                f"but returned next cursor {page.next_cursor!r}"
            )
        cursor = page.next_cursor
