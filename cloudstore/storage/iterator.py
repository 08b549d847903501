"""Lazy, filtered, paginated iteration over a store listing."""

from typing import TYPE_CHECKING, List, Optional

from cloudstore.core.errors import ListExhaustedError
from cloudstore.core.logging_config import get_logger
from cloudstore.storage.query import Query
from cloudstore.storage.retry import RetryPolicy, RetryState, run_with_retry

if TYPE_CHECKING:
    from cloudstore.storage.object import StoreObject
    from cloudstore.storage.store import Store


logger = get_logger(__name__)


class IteratorDone(StopAsyncIteration):
    """Raised by ObjectPageIterator.next() once every page has been consumed."""


class ObjectPageIterator:
    """Yields store objects one at a time, fetching pages on demand.

    The query's cursor only moves on to the next page once every object
    of the current page has been handed out, so a crash mid-page resumes
    at the start of that page rather than skipping objects. Each page
    fetch is retried on its own budget. Not safe for concurrent use.

    Example:
        >>> async for obj in store.objects(Query.for_prefix("logs/")):
        ...     print(obj.name)
    """

    def __init__(self, store: "Store", query: Query, retry_policy: RetryPolicy):
        self._store = store
        self._query = query.copy()
        self._retry_policy = retry_policy
        self._page: List["StoreObject"] = []
        self._index = 0
        self._next_cursor: Optional[str] = None
        self._closed = False

    @property
    def query(self) -> Query:
        return self._query

    async def _fetch_page(self) -> None:
        async def list_page(state: RetryState):
            return await self._store.list_page(self._query)

        objects, next_cursor = await run_with_retry(
            list_page,
            self._retry_policy,
            description="list",
            exhausted=ListExhaustedError,
            details={"prefix": self._query.prefix, "cursor": self._query.cursor},
        )
        self._page = objects
        self._index = 0
        self._next_cursor = next_cursor
        logger.debug(
            "iterator_page_fetched",
            prefix=self._query.prefix,
            cursor=self._query.cursor,
            count=len(objects),
            final=next_cursor == "",
        )

    async def next(self) -> "StoreObject":
        """Return the next object.

        Raises:
            IteratorDone: When the listing is exhausted
            ListExhaustedError: When a page fetch kept failing
        """
        if self._closed:
            raise IteratorDone()

        while True:
            if self._index < len(self._page):
                obj = self._page[self._index]
                self._index += 1
                return obj

            if self._next_cursor is not None:
                if self._next_cursor == "":
                    raise IteratorDone()
                self._query.cursor = self._next_cursor

            await self._fetch_page()
            # A page the filters emptied is skipped while more pages remain.
            if not self._page and not self._next_cursor:
                raise IteratorDone()

    def close(self) -> None:
        self._closed = True
        self._page = []
        self._index = 0

    def __aiter__(self) -> "ObjectPageIterator":
        return self

    async def __anext__(self) -> "StoreObject":
        return await self.next()
