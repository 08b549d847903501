"""Store: the entry point for working with objects in one bucket."""

import uuid
from typing import Dict, List, Optional, Tuple

from cloudstore.core.errors import (
    FetchExhaustedError,
    ListExhaustedError,
    ObjectExistsError,
    ObjectNotFoundError,
)
from cloudstore.core.logging_config import get_logger
from cloudstore.storage.cachepath import CONTENT_TYPE_KEY, content_type, ensure_content_type
from cloudstore.storage.iterator import ObjectPageIterator
from cloudstore.storage.object import StoreObject
from cloudstore.storage.protocol import AccessLevel, Backend
from cloudstore.storage.query import ObjectsResponse, Query
from cloudstore.storage.retry import RetryPolicy, RetryState, run_with_retry
from cloudstore.storage.streams import DEFAULT_BUFFER_SIZE, BackgroundWriter, ObjectReader


logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 3000
COPY_CHUNK_SIZE = 1024 * 1024


class Store:
    """A bucket in some backend, plus the local cache its objects use.

    Every remote call made through the store, or through an object it
    hands out, is retried according to ``retry_policy``; page fetches made
    by iterators use ``list_retry_policy``.

    Args:
        backend: Provider implementing the Backend protocol
        bucket: Bucket name, informational for the backends that don't
            take it at construction
        cache_path: Root directory for local cache files
        page_size: Default number of entries per listing call
        retry_policy: Retry budget for get/open/sync/delete
        list_retry_policy: Retry budget for each page fetched by an iterator
        writer_buffer_size: Bytes buffered by a BackgroundWriter before a
            chunk is handed to the upload
        store_id: Distinguishes this store's cache files; random by default
    """

    def __init__(
        self,
        backend: Backend,
        *,
        bucket: str,
        cache_path: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        retry_policy: Optional[RetryPolicy] = None,
        list_retry_policy: Optional[RetryPolicy] = None,
        writer_buffer_size: int = DEFAULT_BUFFER_SIZE,
        store_id: Optional[str] = None,
    ):
        self.backend = backend
        self.bucket = bucket
        self.cache_path = cache_path
        self.page_size = page_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.list_retry_policy = list_retry_policy or RetryPolicy(max_attempts=5)
        self.writer_buffer_size = writer_buffer_size
        self.id = store_id or uuid.uuid4().hex

        logger.info(
            "store_initialized",
            store_type=self.type,
            bucket=bucket,
            store_id=self.id,
            cache_path=cache_path,
        )

    @property
    def type(self) -> str:
        """Name of the backend, e.g. "localfs" or "s3"."""
        return self.backend.name

    def __str__(self) -> str:
        return f"{self.type}://{self.bucket}/ ({self.id})"

    def __repr__(self) -> str:
        return f"Store(type={self.type!r}, bucket={self.bucket!r}, id={self.id!r})"

    async def new_object(self, name: str) -> StoreObject:
        """A handle for an object that doesn't exist yet.

        Nothing is written remotely until the object is synced or closed.

        Raises:
            ObjectExistsError: If the backend already holds ``name``
            FetchExhaustedError: If the existence check kept failing
        """
        async def check_exists(state: RetryState):
            return await self.backend.get(name)

        try:
            await run_with_retry(
                check_exists,
                self.retry_policy,
                description="new_object",
                exhausted=FetchExhaustedError,
                details={"object": name},
            )
        except ObjectNotFoundError:
            return StoreObject(self, name, metadata={CONTENT_TYPE_KEY: content_type(name)})
        raise ObjectExistsError(name)

    async def get(self, name: str) -> StoreObject:
        """A handle for an existing object with its metadata populated.

        Raises:
            ObjectNotFoundError: Immediately, without retrying
            FetchExhaustedError: If the backend kept failing
        """
        async def get_attrs(state: RetryState):
            return await self.backend.get(name)

        attrs = await run_with_retry(
            get_attrs,
            self.retry_policy,
            description="get",
            exhausted=FetchExhaustedError,
            details={"object": name},
        )
        return StoreObject(self, name, attrs)

    async def delete(self, name: str) -> None:
        """Remove ``name`` (and its sidecar metadata) from the backend."""
        async def delete_object(state: RetryState):
            await self.backend.delete(name)

        await run_with_retry(
            delete_object,
            self.retry_policy,
            description="delete",
            details={"object": name},
        )
        logger.info("store_object_deleted", object=name, store_id=self.id)

    def _page_size(self, query: Query) -> int:
        return query.page_size if query.page_size > 0 else self.page_size

    async def list_page(self, query: Query) -> Tuple[List[StoreObject], str]:
        """Fetch and filter the page at ``query.cursor``. Not retried."""
        page = await self.backend.list(
            query.prefix, query.delimiter, query.cursor, self._page_size(query)
        )
        objects = [StoreObject(self, attrs.name, attrs) for attrs in page.objects]
        return query.apply_filters(objects), page.next_cursor

    async def list(self, query: Optional[Query] = None) -> ObjectsResponse:
        """List one page of objects.

        Pass the response's ``next_token`` back as ``query.cursor`` to get
        the following page. For walking a whole listing prefer objects().
        """
        query = query or Query.all()

        async def list_objects(state: RetryState):
            return await self.list_page(query)

        objects, next_token = await run_with_retry(
            list_objects,
            self.retry_policy,
            description="list",
            exhausted=ListExhaustedError,
            details={"prefix": query.prefix},
        )
        return ObjectsResponse(objects=objects, next_token=next_token)

    def objects(self, query: Optional[Query] = None) -> ObjectPageIterator:
        """Iterate every object matching ``query``, one page at a time."""
        return ObjectPageIterator(self, query or Query.all(), self.list_retry_policy)

    async def folders(self, query: Optional[Query] = None) -> List[str]:
        """Folder names directly under ``query.prefix``.

        Uses "/" as the delimiter when the query doesn't set one.
        """
        query = (query or Query.all()).copy()
        if not query.delimiter:
            query.delimiter = "/"

        folders: List[str] = []
        while True:
            async def list_folders(state: RetryState):
                return await self.backend.list(
                    query.prefix, query.delimiter, query.cursor, self._page_size(query)
                )

            page = await run_with_retry(
                list_folders,
                self.list_retry_policy,
                description="folders",
                exhausted=ListExhaustedError,
                details={"prefix": query.prefix},
            )
            folders.extend(page.prefixes)
            if not page.next_cursor:
                return folders
            query.cursor = page.next_cursor

    def new_writer(self, name: str, metadata: Optional[Dict[str, str]] = None) -> BackgroundWriter:
        """Stream bytes straight to the backend without a cache file.

        The upload runs in a background task and is not retried; its
        outcome is reported by the writer's close(). Must be called from
        within a running event loop.
        """
        metadata = dict(metadata or {})
        ensure_content_type(name, metadata)

        async def upload(reader) -> None:
            await self.backend.upload(name, metadata, reader)

        logger.debug("store_writer_opened", object=name, store_id=self.id)
        return BackgroundWriter(upload, buffer_size=self.writer_buffer_size, name=name)

    async def new_reader(self, name: str) -> ObjectReader:
        """Stream an existing object's bytes without a cache file.

        Raises:
            ObjectNotFoundError: If ``name`` doesn't exist
        """
        await self.get(name)
        return ObjectReader(self.backend.download(name), name=name)

    async def copy(self, src: StoreObject, dst: StoreObject) -> None:
        """Copy ``src``'s contents to ``dst`` through the local cache.

        ``dst`` is uploaded with its own metadata. Both objects end up
        closed.
        """
        await src.open(AccessLevel.READ_ONLY)
        try:
            fout = await dst.open(AccessLevel.READ_WRITE)
            try:
                while chunk := await src.read(COPY_CHUNK_SIZE):
                    await dst.write(chunk)
                await fout.truncate()
            except BaseException:
                await dst.release()
                raise
        finally:
            await src.close()

        await dst.close()
        logger.info("store_object_copied", src=src.name, dst=dst.name, store_id=self.id)

    async def move(self, src: StoreObject, dst: StoreObject) -> None:
        """Copy ``src`` to ``dst``, then delete ``src``."""
        await self.copy(src, dst)
        await src.delete()


async def get_and_open(store: Store, name: str, access: AccessLevel = AccessLevel.READ_ONLY) -> StoreObject:
    """Get ``name`` from ``store`` and open it in one step."""
    obj = await store.get(name)
    await obj.open(access)
    return obj


__all__ = ["Store", "get_and_open"]
