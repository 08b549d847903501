"""Object handles backed by a local cache file.

Opening an object pulls the remote copy (if any) into a cache file the
caller reads and writes directly. Sync and Close push the cache file
back to the backend. Both directions go through the retry executor, so
transient backend failures are retried while local filesystem failures
surface at once.

Lifecycle::

    UNOPENED --open()--> OPENED_READ_ONLY | OPENED_READ_WRITE --close()--> CLOSED
    CLOSED --open()--> (re-fetches the remote copy)

An object is owned by one caller at a time; it is not safe to open or
close it from several tasks concurrently.
"""

import os
from contextlib import aclosing
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

import aiofiles
import aiofiles.os

from cloudstore.core.errors import (
    FetchExhaustedError,
    LocalFilesystemError,
    ObjectNotFoundError,
    UploadExhaustedError,
    UsageError,
)
from cloudstore.core.logging_config import get_logger
from cloudstore.storage.cachepath import cache_path_for, ensure_content_type, ensure_dir
from cloudstore.storage.protocol import AccessLevel, ObjectAttrs
from cloudstore.storage.retry import RetryState, run_with_retry

if TYPE_CHECKING:
    from cloudstore.storage.store import Store


logger = get_logger(__name__)


class ObjectState(str, Enum):
    UNOPENED = "unopened"
    OPENED_READ_ONLY = "opened_read_only"
    OPENED_READ_WRITE = "opened_read_write"
    CLOSED = "closed"


class StoreObject:
    """Handle to one object in a Store.

    Created by ``Store.new_object`` (nothing remote assumed), ``Store.get``
    (existence confirmed, metadata populated) or by listing.
    """

    def __init__(
        self,
        store: "Store",
        name: str,
        attrs: Optional[ObjectAttrs] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self._store = store
        self.name = name
        self._attrs = attrs
        self._updated: Optional[datetime] = attrs.updated if attrs else None
        if attrs is not None:
            self._metadata = dict(attrs.metadata)
        else:
            self._metadata = dict(metadata or {})
        self.cache_path = cache_path_for(store.cache_path, name, store.id)
        self._cached: Any = None
        self._state = ObjectState.UNOPENED

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"StoreObject(name={self.name!r}, state={self._state.value})"

    @property
    def updated(self) -> Optional[datetime]:
        return self._updated

    @property
    def metadata(self) -> Dict[str, str]:
        return self._metadata

    def set_metadata(self, metadata: Dict[str, str]) -> None:
        self._metadata = dict(metadata)

    @property
    def storage_source(self) -> str:
        return self._store.type

    @property
    def state(self) -> ObjectState:
        return self._state

    @property
    def opened(self) -> bool:
        return self._state in (ObjectState.OPENED_READ_ONLY, ObjectState.OPENED_READ_WRITE)

    @property
    def readonly(self) -> bool:
        return self._state == ObjectState.OPENED_READ_ONLY

    @property
    def file(self):
        """The open cache file handle, or None when not open."""
        return self._cached

    def _details(self) -> Dict[str, str]:
        return {"object": self.name, "store": self._store.id, "cache_path": self.cache_path}

    # ------------------------------------------------------------------
    # local cache file primitives, never retried
    # ------------------------------------------------------------------

    async def _create_cache_file(self):
        try:
            return await aiofiles.open(self.cache_path, "w+b")
        except OSError as exc:
            raise LocalFilesystemError(
                "could not create cache file", {**self._details(), "error": str(exc)}
            ) from exc

    async def _recreate_cache_file(self, cached):
        """Throw away a partially downloaded cache file and start a new one."""
        try:
            await cached.close()
            await aiofiles.os.remove(self.cache_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise LocalFilesystemError(
                "error resetting the cache file", {**self._details(), "error": str(exc)}
            ) from exc
        return await self._create_cache_file()

    async def _write_cache(self, cached, data: bytes) -> int:
        try:
            return await cached.write(data)
        except OSError as exc:
            raise LocalFilesystemError(
                "could not write cache file", {**self._details(), "error": str(exc)}
            ) from exc

    async def _remove_cache_file(self) -> None:
        try:
            await aiofiles.os.remove(self.cache_path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise LocalFilesystemError(
                "could not remove cache file", {**self._details(), "error": str(exc)}
            ) from exc

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def open(self, access: AccessLevel = AccessLevel.READ_WRITE):
        """Copy the remote object into the cache file and open it.

        Returns:
            The aiofiles handle of the cache file. Positioned at the start.

        Raises:
            UsageError: If the object is already open
            FetchExhaustedError: If the download kept failing
            LocalFilesystemError: If the cache file cannot be created
        """
        if self.opened:
            raise UsageError("the store object is already opened", self._details())

        readonly = access == AccessLevel.READ_ONLY
        backend = self._store.backend

        ensure_dir(self.cache_path)
        cached = await self._create_cache_file()

        logger.debug("object_open_started", readonly=readonly, **self._details())

        async def fetch(state: RetryState) -> None:
            nonlocal cached
            if self._attrs is None:
                try:
                    self._adopt(await backend.get(self.name))
                except ObjectNotFoundError:
                    # New object, nothing to download.
                    return

            try:
                async with aclosing(backend.download(self.name)) as chunks:
                    async for chunk in chunks:
                        await self._write_cache(cached, chunk)
            except (ObjectNotFoundError, LocalFilesystemError):
                raise
            except Exception:
                cached = await self._recreate_cache_file(cached)
                raise

        try:
            await run_with_retry(
                fetch,
                self._store.retry_policy,
                description="fetch",
                exhausted=FetchExhaustedError,
                details={"object": self.name, "cache_path": self.cache_path},
            )

            try:
                if readonly:
                    await cached.close()
                    cached = await aiofiles.open(self.cache_path, "rb")
                else:
                    await cached.flush()
                    await cached.seek(0)
            except OSError as exc:
                raise LocalFilesystemError(
                    "error opening cache file", {**self._details(), "error": str(exc)}
                ) from exc
        except BaseException:
            await cached.close()
            await self._remove_cache_file()
            raise

        self._cached = cached
        self._state = ObjectState.OPENED_READ_ONLY if readonly else ObjectState.OPENED_READ_WRITE
        logger.info("object_open_success", readonly=readonly, **self._details())
        return cached

    def _adopt(self, attrs: ObjectAttrs) -> None:
        self._attrs = attrs
        self._updated = attrs.updated
        for key, value in attrs.metadata.items():
            self._metadata.setdefault(key, value)

    async def read(self, size: int = -1) -> bytes:
        if not self.opened:
            raise UsageError("object isn't opened", self._details())
        return await self._cached.read(size)

    async def write(self, data: bytes) -> int:
        """Write to the cache file. Not uploaded until sync() or close().

        Opens the object read-write first when it isn't open yet.
        """
        if not self.opened:
            await self.open(AccessLevel.READ_WRITE)
        if self.readonly:
            raise UsageError("trying to write a readonly object", self._details())
        return await self._write_cache(self._cached, data)

    async def sync(self) -> None:
        """Upload the cache file's full contents with the current metadata.

        Raises:
            UsageError: If the object is not open read-write
            UploadExhaustedError: If the upload kept failing
        """
        if not self.opened:
            raise UsageError("object isn't opened", self._details())
        if self.readonly:
            raise UsageError("trying to sync a readonly object", self._details())

        try:
            await self._cached.flush()
        except OSError as exc:
            raise LocalFilesystemError(
                "could not flush cache file", {**self._details(), "error": str(exc)}
            ) from exc

        await self._upload_cache_file()

    async def _upload_cache_file(self) -> None:
        ensure_content_type(self.name, self._metadata)
        backend = self._store.backend

        try:
            source = await aiofiles.open(self.cache_path, "rb")
        except OSError as exc:
            raise LocalFilesystemError(
                "couldn't open cache file for syncing", {**self._details(), "error": str(exc)}
            ) from exc

        async def upload(state: RetryState) -> None:
            try:
                await source.seek(0)
            except OSError as exc:
                raise LocalFilesystemError(
                    "error seeking to start of cache file", {**self._details(), "error": str(exc)}
                ) from exc
            await backend.upload(self.name, dict(self._metadata), source)

        try:
            await run_with_retry(
                upload,
                self._store.retry_policy,
                description="sync",
                exhausted=UploadExhaustedError,
                details={"object": self.name, "cache_path": self.cache_path},
            )
        finally:
            await source.close()

        logger.info("object_sync_success", **self._details())

    async def close(self) -> None:
        """Close the object, uploading it first when opened read-write.

        The cache file is always removed and the object always ends up
        CLOSED, even when the upload fails; the upload's error is still
        raised. Closing an object that isn't open does nothing.
        """
        if not self.opened:
            return

        readonly = self.readonly
        cached, self._cached = self._cached, None
        error: Optional[BaseException] = None

        try:
            try:
                if not readonly:
                    await cached.flush()
                    os.fsync(cached.fileno())
                await cached.close()
            except OSError as exc:
                raise LocalFilesystemError(
                    "error on sync and closing cache file", {**self._details(), "error": str(exc)}
                ) from exc

            if not readonly:
                await self._upload_cache_file()
        except BaseException as exc:
            error = exc

        try:
            await self._remove_cache_file()
        except LocalFilesystemError as exc:
            logger.error("object_cache_cleanup_failed", error=str(exc), **self._details())
            if error is None:
                error = exc
        finally:
            self._state = ObjectState.CLOSED

        if error is not None:
            logger.warning(
                "object_close_failed",
                error_type=type(error).__name__,
                error=str(error),
                **self._details(),
            )
            raise error

        logger.debug("object_close_success", readonly=readonly, **self._details())

    async def release(self) -> None:
        """Drop the local cache copy without uploading. Safe at any time."""
        if self._cached is not None:
            cached, self._cached = self._cached, None
            try:
                await cached.close()
            except OSError as exc:
                logger.warning("object_release_close_failed", error=str(exc), **self._details())
        if self.opened:
            self._state = ObjectState.CLOSED
        await self._remove_cache_file()

    async def delete(self) -> None:
        """Remove the remote object (and sidecar metadata) and the local copy."""
        await self.release()
        await self._store.delete(self.name)
        self._attrs = None

    async def __aenter__(self) -> "StoreObject":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.release()
            return
        await self.close()
