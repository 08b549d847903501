"""Local filesystem storage backend.

Objects live under ``<base_path>/<bucket>/<key>``. Metadata is kept in a
JSON sidecar next to each object (``<key>.metadata``); sidecars never
show up in listings, so object names ending in ``.metadata`` are not
supported. Uploads are staged under ``<base_path>/.uploads`` and renamed
into place, so a failed upload never leaves a partial object behind.
"""

import asyncio
import json
import os
import posixpath
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, List, Tuple

import aiofiles
import aiofiles.os

from cloudstore.core.errors import BackendError, InvalidObjectNameError, ObjectNotFoundError
from cloudstore.core.logging_config import get_logger
from cloudstore.storage.protocol import ListPage, ObjectAttrs, UploadSource


logger = get_logger(__name__)

METADATA_SUFFIX = ".metadata"
UPLOAD_DIR = ".uploads"
CHUNK_SIZE = 64 * 1024


class LocalFSBackend:
    """Local filesystem storage implementation.

    Suitable for development, tests and single-machine deployments.
    """

    name = "localfs"

    def __init__(self, base_path: str, bucket: str):
        """Initialize local storage backend.

        Args:
            base_path: Root directory for file storage
            bucket: Bucket name (becomes subdirectory)
        """
        self.base_path = Path(base_path)
        self.bucket = bucket
        self.bucket_path = self.base_path / bucket
        self.upload_path = self.base_path / UPLOAD_DIR
        self.bucket_path.mkdir(parents=True, exist_ok=True)
        self.upload_path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings) -> "LocalFSBackend":
        return cls(settings.LOCALFS_PATH, settings.BUCKET)

    def _object_path(self, key: str) -> Path:
        relative = posixpath.normpath(key.lstrip("/")) if key else ""
        if not relative or relative in (".", "..") or relative.startswith("../"):
            raise InvalidObjectNameError("invalid object name", {"object": key})
        return self.bucket_path / relative

    @staticmethod
    def _metadata_path(path: Path) -> Path:
        return path.with_name(path.name + METADATA_SUFFIX)

    @staticmethod
    def _read_metadata(path: Path) -> Dict[str, str]:
        meta_path = LocalFSBackend._metadata_path(path)
        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            raise BackendError(
                "unable to read object metadata",
                {"metadata_path": str(meta_path), "error": str(exc)},
            ) from exc

    @staticmethod
    def _attrs(key: str, path: Path) -> ObjectAttrs:
        if not path.is_file():
            raise FileNotFoundError(str(path))
        stat = path.stat()
        return ObjectAttrs(
            name=key,
            updated=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            metadata=LocalFSBackend._read_metadata(path),
            size=stat.st_size,
        )

    async def get(self, key: str) -> ObjectAttrs:
        path = self._object_path(key)
        try:
            return await asyncio.to_thread(self._attrs, key, path)
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            raise ObjectNotFoundError(key, {"path": str(path)})
        except OSError as exc:
            raise BackendError("stat failed", {"object": key, "error": str(exc)}) from exc

    async def download(self, key: str) -> AsyncIterator[bytes]:
        path = self._object_path(key)

        logger.debug("local_storage_load_started", bucket=self.bucket, path=key, full_path=str(path))

        if not path.is_file():
            logger.info("local_storage_load_not_found", bucket=self.bucket, path=key)
            raise ObjectNotFoundError(key, {"path": str(path)})

        bytes_read = 0
        try:
            async with aiofiles.open(path, "rb") as f:
                while chunk := await f.read(CHUNK_SIZE):
                    bytes_read += len(chunk)
                    yield chunk
        except FileNotFoundError:
            raise ObjectNotFoundError(key, {"path": str(path)})
        except OSError as exc:
            raise BackendError("read failed", {"object": key, "error": str(exc)}) from exc

        logger.debug("local_storage_load_success", bucket=self.bucket, path=key, bytes_read=bytes_read)

    async def upload(self, key: str, metadata: Dict[str, str], source: UploadSource) -> None:
        path = self._object_path(key)
        staged = self.upload_path / f"{uuid.uuid4().hex}.tmp"
        staged_meta = self._metadata_path(staged)

        logger.debug("local_storage_save_started", bucket=self.bucket, path=key, full_path=str(path))

        try:
            bytes_written = 0
            async with aiofiles.open(staged, "wb") as f:
                while chunk := await source.read(CHUNK_SIZE):
                    await f.write(chunk)
                    bytes_written += len(chunk)

            async with aiofiles.open(staged_meta, "w", encoding="utf-8") as f:
                await f.write(json.dumps(metadata or {}))

            # Stamp the time the upload completed, not when staging began.
            now = time.time_ns()
            os.utime(staged, ns=(now, now))

            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            await aiofiles.os.replace(staged_meta, self._metadata_path(path))
            await aiofiles.os.replace(staged, path)

        except OSError as exc:
            logger.error(
                "local_storage_save_failed",
                bucket=self.bucket,
                path=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise BackendError("upload failed", {"object": key, "error": str(exc)}) from exc
        finally:
            for leftover in (staged, staged_meta):
                try:
                    leftover.unlink()
                except FileNotFoundError:
                    pass

        logger.info(
            "local_storage_save_success",
            bucket=self.bucket,
            path=key,
            bytes_written=bytes_written,
        )

    def _scan(self, prefix: str) -> List[str]:
        """All object keys starting with ``prefix``, sorted."""
        root = self.bucket_path
        if "/" in prefix:
            root = self.bucket_path / prefix.rsplit("/", 1)[0]
        if not root.is_dir():
            return []

        keys = []
        for dirpath, _, filenames in os.walk(root):
            rel_dir = Path(dirpath).relative_to(self.bucket_path).as_posix()
            for filename in filenames:
                if filename.endswith(METADATA_SUFFIX):
                    continue
                key = filename if rel_dir == "." else f"{rel_dir}/{filename}"
                if key.startswith(prefix):
                    keys.append(key)
        keys.sort()
        return keys

    def _list_sync(self, prefix: str, delimiter: str, cursor: str, page_size: int) -> ListPage:
        # Entries are (name, is_prefix) in name order; folders roll up at
        # the position of their first member.
        entries: List[Tuple[str, bool]] = []
        seen = set()
        for key in self._scan(prefix):
            if delimiter:
                rest = key[len(prefix):]
                idx = rest.find(delimiter)
                if idx >= 0:
                    folder = prefix + rest[: idx + len(delimiter)]
                    if folder not in seen:
                        seen.add(folder)
                        entries.append((folder, True))
                    continue
            entries.append((key, False))

        if cursor:
            entries = [e for e in entries if e[0] > cursor]

        page = entries[:page_size] if page_size > 0 else entries
        next_cursor = page[-1][0] if len(entries) > len(page) else ""

        result = ListPage(next_cursor=next_cursor)
        for name, is_prefix in page:
            if is_prefix:
                result.prefixes.append(name)
                continue
            try:
                result.objects.append(self._attrs(name, self.bucket_path / name))
            except FileNotFoundError:
                # Deleted between the scan and the stat.
                continue
        return result

    async def list(self, prefix: str, delimiter: str, cursor: str, page_size: int) -> ListPage:
        try:
            page = await asyncio.to_thread(self._list_sync, prefix, delimiter, cursor, page_size)
        except OSError as exc:
            raise BackendError("list failed", {"prefix": prefix, "error": str(exc)}) from exc

        logger.debug(
            "local_storage_list_success",
            bucket=self.bucket,
            prefix=prefix,
            objects=len(page.objects),
            prefixes=len(page.prefixes),
            final=page.next_cursor == "",
        )
        return page

    def _delete_sync(self, key: str, path: Path) -> None:
        if not path.is_file():
            raise ObjectNotFoundError(key, {"path": str(path)})
        path.unlink()
        try:
            self._metadata_path(path).unlink()
        except FileNotFoundError:
            pass

        parent = path.parent
        while parent != self.bucket_path and self.bucket_path in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

    async def delete(self, key: str) -> None:
        path = self._object_path(key)

        logger.debug("local_storage_delete_started", bucket=self.bucket, path=key, full_path=str(path))

        try:
            await asyncio.to_thread(self._delete_sync, key, path)
        except ObjectNotFoundError:
            logger.info("local_storage_delete_not_found", bucket=self.bucket, path=key)
            raise
        except OSError as exc:
            logger.error(
                "local_storage_delete_failed",
                bucket=self.bucket,
                path=key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise BackendError("delete failed", {"object": key, "error": str(exc)}) from exc

        logger.info("local_storage_delete_success", bucket=self.bucket, path=key)
