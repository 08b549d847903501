"""Streaming readers and writers over a backend.

BackgroundWriter hands a backend upload, which wants a single source it
can read to completion, the read end of an in-process pipe, while the
caller writes into the other end. Closing the writer flushes, signals
end-of-input and then waits for the upload, so the object only exists
once close() has returned without error.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from cloudstore.core.errors import (
    WriterCancelledError,
    WriterClosedError,
    raise_joined,
)
from cloudstore.core.logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 64 * 1024

_EOF = None


class PipeReader:
    """Read end of the pipe. Blocks until data or end-of-input arrives."""

    def __init__(self, queue: "asyncio.Queue[Optional[bytes]]"):
        self._queue = queue
        self._pending = bytearray()
        self._eof = False

    async def _fill(self) -> bool:
        """Pull one chunk into the pending buffer. False at end-of-input."""
        if self._eof:
            return False
        chunk = await self._queue.get()
        if chunk is _EOF:
            self._eof = True
            return False
        self._pending.extend(chunk)
        return True

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything until end-of-input if negative."""
        if size is None or size < 0:
            while await self._fill():
                pass
            data = bytes(self._pending)
            self._pending.clear()
            return data

        while not self._pending and await self._fill():
            pass
        data = bytes(self._pending[:size])
        del self._pending[:size]
        return data


UploadJob = Callable[[PipeReader], Awaitable[None]]


class BackgroundWriter:
    """Buffered writer feeding a concurrently running upload task.

    Must be created from within a running event loop.

    Example:
        >>> async with store.new_writer("logs/today.txt") as w:
        ...     await w.write(b"line\\n")
    """

    def __init__(self, job: UploadJob, buffer_size: int = DEFAULT_BUFFER_SIZE, name: str = ""):
        self.name = name
        self._buffer_size = buffer_size
        self._buffer = bytearray()
        self._queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._closed = False
        self._cancelled = False
        self._joined = False
        self._task = asyncio.create_task(self._run(job, PipeReader(self._queue)))

    async def _run(self, job: UploadJob, reader: PipeReader) -> None:
        try:
            await job(reader)
        except Exception as exc:
            logger.warning(
                "background_upload_failed",
                object=self.name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> int:
        """Buffer ``data`` for the upload.

        Upload failures are not reported here; they surface from close().

        Raises:
            WriterClosedError: After close()
            WriterCancelledError: After cancel()
        """
        if self._closed:
            raise WriterClosedError()
        if self._cancelled:
            raise WriterCancelledError()

        self._buffer.extend(data)
        if len(self._buffer) >= self._buffer_size:
            self._flush()
        return len(data)

    def _flush(self) -> None:
        if not self._buffer:
            return
        # A finished task reads nothing more; its error is reported by close().
        if not self._task.done():
            self._queue.put_nowait(bytes(self._buffer))
        self._buffer.clear()

    def cancel(self) -> None:
        """Abort the upload. Later writes fail; close() reports the cancellation."""
        if self._closed or self._cancelled:
            return
        self._cancelled = True
        self._buffer.clear()
        self._task.cancel()
        logger.info("background_writer_cancelled", object=self.name)

    async def close(self) -> None:
        """Flush, signal end-of-input and wait for the upload to finish.

        Idempotent once the upload's result has been collected. Raises the
        upload's error, the cancellation, or a CombinedError when there is
        more than one. If the wait itself is cancelled the upload is
        cancelled too, and a later close() reports how it ended.
        """
        if self._joined:
            return
        if not self._closed:
            self._closed = True
            if not self._cancelled:
                self._flush()
                self._queue.put_nowait(_EOF)

        try:
            await asyncio.wait({self._task})
        except asyncio.CancelledError:
            self._task.cancel()
            logger.info("background_writer_close_interrupted", object=self.name)
            raise
        self._joined = True

        errors: List[BaseException] = []
        if self._cancelled or self._task.cancelled():
            errors.append(WriterCancelledError())
        if not self._task.cancelled() and self._task.exception() is not None:
            errors.append(self._task.exception())

        if not errors:
            logger.debug("background_writer_closed", object=self.name)
        raise_joined(errors)

    async def __aenter__(self) -> "BackgroundWriter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            # The body's exception propagates; the cancellation is expected.
            self.cancel()
            try:
                await self.close()
            except Exception as close_exc:
                logger.debug(
                    "background_writer_aborted",
                    object=self.name,
                    error=str(close_exc),
                )
            return
        await self.close()


class ObjectReader:
    """Async reader over a backend download stream."""

    def __init__(self, chunks: AsyncIterator[bytes], name: str = ""):
        self.name = name
        self._chunks = chunks
        self._pending = bytearray()
        self._eof = False
        self._closed = False

    async def _fill(self) -> bool:
        if self._eof:
            return False
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self._eof = True
            return False
        self._pending.extend(chunk)
        return True

    async def read(self, size: int = -1) -> bytes:
        if self._closed:
            raise ValueError("read from closed reader")
        if size is None or size < 0:
            while await self._fill():
                pass
            data = bytes(self._pending)
            self._pending.clear()
            return data

        while len(self._pending) < size and await self._fill():
            pass
        data = bytes(self._pending[:size])
        del self._pending[:size]
        return data

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    def __aiter__(self) -> "ObjectReader":
        return self

    async def __anext__(self) -> bytes:
        if self._pending:
            data = bytes(self._pending)
            self._pending.clear()
            return data
        if not await self._fill():
            raise StopAsyncIteration
        data = bytes(self._pending)
        self._pending.clear()
        return data

    async def __aenter__(self) -> "ObjectReader":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
