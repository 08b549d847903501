"""
Storage Error Handling System

Provides standardized error codes and exceptions for every backend.
Callers see the same small set of error kinds no matter which backend
is configured; backends translate their native failures into these.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCode(str, Enum):
    """Standardized error codes for the storage client."""

    # Object errors (STORAGE_xxx)
    STORAGE_NOT_FOUND = "STORAGE_001"
    STORAGE_ALREADY_EXISTS = "STORAGE_002"

    # Usage errors (USAGE_xxx)
    USAGE_INVALID_STATE = "USAGE_001"
    USAGE_INVALID_NAME = "USAGE_002"

    # Retry budget errors (RETRY_xxx)
    RETRY_FETCH_EXHAUSTED = "RETRY_001"
    RETRY_UPLOAD_EXHAUSTED = "RETRY_002"
    RETRY_LIST_EXHAUSTED = "RETRY_003"

    # Local filesystem errors (LOCAL_xxx)
    LOCAL_FILESYSTEM = "LOCAL_001"

    # Streaming errors (STREAM_xxx)
    STREAM_WRITER_CLOSED = "STREAM_001"
    STREAM_WRITER_CANCELLED = "STREAM_002"
    STREAM_COMBINED = "STREAM_003"

    # Backend errors (BACKEND_xxx)
    BACKEND_FAILURE = "BACKEND_001"

    # Registry errors (REGISTRY_xxx)
    REGISTRY_DUPLICATE = "REGISTRY_001"
    REGISTRY_UNKNOWN = "REGISTRY_002"


class StorageError(Exception):
    """
    Base class for storage client errors.

    Every error carries a stable code, a human readable message and a
    details dict with debugging context (object name, store, attempts).
    """

    code: ErrorCode = ErrorCode.BACKEND_FAILURE

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = " ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({context})"


class ObjectNotFoundError(StorageError):
    """The object does not exist in the backing store. Never retried."""

    code = ErrorCode.STORAGE_NOT_FOUND

    def __init__(self, name: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("object not found", {"object": name, **(details or {})})
        self.name = name


class ObjectExistsError(StorageError):
    """NewObject was called for a key that already has remote content."""

    code = ErrorCode.STORAGE_ALREADY_EXISTS

    def __init__(self, name: str):
        super().__init__(
            "object already exists in backing store (use store.get)",
            {"object": name},
        )
        self.name = name


class UsageError(StorageError):
    """The caller invoked an operation the object's state does not allow."""

    code = ErrorCode.USAGE_INVALID_STATE


class InvalidObjectNameError(UsageError):
    """The object name cannot be mapped safely onto a local path."""

    code = ErrorCode.USAGE_INVALID_NAME


class LocalFilesystemError(StorageError):
    """A local cache or directory operation failed. Never retried."""

    code = ErrorCode.LOCAL_FILESYSTEM


class BackendError(StorageError):
    """A backend call failed for a reason other than a missing object."""

    code = ErrorCode.BACKEND_FAILURE


class RetryExhaustedError(StorageError):
    """An operation kept failing until the retry budget ran out.

    Attributes:
        errors: The exception raised by every attempt, in order.
    """

    def __init__(
        self,
        message: str,
        errors: Sequence[BaseException],
        details: Optional[Dict[str, Any]] = None,
    ):
        self.errors: List[BaseException] = list(errors)
        joined = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(
            f"{message}: [{joined}]",
            {"attempts": len(self.errors), **(details or {})},
        )


class FetchExhaustedError(RetryExhaustedError):
    code = ErrorCode.RETRY_FETCH_EXHAUSTED


class UploadExhaustedError(RetryExhaustedError):
    code = ErrorCode.RETRY_UPLOAD_EXHAUSTED


class ListExhaustedError(RetryExhaustedError):
    code = ErrorCode.RETRY_LIST_EXHAUSTED


class WriterClosedError(StorageError):
    code = ErrorCode.STREAM_WRITER_CLOSED

    def __init__(self, message: str = "writer already closed"):
        super().__init__(message)


class WriterCancelledError(StorageError):
    code = ErrorCode.STREAM_WRITER_CANCELLED

    def __init__(self, message: str = "writer was cancelled"):
        super().__init__(message)


class CombinedError(StorageError):
    """Several independent failures reported by one call."""

    code = ErrorCode.STREAM_COMBINED

    def __init__(self, errors: Sequence[BaseException]):
        self.errors: List[BaseException] = list(errors)
        joined = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"multiple errors: [{joined}]")


class DuplicateBackendError(StorageError):
    code = ErrorCode.REGISTRY_DUPLICATE

    def __init__(self, name: str):
        super().__init__("backend already registered", {"backend": name})


class UnknownBackendError(StorageError):
    code = ErrorCode.REGISTRY_UNKNOWN

    def __init__(self, name: str, known: Sequence[str]):
        super().__init__(
            "unknown storage backend",
            {"backend": name, "known": ",".join(known)},
        )


def raise_joined(errors: Sequence[BaseException]) -> None:
    """Raise nothing, the only error, or a CombinedError of all of them."""
    if not errors:
        return
    if len(errors) == 1:
        raise errors[0]
    raise CombinedError(errors)
