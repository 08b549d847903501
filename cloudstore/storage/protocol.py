"""Storage backend protocol definition."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Protocol


class AccessLevel(int, Enum):
    """Permission level an object is opened with."""

    READ_ONLY = 0
    READ_WRITE = 1


@dataclass
class ObjectAttrs:
    """Remote attributes of one object as reported by a backend."""

    name: str
    updated: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    size: int = 0


@dataclass
class ListPage:
    """One page of a backend listing.

    An empty ``next_cursor`` marks the final page.
    """

    objects: List[ObjectAttrs] = field(default_factory=list)
    prefixes: List[str] = field(default_factory=list)
    next_cursor: str = ""


class UploadSource(Protocol):
    """Anything an upload can read to completion."""

    async def read(self, size: int = -1) -> bytes:
        ...


class Backend(Protocol):
    """Protocol defining the capability set every storage backend provides.

    The object state machine, page iterator and streaming writer only ever
    talk to a backend through these calls, so any provider (blob service,
    local filesystem, file-transfer protocol) can sit behind a Store.
    Implementations must tolerate concurrent use from many objects.
    """

    name: str

    async def get(self, key: str) -> ObjectAttrs:
        """Fetch attributes of one object.

        Raises:
            ObjectNotFoundError: If the key does not exist
        """
        ...

    def download(self, key: str) -> AsyncIterator[bytes]:
        """Stream an object's bytes in chunks.

        Raises:
            ObjectNotFoundError: If the key does not exist
        """
        ...

    async def upload(self, key: str, metadata: Dict[str, str], source: UploadSource) -> None:
        """Write an object, reading ``source`` until it returns b"".

        A failed upload must not leave a partial object visible.
        """
        ...

    async def list(self, prefix: str, delimiter: str, cursor: str, page_size: int) -> ListPage:
        """List one page of objects (and folder prefixes when delimited).

        Args:
            prefix: Only keys starting with this prefix
            delimiter: When set, keys containing it past the prefix are
                rolled up into ``ListPage.prefixes``
            cursor: Opaque position returned as ``next_cursor`` by the
                previous page, or "" for the first page
            page_size: Maximum number of entries in the page
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove an object and any sidecar metadata.

        Raises:
            ObjectNotFoundError: If the key does not exist
        """
        ...
