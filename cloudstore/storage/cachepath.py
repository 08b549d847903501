"""Local cache file naming and content-type helpers."""

import mimetypes
import os
from pathlib import Path
from typing import Dict

from cloudstore.core.errors import InvalidObjectNameError, LocalFilesystemError


CACHE_FILE_EXT = ".cache"
CONTENT_TYPE_KEY = "content_type"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _cache_segment(segment: str) -> str:
    # Must stay injective: distinct names map to distinct segments.
    segment = segment.replace("%", "%25")
    if segment == "":
        return "%"
    if segment == ".":
        return "%2E"
    return segment


def cache_path_for(cache_root: str, name: str, store_id: str) -> str:
    """Map an object to its local cache file.

    The object's directory structure is kept under ``cache_root`` and the
    file name gets a ``.<store_id>.cache`` suffix, so two stores sharing a
    cache root never collide. Path segments are escaped rather than
    normalised: ``a//b``, ``./a/b`` and ``a/b/`` each get their own file.

    Example:
        >>> cache_path_for("/tmp/c", "prefix/test.csv", "ab12")
        '/tmp/c/prefix/test.csv.ab12.cache'
        >>> cache_path_for("/tmp/c", "a//b", "ab12")
        '/tmp/c/a/%/b.ab12.cache'
    """
    if not name or "\x00" in name:
        raise InvalidObjectNameError("object name cannot be mapped to a cache path", {"object": name})

    segments = name.split("/")
    if ".." in segments:
        raise InvalidObjectNameError(
            "object name escapes the cache root",
            {"object": name, "cache_root": cache_root},
        )

    relative = "/".join(_cache_segment(s) for s in segments)
    return os.path.join(cache_root, f"{relative}.{store_id}{CACHE_FILE_EXT}")


def ensure_dir(filename: str) -> None:
    """Create the parent directory of ``filename`` if missing.

    Raises:
        LocalFilesystemError: If the parent exists but is not a directory,
            or cannot be created
    """
    parent = Path(filename).parent
    if parent.exists():
        if not parent.is_dir():
            raise LocalFilesystemError(
                "filename's dir exists but isn't a directory",
                {"filename": filename, "dir": str(parent)},
            )
        return

    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise LocalFilesystemError(
            "unable to create path",
            {"filename": filename, "dir": str(parent), "error": str(exc)},
        ) from exc


def content_type(name: str) -> str:
    """Guess a MIME type from the name's extension."""
    guessed, _ = mimetypes.guess_type(name)
    return guessed or DEFAULT_CONTENT_TYPE


def ensure_content_type(name: str, metadata: Dict[str, str]) -> str:
    """Fill in ``metadata[CONTENT_TYPE_KEY]`` when unset and return it."""
    if not metadata.get(CONTENT_TYPE_KEY):
        metadata[CONTENT_TYPE_KEY] = content_type(name)
    return metadata[CONTENT_TYPE_KEY]
