"""Storage abstraction layer over local and cloud object stores."""

from functools import lru_cache

from cloudstore.core.config import settings
from .iterator import IteratorDone, ObjectPageIterator
from .object import ObjectState, StoreObject
from .protocol import AccessLevel, Backend, ListPage, ObjectAttrs
from .query import ObjectsResponse, Query, sort_filter
from .registry import BackendRegistry, create_store, default_registry
from .retry import RetryPolicy
from .store import Store, get_and_open
from .streams import BackgroundWriter, ObjectReader


@lru_cache()
def get_store() -> Store:
    """Factory function for the configured store.

    Returns a Store over the backend named by STORAGE_BACKEND, built from
    the default registry.

    Raises:
        UnknownBackendError: If an unknown storage backend is configured
    """
    return create_store(settings, default_registry())


__all__ = [
    "AccessLevel",
    "Backend",
    "BackendRegistry",
    "BackgroundWriter",
    "IteratorDone",
    "ListPage",
    "ObjectAttrs",
    "ObjectPageIterator",
    "ObjectReader",
    "ObjectState",
    "ObjectsResponse",
    "Query",
    "RetryPolicy",
    "Store",
    "StoreObject",
    "create_store",
    "default_registry",
    "get_and_open",
    "get_store",
    "sort_filter",
]
