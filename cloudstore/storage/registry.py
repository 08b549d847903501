"""Backend registry and store construction.

Backends are registered explicitly by name against a factory taking the
settings object. Nothing registers itself on import.
"""

from typing import Callable, Dict, List

from cloudstore.core.config import Settings
from cloudstore.core.errors import DuplicateBackendError, UnknownBackendError
from cloudstore.core.logging_config import get_logger
from cloudstore.storage.protocol import Backend
from cloudstore.storage.retry import RetryPolicy
from cloudstore.storage.store import Store


logger = get_logger(__name__)

BackendFactory = Callable[[Settings], Backend]


class BackendRegistry:
    """Maps backend names (the STORAGE_BACKEND setting) to factories."""

    def __init__(self):
        self._factories: Dict[str, BackendFactory] = {}

    def register(self, name: str, factory: BackendFactory) -> None:
        """Register ``factory`` under ``name``.

        Raises:
            DuplicateBackendError: If ``name`` is already registered
        """
        if name in self._factories:
            raise DuplicateBackendError(name)
        self._factories[name] = factory

    def create(self, name: str, settings: Settings) -> Backend:
        """Build the backend registered under ``name``.

        Raises:
            UnknownBackendError: If nothing is registered under ``name``
        """
        try:
            factory = self._factories[name]
        except KeyError:
            raise UnknownBackendError(name, self.names()) from None
        return factory(settings)

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories


def _local_factory(settings: Settings) -> Backend:
    from cloudstore.storage.local import LocalFSBackend
    return LocalFSBackend.from_settings(settings)


def _s3_factory(settings: Settings) -> Backend:
    # Lazy import to avoid requiring aioboto3 when using local storage
    from cloudstore.storage.s3 import S3Backend
    return S3Backend.from_settings(settings)


def default_registry() -> BackendRegistry:
    """A registry holding the built-in backends: "localfs" and "s3"."""
    registry = BackendRegistry()
    registry.register("localfs", _local_factory)
    registry.register("s3", _s3_factory)
    return registry


def create_store(settings: Settings, registry: BackendRegistry) -> Store:
    """Build a Store for ``settings.STORAGE_BACKEND`` from ``registry``."""
    backend = registry.create(settings.STORAGE_BACKEND, settings)
    return Store(
        backend,
        bucket=settings.BUCKET,
        cache_path=settings.CACHE_PATH,
        page_size=settings.PAGE_SIZE,
        retry_policy=RetryPolicy.from_settings(settings),
        list_retry_policy=RetryPolicy.from_settings(settings, attempts=settings.ITERATOR_RETRIES),
        writer_buffer_size=settings.WRITER_BUFFER_SIZE,
    )
