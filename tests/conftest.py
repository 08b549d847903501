"""
Pytest configuration and shared fixtures for cloudstore tests.

This module provides:
- Retry policy fixtures that never actually sleep
- In-memory backend and store fixtures
- Local filesystem backend and store fixtures
"""

from pathlib import Path
from typing import List

import pytest

from cloudstore.storage.local import LocalFSBackend
from cloudstore.storage.retry import RetryPolicy
from cloudstore.storage.store import Store
from mock_backend import InMemoryBackend


# ============================================================================
# Retry fixtures
# ============================================================================

@pytest.fixture
def sleeps() -> List[float]:
    """Backoff delays requested by the retry executor, in order."""
    return []


@pytest.fixture
def retry_policy(sleeps: List[float]) -> RetryPolicy:
    """Three attempts, upper-bound jitter, and a sleep that only records."""
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryPolicy(
        max_attempts=3,
        max_backoff=16.0,
        sleep=fake_sleep,
        uniform=lambda low, high: high,
    )


# ============================================================================
# In-memory store fixtures
# ============================================================================

@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def store(backend: InMemoryBackend, cache_root: Path, retry_policy: RetryPolicy) -> Store:
    """Store over the in-memory backend with a small page size."""
    return Store(
        backend,
        bucket="test-bucket",
        cache_path=str(cache_root),
        page_size=5,
        retry_policy=retry_policy,
        list_retry_policy=retry_policy,
        writer_buffer_size=8,
        store_id="teststore",
    )


# ============================================================================
# Local filesystem fixtures
# ============================================================================

@pytest.fixture
def local_backend(tmp_path: Path) -> LocalFSBackend:
    return LocalFSBackend(str(tmp_path / "storage"), "test-bucket")


@pytest.fixture
def local_store(local_backend: LocalFSBackend, cache_root: Path, retry_policy: RetryPolicy) -> Store:
    return Store(
        local_backend,
        bucket="test-bucket",
        cache_path=str(cache_root),
        page_size=3000,
        retry_policy=retry_policy,
        list_retry_policy=retry_policy,
        store_id="localstore",
    )
