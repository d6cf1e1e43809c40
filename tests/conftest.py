"""Pytest configuration for shared fixtures."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, List

import pytest

from service_registry.config import RegistrySettings
from service_registry.errors import StoreUnavailableError
from service_registry.store.memory import MemoryStore


class FlakyStore(MemoryStore):
    """Memory store whose reads can be made to fail on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.failing_gets = 0
        self.get_calls = 0

    async def read(self, key, *, recursive=False):
        self.get_calls += 1
        if self.failing_gets > 0:
            self.failing_gets -= 1
            raise StoreUnavailableError("store offline")
        return await super().read(key, recursive=recursive)


async def _wait_for_condition(
    condition_fn: Callable[[], bool],
    timeout: float = 2.0,
    poll_interval: float = 0.01,
) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition_fn():
            return True
        await asyncio.sleep(poll_interval)
    return condition_fn()


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> RegistrySettings:
    return RegistrySettings(
        etcd_hosts="http://etcd:2379",
        ttl=120,
        lookup_attempts=5,
        lookup_delay=0.01,
        options_attempts=5,
        options_delay_step=0.01,
        watch_reconnect_delay=0.01,
        watch_reconnect_max_delay=0.05,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def wait_for_condition():
    return _wait_for_condition


@pytest.fixture
def reported_errors() -> List[Exception]:
    """Collects whatever is handed to an error sink built from `errors.append`."""
    return []
