from __future__ import annotations

import asyncio
import time

import pytest

from service_registry.errors import (
    MalformedRecordError,
    ServiceNotFoundError,
    StoreUnavailableError,
)
from service_registry.retry import RetryPolicy, fixed_backoff, linear_backoff


def _recording_backoff(seen):
    def _backoff(attempt: int) -> float:
        seen.append(attempt)
        return 0.0

    return _backoff


def test_fixed_backoff_is_constant() -> None:
    backoff = fixed_backoff(0.25)
    assert [backoff(i) for i in (1, 2, 5)] == [0.25, 0.25, 0.25]


def test_linear_backoff_grows_and_caps() -> None:
    backoff = linear_backoff(0.5, maximum=1.2)
    assert backoff(1) == 0.5
    assert backoff(2) == 1.0
    assert backoff(3) == 1.2
    assert linear_backoff(2)(10) == 20


def test_policy_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.anyio
async def test_returns_first_success_without_retrying() -> None:
    seen = []
    policy = RetryPolicy(max_attempts=3, backoff=_recording_backoff(seen))

    async def operation():
        return "ok"

    assert await policy.call(operation) == "ok"
    assert seen == []


@pytest.mark.anyio
async def test_retries_transient_errors_until_success() -> None:
    seen = []
    policy = RetryPolicy(max_attempts=5, backoff=_recording_backoff(seen))
    attempts = 0

    async def operation():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise StoreUnavailableError("down")
        if attempts == 2:
            raise ServiceNotFoundError("api")
        return attempts

    assert await policy.call(operation) == 3
    assert seen == [1, 2]


@pytest.mark.anyio
async def test_exhaustion_reraises_last_transient_error() -> None:
    seen = []
    policy = RetryPolicy(max_attempts=4, backoff=_recording_backoff(seen))
    attempts = 0

    async def operation():
        nonlocal attempts
        attempts += 1
        raise ServiceNotFoundError("api")

    with pytest.raises(ServiceNotFoundError):
        await policy.call(operation)
    assert attempts == 4
    assert seen == [1, 2, 3]


@pytest.mark.anyio
async def test_non_transient_errors_are_not_retried() -> None:
    policy = RetryPolicy(max_attempts=5, backoff=fixed_backoff(0))
    attempts = 0

    async def operation():
        nonlocal attempts
        attempts += 1
        raise MalformedRecordError("/services/api/1", "bad json")

    with pytest.raises(MalformedRecordError):
        await policy.call(operation)
    assert attempts == 1


@pytest.mark.anyio
async def test_each_call_starts_a_fresh_counter() -> None:
    policy = RetryPolicy(max_attempts=3, backoff=fixed_backoff(0))
    attempts = 0

    async def operation():
        nonlocal attempts
        attempts += 1
        raise StoreUnavailableError("down")

    for _ in range(2):
        with pytest.raises(StoreUnavailableError):
            await policy.call(operation)
    assert attempts == 6


@pytest.mark.anyio
async def test_timeout_bounds_the_retry_window() -> None:
    policy = RetryPolicy(max_attempts=1000, backoff=fixed_backoff(0.02))

    async def operation():
        raise ServiceNotFoundError("api")

    started = time.monotonic()
    with pytest.raises(ServiceNotFoundError):
        await policy.call(operation, timeout=0.1)
    assert time.monotonic() - started < 1.0


@pytest.mark.anyio
async def test_timeout_on_hanging_operation_reports_store_unavailable() -> None:
    policy = RetryPolicy(max_attempts=3, backoff=fixed_backoff(0))

    async def operation():
        await asyncio.sleep(10)

    with pytest.raises(StoreUnavailableError):
        await policy.call(operation, timeout=0.05)
