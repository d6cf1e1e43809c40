from __future__ import annotations

import pytest

from service_registry.errors import StoreUnavailableError, WatchStoppedError
from service_registry.store.memory import MemoryStore
from service_registry.watcher import ChangeWatcher


class _BrokenWatchStore(MemoryStore):
    """Every watch subscription fails immediately."""

    def __init__(self) -> None:
        super().__init__()
        self.subscriptions = 0

    async def watch(self, prefix, *, recursive=True, wait_index=None):
        self.subscriptions += 1
        raise StoreUnavailableError("watch channel refused")
        yield  # pragma: no cover


class _StuckStream:
    """An already finished stream whose close fails."""

    def __aiter__(self):
        return self

    async def __anext__(self):
        raise StopAsyncIteration

    async def aclose(self):
        raise RuntimeError("close failed")


class _StuckCloseStore(MemoryStore):
    def watch(self, prefix, *, recursive=True, wait_index=None):
        return _StuckStream()


def _watcher(store, events, errors, **kwargs) -> ChangeWatcher:
    async def on_change(event):
        events.append(event)

    kwargs.setdefault("reconnect_delay", 0.01)
    kwargs.setdefault("reconnect_max_delay", 0.02)
    return ChangeWatcher(store, "services", on_change, error_sink=errors.append, **kwargs)


def _actions(events):
    return [None if e is None else e.action for e in events]


@pytest.mark.anyio
async def test_each_change_triggers_the_handler(store, reported_errors, wait_for_condition) -> None:
    events = []
    watcher = _watcher(store, events, reported_errors)
    watcher.start(from_index=store.index + 1)

    await store.set("services/api/1", "a")
    await store.delete("services/api/1")

    assert await wait_for_condition(lambda: len(events) == 2)
    assert _actions(events) == ["set", "delete"]
    assert watcher.wait_index == store.index + 1
    assert reported_errors == []
    await watcher.stop()
    assert not watcher.running


@pytest.mark.anyio
async def test_changes_before_the_task_subscribes_are_delivered(store, reported_errors, wait_for_condition) -> None:
    await store.set("services/api/1", "a")
    loaded_at = store.index
    events = []
    watcher = _watcher(store, events, reported_errors)

    watcher.start(from_index=loaded_at + 1)
    await store.delete("services/api/1")
    await store.set("services/web/1", "b")

    assert await wait_for_condition(lambda: len(events) == 2)
    assert [(e.action, e.key) for e in events] == [("delete", "/services/api/1"), ("set", "/services/web/1")]
    await watcher.stop()


@pytest.mark.anyio
async def test_starts_with_a_resync_without_an_index(store, reported_errors, wait_for_condition) -> None:
    events = []
    watcher = _watcher(store, events, reported_errors)
    watcher.start()

    assert await wait_for_condition(lambda: len(events) == 1)
    assert events == [None]
    await watcher.stop()


@pytest.mark.anyio
async def test_handler_index_moves_the_watch_position(store, reported_errors, wait_for_condition) -> None:
    async def on_change(event):
        return 40

    watcher = ChangeWatcher(store, "services", on_change, error_sink=reported_errors.append)
    watcher.start()

    assert await wait_for_condition(lambda: watcher.wait_index == 41)
    await watcher.stop()


@pytest.mark.anyio
async def test_channel_errors_go_to_sink_and_watcher_resubscribes(
    store, reported_errors, wait_for_condition
) -> None:
    events = []
    watcher = _watcher(store, events, reported_errors)
    watcher.start(from_index=store.index + 1)
    # Only open subscriptions can be interrupted.
    assert await wait_for_condition(lambda: bool(store._watchers))

    store.interrupt_watchers(RuntimeError("channel lost"))
    await store.set("services/api/1", "a")

    assert await wait_for_condition(lambda: "set" in _actions(events))
    assert _actions(events) == [None, "set"]
    assert [type(e) for e in reported_errors] == [RuntimeError]
    assert watcher.running
    assert watcher.failures == 0
    await watcher.stop()


@pytest.mark.anyio
async def test_failed_event_is_redelivered_after_resync(store, reported_errors, wait_for_condition) -> None:
    calls = []

    async def on_change(event):
        calls.append(event)
        if len(calls) == 1:
            raise StoreUnavailableError("reload failed")

    watcher = ChangeWatcher(
        store,
        "services",
        on_change,
        error_sink=reported_errors.append,
        reconnect_delay=0.01,
    )
    watcher.start(from_index=store.index + 1)

    await store.set("services/api/1", "a")
    await store.set("services/api/2", "b")

    assert await wait_for_condition(lambda: len(calls) == 4)
    assert _actions(calls) == ["set", None, "set", "set"]
    assert [c.key for c in calls if c is not None] == ["/services/api/1", "/services/api/1", "/services/api/2"]
    assert [type(e) for e in reported_errors] == [StoreUnavailableError]
    assert watcher.running
    await watcher.stop()


@pytest.mark.anyio
async def test_gives_up_after_max_reconnects(reported_errors, wait_for_condition) -> None:
    store = _BrokenWatchStore()
    events = []
    watcher = _watcher(store, events, reported_errors, max_reconnects=2)
    watcher.start(from_index=1)

    assert await wait_for_condition(lambda: not watcher.running)
    assert store.subscriptions == 3
    assert isinstance(reported_errors[-1], WatchStoppedError)
    assert sum(isinstance(e, StoreUnavailableError) for e in reported_errors) == 3
    assert events == [None, None]


@pytest.mark.anyio
async def test_closed_stream_ends_the_watcher(store, reported_errors, wait_for_condition) -> None:
    watcher = _watcher(store, [], reported_errors)
    watcher.start(from_index=1)
    assert await wait_for_condition(lambda: bool(store._watchers))

    await store.close()

    assert await wait_for_condition(lambda: not watcher.running)
    assert reported_errors == []


@pytest.mark.anyio
async def test_stream_close_errors_go_to_sink(reported_errors, wait_for_condition) -> None:
    watcher = _watcher(_StuckCloseStore(), [], reported_errors)
    watcher.start(from_index=1)

    assert await wait_for_condition(lambda: not watcher.running)
    assert [str(e) for e in reported_errors] == ["close failed"]
    await watcher.stop()
