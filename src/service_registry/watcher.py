"""
Background task that keeps the local cache in step with the store.

`ChangeWatcher` subscribes to the registry namespace and calls its change
handler for every event the store delivers. Lease expiry at the store is
itself a change event, so the handler's full reload also drops expired
records without any expiry bookkeeping here.

The watcher tracks the store index it has caught up to and always
subscribes from the next one, so changes made before a subscription is in
place (right after the initial load, or while reconnecting) are replayed
rather than lost.

Errors on the watch channel, and handler failures while processing an event,
never reach registry callers. They are handed to an injectable error sink
(logging by default), after which the watcher waits with a capped linear
backoff, asks the handler for a full resync and subscribes again from the
event that was not handled. The failure counter resets whenever an event is
handled; with `max_reconnects` set, the watcher stops after that many
consecutive failures.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import AsyncIterator, Awaitable, Callable, Optional

from .errors import WatchStoppedError
from .retry import linear_backoff
from .store.base import ChangeEvent, StoreAdapter

LOGGER = logging.getLogger(__name__)

ErrorSink = Callable[[Exception], None]
ChangeHandler = Callable[[Optional[ChangeEvent]], Awaitable[Optional[int]]]


def log_error_sink(error: Exception) -> None:
    LOGGER.warning("Service registry watch error: %s", error)


class ChangeWatcher:
    """
    Long-lived listener on one store prefix.

    The handler receives the triggering event, or None when the watcher asks
    for a resync. It may return the store index its work reflects, which
    lets the watcher skip events that work already covered.
    """

    def __init__(
        self,
        store: StoreAdapter,
        prefix: str,
        on_change: ChangeHandler,
        *,
        error_sink: Optional[ErrorSink] = None,
        reconnect_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        max_reconnects: Optional[int] = None,
    ) -> None:
        self._store = store
        self._prefix = prefix
        self._on_change = on_change
        self._error_sink = error_sink or log_error_sink
        self._backoff = linear_backoff(reconnect_delay, reconnect_max_delay)
        self._max_reconnects = max_reconnects
        self._task: Optional[asyncio.Task[None]] = None
        self._failures = 0
        self._wait_index: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def wait_index(self) -> Optional[int]:
        """Store index the next subscription starts from."""
        return self._wait_index

    def start(self, from_index: Optional[int] = None) -> None:
        """
        Starts the watch task.

        Args:
            from_index: First store index to deliver, normally one past the
                        index of the read the caller loaded from. Without it
                        the watcher resyncs before subscribing.
        """
        if self.running:
            return
        self._wait_index = from_index
        self._task = asyncio.create_task(self._run(), name=f"service-watch:{self._prefix}")

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        LOGGER.info("Watching %s for service changes from index %s", self._prefix, self._wait_index)
        if self._wait_index is None:
            await self._resync()
        while True:
            stream = self._store.watch(self._prefix, recursive=True, wait_index=self._wait_index)
            try:
                async for event in stream:
                    reached = await self._on_change(event)
                    self._failures = 0
                    self._advance(event.index, reached)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = exc
            else:
                LOGGER.info("Watch stream for %s closed", self._prefix)
                return
            finally:
                await self._close(stream)

            self._failures += 1
            self._error_sink(error)
            if self._max_reconnects is not None and self._failures > self._max_reconnects:
                self._error_sink(
                    WatchStoppedError(
                        f"watch on {self._prefix} stopped after {self._failures} consecutive failures"
                    )
                )
                return
            delay = self._backoff(self._failures)
            LOGGER.info(
                "Re-subscribing to %s in %.1fs (failure %d)",
                self._prefix,
                delay,
                self._failures,
            )
            await asyncio.sleep(delay)
            await self._resync()

    async def _resync(self) -> None:
        LOGGER.debug("Resynchronizing %s", self._prefix)
        self._advance(await self._notify(None))

    def _advance(self, *indexes: Optional[int]) -> None:
        known = [index + 1 for index in indexes if index is not None]
        if self._wait_index is not None:
            known.append(self._wait_index)
        if known:
            self._wait_index = max(known)

    async def _notify(self, event: Optional[ChangeEvent]) -> Optional[int]:
        try:
            return await self._on_change(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_sink(exc)
            return None

    async def _close(self, stream: AsyncIterator[ChangeEvent]) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_sink(exc)
