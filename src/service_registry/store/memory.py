"""
In-process store adapter with TTL leases and change notification.

`MemoryStore` mirrors the subset of etcd v2 semantics the registry relies
on: directories are implied by the keys beneath them, keys written with a
TTL expire on their own and emit an `expire` event, and every mutation is
delivered to matching watchers in order. Like etcd, the store keeps the
last `HISTORY_SIZE` events so a watch can start at an earlier revision. It
is used by the test suite and for running the API without an etcd cluster.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import AsyncGenerator, Deque, Dict, List, Optional, Tuple, Union

from .base import ChangeEvent, ReadResult, StoreNode, normalize_key

LOGGER = logging.getLogger(__name__)

HISTORY_SIZE = 1000

_Subscription = Tuple[str, bool, "asyncio.Queue[Union[ChangeEvent, BaseException, None]]"]


@dataclass
class _Entry:
    value: str
    index: int
    ttl: Optional[int] = None


class MemoryStore:
    """Dict-backed store; must be used from a running event loop."""

    def __init__(self, history_size: int = HISTORY_SIZE) -> None:
        self._values: Dict[str, _Entry] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._watchers: List[_Subscription] = []
        self._history: Deque[ChangeEvent] = deque(maxlen=max(1, history_size))
        self._compacted = 0
        self._index = 0

    @property
    def index(self) -> int:
        return self._index

    def keys(self) -> List[str]:
        return list(self._values)

    async def read(self, key: str, *, recursive: bool = False) -> ReadResult:
        key = normalize_key(key)
        entry = self._values.get(key)
        if entry is not None:
            return ReadResult(node=self._leaf(key, entry), index=self._index)
        prefix = key.rstrip("/") + "/"
        if not any(k.startswith(prefix) for k in self._values):
            return ReadResult(node=None, index=self._index)
        return ReadResult(node=self._directory(key, recursive), index=self._index)

    async def get(self, key: str, *, recursive: bool = False) -> Optional[StoreNode]:
        return (await self.read(key, recursive=recursive)).node

    async def set(self, key: str, value: str, *, ttl: Optional[int] = None) -> StoreNode:
        key = normalize_key(key)
        previous = self._values.get(key)
        self._index += 1
        entry = _Entry(value=value, index=self._index, ttl=ttl)
        self._values[key] = entry

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if ttl is not None and ttl > 0:
            loop = asyncio.get_running_loop()
            self._timers[key] = loop.call_later(ttl, self._expire, key, entry.index)

        node = self._leaf(key, entry)
        self._publish(
            ChangeEvent(
                action="set",
                key=key,
                index=entry.index,
                node=node,
                prev_node=self._leaf(key, previous) if previous else None,
            )
        )
        return node

    async def delete(self, key: str, *, recursive: bool = False) -> bool:
        key = normalize_key(key)
        if key in self._values:
            self._remove(key, "delete")
            return True
        prefix = key.rstrip("/") + "/"
        children = [k for k in self._values if k.startswith(prefix)]
        if not children:
            return False
        if not recursive:
            raise ValueError(f"{key} is a directory; pass recursive=True")
        for child in children:
            self._remove(child, "delete")
        return True

    async def watch(
        self,
        prefix: str,
        *,
        recursive: bool = True,
        wait_index: Optional[int] = None,
    ) -> AsyncGenerator[ChangeEvent, None]:
        prefix = normalize_key(prefix)
        queue: "asyncio.Queue[Union[ChangeEvent, BaseException, None]]" = asyncio.Queue()
        subscription: _Subscription = (prefix, recursive, queue)
        # Backlog and subscription are taken without yielding to the loop in
        # between, so no event falls between them.
        backlog = self._backlog(prefix, recursive, wait_index)
        self._watchers.append(subscription)
        try:
            for event in backlog:
                yield event
            while True:
                item = await queue.get()
                if item is None:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            if subscription in self._watchers:
                self._watchers.remove(subscription)

    def interrupt_watchers(self, error: BaseException) -> int:
        """Fails every open watch stream with `error`; returns how many were hit."""
        subscriptions = list(self._watchers)
        for _, _, queue in subscriptions:
            queue.put_nowait(error)
        return len(subscriptions)

    async def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for _, _, queue in list(self._watchers):
            queue.put_nowait(None)

    def _expire(self, key: str, index: int) -> None:
        entry = self._values.get(key)
        if entry is None or entry.index != index:
            return
        LOGGER.debug("Key %s expired (ttl=%ss)", key, entry.ttl)
        self._remove(key, "expire")

    def _remove(self, key: str, action: str) -> None:
        entry = self._values.pop(key)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._index += 1
        self._publish(
            ChangeEvent(
                action=action,
                key=key,
                index=self._index,
                node=StoreNode(key=key, modified_index=self._index),
                prev_node=self._leaf(key, entry),
            )
        )

    def _backlog(self, prefix: str, recursive: bool, wait_index: Optional[int]) -> List[ChangeEvent]:
        if wait_index is None or wait_index > self._index:
            return []
        if wait_index <= self._compacted:
            LOGGER.debug("Watch index %d on %s was compacted; asking for resync", wait_index, prefix)
            return [ChangeEvent(action="resync", key=prefix, index=self._index)]
        return [
            event
            for event in self._history
            if event.index >= wait_index and self._matches(event.key, prefix, recursive)
        ]

    def _publish(self, event: ChangeEvent) -> None:
        if len(self._history) == self._history.maxlen:
            self._compacted = self._history[0].index
        self._history.append(event)
        for prefix, recursive, queue in list(self._watchers):
            if self._matches(event.key, prefix, recursive):
                queue.put_nowait(event)

    @staticmethod
    def _matches(key: str, prefix: str, recursive: bool) -> bool:
        if key == prefix:
            return True
        if recursive:
            return key.startswith(prefix.rstrip("/") + "/")
        return key.rsplit("/", 1)[0] == prefix

    def _leaf(self, key: str, entry: _Entry) -> StoreNode:
        return StoreNode(key=key, value=entry.value, ttl=entry.ttl, modified_index=entry.index)

    def _directory(self, key: str, recursive: bool) -> StoreNode:
        prefix = key.rstrip("/") + "/"
        children: Dict[str, StoreNode] = {}
        for leaf_key, entry in self._values.items():
            if not leaf_key.startswith(prefix):
                continue
            rest = leaf_key[len(prefix):]
            child_key = prefix + rest.split("/", 1)[0]
            if child_key in children:
                continue
            if "/" not in rest:
                children[child_key] = self._leaf(child_key, entry)
            elif recursive:
                children[child_key] = self._directory(child_key, recursive)
            else:
                children[child_key] = StoreNode(key=child_key, dir=True)
        return StoreNode(key=key, dir=True, nodes=list(children.values()))
