"""
The contract every backing key-value store must satisfy.

The registry only needs four primitives from its store: a (recursive) read
returning a tree of nodes and the revision it reflects, a write with an
optional TTL lease, a delete, and a change stream for a key prefix that can
start at a given revision. Keys are slash separated; adapters accept them
with or without a leading slash and report node keys in the absolute form
(`/services/api/1234`).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncGenerator, List, Optional, Protocol, runtime_checkable


def normalize_key(key: str) -> str:
    return "/" + key.strip("/")


def join_key(*parts: str) -> str:
    """Joins key segments the way `services/<name>/<id>` paths are built."""
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


@dataclass
class StoreNode:
    """
    A key or directory in the store.

    Attributes:
        key: Absolute key, e.g. `/services/api`.
        value: Stored string for leaf keys, None for directories.
        dir: Whether this node is a directory.
        nodes: Children of a directory; only populated by recursive reads for
               nested levels.
        ttl: Remaining lease in seconds, if the key has one.
        modified_index: Store revision at which the node last changed.
    """

    key: str
    value: Optional[str] = None
    dir: bool = False
    nodes: List["StoreNode"] = field(default_factory=list)
    ttl: Optional[int] = None
    modified_index: int = 0

    @property
    def basename(self) -> str:
        return self.key.rstrip("/").rsplit("/", 1)[-1]


@dataclass
class ChangeEvent:
    """
    A single create, set, update, delete or expire notification.

    A `resync` event carries no node; it means history was lost and the
    consumer should re-read the whole prefix.
    """

    action: str
    key: str
    index: int
    node: Optional[StoreNode] = None
    prev_node: Optional[StoreNode] = None


@dataclass
class ReadResult:
    """
    A read together with the store revision it reflects.

    Attributes:
        node: The node read, or None when the key does not exist.
        index: Store revision at which the read was served. Watching from
               `index + 1` delivers every change the read did not see.
    """

    node: Optional[StoreNode]
    index: int


@runtime_checkable
class StoreAdapter(Protocol):
    """Async key-value store with TTL leases and change notification."""

    async def read(self, key: str, *, recursive: bool = False) -> ReadResult:
        """Returns the node at `key` along with the revision of the read."""
        ...

    async def get(self, key: str, *, recursive: bool = False) -> Optional[StoreNode]:
        """Returns the node at `key`, or None when the key does not exist."""
        ...

    async def set(self, key: str, value: str, *, ttl: Optional[int] = None) -> StoreNode:
        ...

    async def delete(self, key: str, *, recursive: bool = False) -> bool:
        """Removes `key`; returns False when it did not exist."""
        ...

    def watch(
        self,
        prefix: str,
        *,
        recursive: bool = True,
        wait_index: Optional[int] = None,
    ) -> AsyncGenerator[ChangeEvent, None]:
        """
        Yields change events under `prefix` until the stream fails or closes.

        With `wait_index`, events from that revision on are delivered,
        including ones that happened before the call. When the store no
        longer holds history that far back, a `resync` event is yielded
        first.
        """
        ...

    async def close(self) -> None:
        ...
