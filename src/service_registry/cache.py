"""
In-memory mirror of the registry namespace.

The cache maps a service name to the records currently stored under it. It
is never patched in place: each reload builds a complete new mapping from a
recursive read of the namespace and swaps it in with a single assignment, so
concurrent readers see either the old snapshot or the new one, never a
half-populated mix.
"""
from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .schemas import ServiceRecord
from .store.base import StoreNode


def records_from_node(node: Optional[StoreNode]) -> List[ServiceRecord]:
    """
    Deserializes the records held directly under a service directory.

    Raises:
        MalformedRecordError: If any stored value is not a valid record.
    """
    if node is None:
        return []
    return [
        ServiceRecord.from_json(child.value, key=child.key)
        for child in node.nodes
        if not child.dir and child.value is not None
    ]


def snapshot_from_tree(root: Optional[StoreNode]) -> Dict[str, List[ServiceRecord]]:
    """Builds a name -> records mapping from a recursive read of the namespace."""
    snapshot: Dict[str, List[ServiceRecord]] = {}
    if root is None:
        return snapshot
    for service in root.nodes:
        if not service.dir:
            continue
        records = records_from_node(service)
        if records:
            snapshot[service.basename] = records
    return snapshot


class LocalCache:
    """Name -> records mapping replaced wholesale on every reload."""

    def __init__(self) -> None:
        self._services: Dict[str, Tuple[ServiceRecord, ...]] = {}

    def get(self, name: str) -> List[ServiceRecord]:
        """Returns deep copies of the records held for `name`."""
        return [record.model_copy(deep=True) for record in self._services.get(name, ())]

    def replace(self, services: Mapping[str, Sequence[ServiceRecord]]) -> None:
        snapshot = {name: tuple(records) for name, records in services.items() if records}
        self._services = snapshot

    def clear(self) -> None:
        self._services = {}

    def names(self) -> List[str]:
        return sorted(self._services)

    def snapshot(self) -> Dict[str, List[ServiceRecord]]:
        return {
            name: [record.model_copy(deep=True) for record in records]
            for name, records in self._services.items()
        }

    def __contains__(self, name: object) -> bool:
        return name in self._services

    def __len__(self) -> int:
        return len(self._services)
