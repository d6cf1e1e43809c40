"""Backing key-value store adapters."""
from .base import ChangeEvent, ReadResult, StoreAdapter, StoreNode, join_key, normalize_key
from .etcd import EtcdStore
from .memory import MemoryStore

__all__ = [
    "ChangeEvent",
    "EtcdStore",
    "MemoryStore",
    "ReadResult",
    "StoreAdapter",
    "StoreNode",
    "join_key",
    "normalize_key",
]
