"""
Service registration and discovery on top of a TTL-capable key-value store.

Services register under a name with opaque connection details and options;
other processes resolve the live instances of a name from a locally cached
mirror of the store that a background watcher keeps up to date.
"""
from .cache import LocalCache
from .config import RegistrySettings
from .errors import (
    MalformedRecordError,
    RegistryError,
    ServiceNotFoundError,
    StoreUnavailableError,
    WatchStoppedError,
)
from .heartbeat import ServiceHeartbeat
from .retry import RetryPolicy, fixed_backoff, linear_backoff
from .schemas import ServiceRecord
from .service import ServiceRegistry
from .store import ChangeEvent, EtcdStore, MemoryStore, StoreAdapter, StoreNode
from .watcher import ChangeWatcher

__version__ = "1.0.0"

__all__ = [
    "ChangeEvent",
    "ChangeWatcher",
    "EtcdStore",
    "LocalCache",
    "MalformedRecordError",
    "MemoryStore",
    "RegistryError",
    "RegistrySettings",
    "RetryPolicy",
    "ServiceHeartbeat",
    "ServiceNotFoundError",
    "ServiceRecord",
    "ServiceRegistry",
    "StoreAdapter",
    "StoreNode",
    "StoreUnavailableError",
    "WatchStoppedError",
    "fixed_backoff",
    "linear_backoff",
]
