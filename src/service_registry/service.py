"""
This module contains the public surface of the service registry.

`ServiceRegistry` composes the store adapter, the local cache, the change
watcher and the retry policies. Registrations are written straight to the
store as `<services>/<name>/<id>` with a TTL lease; lookups are served from
the cache when it has the name and otherwise fall back to a retried direct
read, since a record written a moment ago (possibly by another process) may
not have reached this registry's cache yet. Records disappear only when the
store expires their lease or their owner deregisters them.
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable, List, Optional

from .cache import LocalCache, records_from_node, snapshot_from_tree
from .config import RegistrySettings
from .errors import MalformedRecordError, RegistryError, ServiceNotFoundError
from .retry import RetryPolicy, fixed_backoff, linear_backoff
from .schemas import ServiceRecord
from .store.base import ChangeEvent, StoreAdapter, join_key
from .store.etcd import EtcdStore
from .watcher import ChangeWatcher, ErrorSink, log_error_sink

LOGGER = logging.getLogger(__name__)


def _new_service_id() -> str:
    return str(uuid.uuid4())


class ServiceRegistry:
    """
    Registers service instances and resolves them by name.

    Construct it around a store adapter, then `await start()` (or use it as
    an async context manager, or build it with `create`) to load the cache
    and begin watching for changes.

    Attributes:
        settings: Registry configuration.
        cache: The local mirror of the services namespace.
    """

    def __init__(
        self,
        store: StoreAdapter,
        settings: Optional[RegistrySettings] = None,
        *,
        error_sink: Optional[ErrorSink] = None,
        id_factory: Callable[[], str] = _new_service_id,
        lookup_policy: Optional[RetryPolicy] = None,
        options_policy: Optional[RetryPolicy] = None,
        owns_store: bool = False,
    ) -> None:
        """
        Initializes the registry without touching the store.

        Args:
            store: Backing key-value store.
            settings: Configuration; read from the environment when omitted.
            error_sink: Receives watch and reload failures. Logs by default.
            id_factory: Generates identifiers for new registrations.
            lookup_policy: Retry policy for direct record reads.
            options_policy: Retry policy for options reads.
            owns_store: Close the store when the registry is closed.
        """
        self.settings = settings or RegistrySettings()
        self.cache = LocalCache()
        self._store = store
        self._owns_store = owns_store
        self._error_sink = error_sink or log_error_sink
        self._new_id = id_factory
        self._lookup_policy = lookup_policy or RetryPolicy(
            max_attempts=self.settings.lookup_attempts,
            backoff=fixed_backoff(self.settings.lookup_delay),
        )
        self._options_policy = options_policy or RetryPolicy(
            max_attempts=self.settings.options_attempts,
            backoff=linear_backoff(self.settings.options_delay_step),
        )
        self._watcher = ChangeWatcher(
            store,
            self.settings.services_key,
            self._on_change,
            error_sink=self._error_sink,
            reconnect_delay=self.settings.watch_reconnect_delay,
            reconnect_max_delay=self.settings.watch_reconnect_max_delay,
            max_reconnects=self.settings.watch_max_reconnects,
        )
        self._started = False

    @classmethod
    async def create(
        cls,
        store: Optional[StoreAdapter] = None,
        settings: Optional[RegistrySettings] = None,
        **kwargs: Any,
    ) -> "ServiceRegistry":
        """
        Builds and starts a registry.

        When no store is given, an `EtcdStore` is created from the settings
        and closed together with the registry.
        """
        settings = settings or RegistrySettings()
        if store is None:
            store = EtcdStore.from_settings(settings)
            kwargs.setdefault("owns_store", True)
        registry = cls(store, settings, **kwargs)
        await registry.start()
        return registry

    @property
    def store(self) -> StoreAdapter:
        return self._store

    @property
    def watcher(self) -> ChangeWatcher:
        return self._watcher

    async def start(self) -> None:
        """Loads the cache from the store and starts the change watcher."""
        if self._started:
            return
        self._started = True
        LOGGER.info(
            "Service registry starting (namespace=%s, ttl=%ss)",
            self.settings.services_key,
            self.settings.ttl,
        )
        from_index = None
        try:
            from_index = await self.reload() + 1
        except RegistryError as exc:
            self._error_sink(exc)
        self._watcher.start(from_index)

    async def close(self) -> None:
        await self._watcher.stop()
        if self._owns_store:
            await self._store.close()
        self._started = False

    async def __aenter__(self) -> "ServiceRegistry":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def register(
        self,
        name: str,
        connection: Any,
        options: Optional[Any] = None,
        *,
        service_id: Optional[str] = None,
    ) -> str:
        """
        Registers one instance of a service.

        The record is written with the configured TTL; options, when given,
        are also written under the per-name options key. The call returns
        once the store has accepted the writes, which does not mean other
        registries can already see the record.

        Args:
            name: Logical service name.
            connection: Opaque connection details, stored verbatim.
            options: Optional opaque options, stored verbatim.
            service_id: Re-register under an existing id instead of
                        generating a new one.

        Returns:
            The identifier of the registered instance.
        """
        record = ServiceRecord(
            id=service_id or self._new_id(),
            name=name,
            connection=connection,
            options=options,
        )
        await self._save(record)
        if options is not None:
            await self._store.set(self._options_key(name), json.dumps(options))
        LOGGER.info("Registered service %s (id=%s, ttl=%ss)", name, record.id, self.settings.ttl)
        return record.id

    async def renew(self, name: str, service_id: str) -> None:
        """
        Extends the lease of a registered instance.

        Unknown names and ids are ignored without error.
        """
        await self.touch(name, service_id)

    async def touch(self, name: str, service_id: str) -> bool:
        """Renews an instance and reports whether it was found."""
        try:
            records = await self.get_service(name)
        except ServiceNotFoundError:
            LOGGER.debug("Renew skipped: no records for %s", name)
            return False
        for record in records:
            if record.id == str(service_id):
                await self._save(record)
                LOGGER.debug("Renewed %s/%s for %ss", name, record.id, self.settings.ttl)
                return True
        LOGGER.debug("Renew skipped: %s has no instance %s", name, service_id)
        return False

    async def deregister(self, name: str, service_id: str) -> bool:
        """Removes an instance immediately instead of waiting for its lease to expire."""
        removed = await self._store.delete(self._service_key(name, service_id))
        if removed:
            LOGGER.info("Deregistered service %s (id=%s)", name, service_id)
        return removed

    async def get_service(self, name: str, *, timeout: Optional[float] = None) -> List[ServiceRecord]:
        """
        Returns the live instances of a service.

        Args:
            name: Logical service name.
            timeout: Optional bound in seconds on the fallback retry window.

        Returns:
            A non-empty list of records.

        Raises:
            ServiceNotFoundError: If no instance appeared within the retry budget.
            StoreUnavailableError: If the store kept failing until the budget ran out.
            MalformedRecordError: If a stored record could not be parsed.
        """
        cached = self.cache.get(name)
        if cached:
            return cached
        return await self._lookup_policy.call(
            lambda: self._fetch_service(name),
            timeout=timeout,
            description=f"lookup of service {name}",
        )

    async def get_service_node(
        self, name: str, *, timeout: Optional[float] = None
    ) -> Optional[ServiceRecord]:
        """Returns the first instance of a service, or None if there is none."""
        try:
            records = await self.get_service(name, timeout=timeout)
        except ServiceNotFoundError:
            return None
        return records[0]

    async def get_service_options(self, name: str, *, timeout: Optional[float] = None) -> Any:
        """
        Returns the options stored for a service name.

        Options may be written just after the record, so this always goes
        through the options retry policy.

        Raises:
            ServiceNotFoundError: If no options appeared within the retry budget.
        """
        return await self._options_policy.call(
            lambda: self._fetch_options(name),
            timeout=timeout,
            description=f"options lookup of service {name}",
        )

    async def reload(self) -> int:
        """
        Rebuilds the cache from a full read of the services namespace.

        Returns:
            The store index the new cache contents reflect.
        """
        result = await self._store.read(self.settings.services_key, recursive=True)
        snapshot = snapshot_from_tree(result.node)
        self.cache.replace(snapshot)
        LOGGER.debug("Service cache reloaded at index %d: %d name(s)", result.index, len(snapshot))
        return result.index

    async def _on_change(self, event: Optional[ChangeEvent]) -> int:
        if event is None:
            LOGGER.info("Resynchronizing service cache")
        else:
            LOGGER.debug("Service change %s on %s", event.action, event.key)
        return await self.reload()

    async def _fetch_service(self, name: str) -> List[ServiceRecord]:
        node = await self._store.get(self._service_key(name), recursive=True)
        records = records_from_node(node)
        if not records:
            raise ServiceNotFoundError(name)
        return records

    async def _fetch_options(self, name: str) -> Any:
        key = self._options_key(name)
        node = await self._store.get(key)
        if node is None or node.value is None:
            raise ServiceNotFoundError(name, "options")
        try:
            return json.loads(node.value)
        except ValueError as exc:
            raise MalformedRecordError(key, str(exc)) from exc

    async def _save(self, record: ServiceRecord) -> None:
        await self._store.set(
            self._service_key(record.name, record.id),
            record.to_json(),
            ttl=self.settings.ttl,
        )

    def _service_key(self, name: str, service_id: Optional[str] = None) -> str:
        if service_id is None:
            return join_key(self.settings.services_key, name)
        return join_key(self.settings.services_key, name, service_id)

    def _options_key(self, name: str) -> str:
        return join_key(self.settings.options_key, name)
