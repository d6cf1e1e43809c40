"""
This module provides `ServiceHeartbeat`, which keeps one registration alive.

A registration lives only as long as its TTL lease. The heartbeat registers
an instance, then renews it on a fixed interval (a third of the TTL unless
configured otherwise). If a renewal finds the record gone, for example
because the store was unreachable for longer than the lease, the instance is
registered again under the same id. On shutdown the instance is removed
right away instead of lingering until its lease expires.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Optional

from .errors import RegistryError
from .service import ServiceRegistry

LOGGER = logging.getLogger(__name__)


class ServiceHeartbeat:
    """
    Registers a service instance and renews it periodically.

    Attributes:
        service_id: Identifier of the registration, set once started.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        name: str,
        connection: Any,
        options: Optional[Any] = None,
        *,
        interval: Optional[float] = None,
        deregister_on_shutdown: bool = True,
    ) -> None:
        """
        Initializes the heartbeat.

        Args:
            registry: The registry to register with.
            name: Logical service name.
            connection: Opaque connection details of this instance.
            options: Optional options written alongside the registration.
            interval: Seconds between renewals; defaults to the registry
                      settings' renew interval.
            deregister_on_shutdown: Remove the record when shutting down.
        """
        self._registry = registry
        self._name = name
        self._connection = connection
        self._options = options
        self._interval = max(0.01, interval if interval is not None else registry.settings.renew_interval)
        self._deregister_on_shutdown = deregister_on_shutdown
        self._task: Optional[asyncio.Task[None]] = None
        self.service_id: Optional[str] = None

    async def start(self) -> str:
        """Registers the instance and starts the renewal loop; returns its id."""
        if self._task:
            return self.service_id or ""
        self.service_id = await self._registry.register(
            self._name,
            self._connection,
            self._options,
            service_id=self.service_id,
        )
        self._task = asyncio.create_task(self._heartbeat_loop(), name=f"service-heartbeat:{self._name}")
        LOGGER.info(
            "Heartbeat started for %s/%s (interval=%.1fs)",
            self._name,
            self.service_id,
            self._interval,
        )
        return self.service_id

    async def shutdown(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._deregister_on_shutdown and self.service_id:
            try:
                await self._registry.deregister(self._name, self.service_id)
            except RegistryError as exc:
                LOGGER.warning("Deregistering %s/%s failed: %s", self._name, self.service_id, exc)

    async def __aenter__(self) -> "ServiceHeartbeat":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._beat()
            except RegistryError as exc:
                LOGGER.warning("Heartbeat for %s/%s failed: %s", self._name, self.service_id, exc)

    async def _beat(self) -> None:
        if self.service_id is None:
            return
        if await self._registry.touch(self._name, self.service_id):
            return
        LOGGER.warning("Registration %s/%s lapsed; registering again", self._name, self.service_id)
        await self._registry.register(
            self._name,
            self._connection,
            self._options,
            service_id=self.service_id,
        )
