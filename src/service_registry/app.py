"""
This module is responsible for creating and configuring the FastAPI application.

`create_app` wires the settings, the store adapter and the `ServiceRegistry`
together and ties the registry's lifetime (initial cache load, change watcher)
to the application lifespan.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .api import get_router
from .config import RegistrySettings
from .service import ServiceRegistry
from .store import EtcdStore, StoreAdapter


def create_app(
    settings: Optional[RegistrySettings] = None,
    store: Optional[StoreAdapter] = None,
) -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    Args:
        settings: Registry configuration; read from the environment when omitted.
        store: Backing store; an `EtcdStore` built from the settings when omitted.

    Returns:
        A fully configured `FastAPI` application instance.
    """
    settings = settings or RegistrySettings()
    owns_store = store is None
    if store is None:
        store = EtcdStore.from_settings(settings)
    registry = ServiceRegistry(store, settings, owns_store=owns_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await registry.start()
        try:
            yield
        finally:
            await registry.close()

    app = FastAPI(
        title="Service Registry",
        description="Service registration and discovery on top of etcd",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.registry = registry

    app.include_router(get_router(registry))

    return app
