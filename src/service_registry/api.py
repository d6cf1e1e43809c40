"""
This module defines the FastAPI routes for the service registry.

It builds an APIRouter bound to a `ServiceRegistry` instance. Lookups that
resolve to `ServiceNotFoundError` are answered with 404, and a store that is
still unreachable once the retry budget is spent is reported as 503.
"""
from typing import List

from fastapi import APIRouter, HTTPException

from .errors import ServiceNotFoundError, StoreUnavailableError
from .schemas import ServiceRecord, ServiceRegistrationRequest, ServiceRegistrationResponse
from .service import ServiceRegistry


def _unavailable(exc: StoreUnavailableError) -> HTTPException:
    return HTTPException(status_code=503, detail=f"Store unavailable: {exc}")


def get_router(registry: ServiceRegistry) -> APIRouter:
    """
    Creates the API router for the service registry.

    Args:
        registry: The registry whose operations the endpoints expose.

    Returns:
        A configured `APIRouter`.
    """
    router = APIRouter()

    @router.get("/health")
    async def health_check():
        """Provides a simple health check endpoint for the service."""
        return {"status": "healthy"}

    @router.post("/services/register", response_model=ServiceRegistrationResponse)
    async def register_service(request: ServiceRegistrationRequest):
        """Registers one instance of a service and returns its id."""
        try:
            service_id = await registry.register(request.name, request.connection, request.options)
        except StoreUnavailableError as exc:
            raise _unavailable(exc)
        return ServiceRegistrationResponse(id=service_id)

    @router.get("/services/{name}", response_model=List[ServiceRecord])
    async def get_service(name: str):
        try:
            return await registry.get_service(name)
        except ServiceNotFoundError:
            raise HTTPException(status_code=404, detail="Service not found")
        except StoreUnavailableError as exc:
            raise _unavailable(exc)

    @router.get("/services/{name}/node", response_model=ServiceRecord)
    async def get_service_node(name: str):
        """Returns the first known instance of a service."""
        try:
            node = await registry.get_service_node(name)
        except StoreUnavailableError as exc:
            raise _unavailable(exc)
        if node is None:
            raise HTTPException(status_code=404, detail="Service not found")
        return node

    @router.get("/services/{name}/options")
    async def get_service_options(name: str):
        try:
            return await registry.get_service_options(name)
        except ServiceNotFoundError:
            raise HTTPException(status_code=404, detail="Service options not found")
        except StoreUnavailableError as exc:
            raise _unavailable(exc)

    @router.post("/services/{name}/{service_id}/renew")
    async def renew_service(name: str, service_id: str):
        """
        Extends the lease of an instance.

        Renewing an unknown instance is not an error, so this answers success
        either way.
        """
        try:
            await registry.renew(name, service_id)
        except StoreUnavailableError as exc:
            raise _unavailable(exc)
        return {"status": "success"}

    @router.delete("/services/{name}/{service_id}")
    async def deregister_service(name: str, service_id: str):
        try:
            removed = await registry.deregister(name, service_id)
        except StoreUnavailableError as exc:
            raise _unavailable(exc)
        if not removed:
            raise HTTPException(status_code=404, detail="Service instance not found")
        return {"status": "success"}

    return router
