"""
This module defines the Pydantic data models exchanged by the service registry.

`ServiceRecord` is the unit of registration: one running instance of a named
service. It is the exact JSON document stored under
`<services-key>/<name>/<id>` in the backing store, so its field names form
part of the storage format and must not change. The remaining models are
request and response envelopes used by the HTTP API.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedRecordError


class ServiceRecord(BaseModel):
    """
    A single registered instance of a named service.

    The registry never interprets `connection` or `options`; both are stored
    and returned verbatim.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(..., min_length=1, description="Unique identifier of this instance.")
    name: str = Field(..., min_length=1, description="Logical service name shared by instances.")
    connection: Any = Field(default=None, description="Opaque connection details.")
    options: Optional[Any] = Field(default=None, description="Opaque per-service options.")

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str, *, key: str = "<unknown>") -> "ServiceRecord":
        """
        Parses a stored JSON document into a record.

        Args:
            raw: The serialized record as held by the store.
            key: The store key the value was read from, used in error messages.

        Raises:
            MalformedRecordError: If the value is not a valid record.
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise MalformedRecordError(key, str(exc)) from exc


class ServiceRegistrationRequest(BaseModel):
    """Payload accepted by the HTTP API when registering a service instance."""

    name: str = Field(..., min_length=1, description="Service name to register under.")
    connection: Any = Field(..., description="Opaque connection details.")
    options: Optional[Any] = Field(default=None, description="Optional service options.")


class ServiceRegistrationResponse(BaseModel):
    """Identifier handed back after a successful registration."""

    id: str


__all__ = [
    "ServiceRecord",
    "ServiceRegistrationRequest",
    "ServiceRegistrationResponse",
]
