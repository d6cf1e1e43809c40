"""
Store adapter for the etcd v2 keys API over HTTP.

Every request is tried against the configured client URLs in order; a
transport failure or a 5xx answer moves on to the next endpoint, and only
when all of them fail is a `StoreUnavailableError` raised. Writes get
`max_retries` rounds over the endpoint list. Watches use etcd's long-polling
`?wait=true&waitIndex=N` form. When etcd reports that the requested index has
already been compacted away, the stream yields a `resync` event and resumes
from the cluster index.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, Dict, Optional, Sequence

import httpx

from ..config import RegistrySettings
from ..errors import StoreUnavailableError
from .base import ChangeEvent, ReadResult, StoreNode, normalize_key

LOGGER = logging.getLogger(__name__)

KEY_NOT_FOUND = 100
EVENT_INDEX_CLEARED = 401


def _cluster_index(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("X-Etcd-Index", "0"))
    except ValueError:
        return 0


def _parse_node(payload: Optional[Dict[str, Any]]) -> Optional[StoreNode]:
    if not payload:
        return None
    return StoreNode(
        key=payload.get("key", "/"),
        value=payload.get("value"),
        dir=bool(payload.get("dir", False)),
        nodes=[child for child in (_parse_node(n) for n in payload.get("nodes", [])) if child],
        ttl=payload.get("ttl"),
        modified_index=int(payload.get("modifiedIndex", 0)),
    )


class EtcdStore:
    """
    Async client for a subset of the etcd v2 keys API.

    Attributes:
        hosts: Client URLs (e.g. `http://etcd:2379`), tried in order.
    """

    def __init__(
        self,
        hosts: Sequence[str],
        *,
        timeout: float = 5.0,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.hosts = [host.rstrip("/") for host in hosts if host]
        if not self.hosts:
            raise ValueError("at least one etcd host is required")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: RegistrySettings) -> "EtcdStore":
        return cls(
            settings.hosts,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
        )

    async def read(self, key: str, *, recursive: bool = False) -> ReadResult:
        params = {"recursive": "true"} if recursive else None
        response = await self._request("GET", key, params=params)
        index = _cluster_index(response)
        if response.status_code == 404:
            return ReadResult(node=None, index=index)
        return ReadResult(node=_parse_node(self._payload(response, "GET", key).get("node")), index=index)

    async def get(self, key: str, *, recursive: bool = False) -> Optional[StoreNode]:
        return (await self.read(key, recursive=recursive)).node

    async def set(self, key: str, value: str, *, ttl: Optional[int] = None) -> StoreNode:
        data = {"value": value}
        if ttl is not None:
            data["ttl"] = str(ttl)
        response = await self._request("PUT", key, data=data, rounds=self._max_retries)
        node = _parse_node(self._payload(response, "PUT", key).get("node"))
        return node or StoreNode(key=normalize_key(key), value=value, ttl=ttl)

    async def delete(self, key: str, *, recursive: bool = False) -> bool:
        params = {"recursive": "true"} if recursive else None
        response = await self._request("DELETE", key, params=params, rounds=self._max_retries)
        if response.status_code == 404:
            return False
        self._payload(response, "DELETE", key)
        return True

    async def watch(
        self,
        prefix: str,
        *,
        recursive: bool = True,
        wait_index: Optional[int] = None,
    ) -> AsyncGenerator[ChangeEvent, None]:
        # etcd holds the request open until a change arrives.
        timeout = httpx.Timeout(self._timeout, read=None)
        index = wait_index
        while True:
            params = {"wait": "true"}
            if recursive:
                params["recursive"] = "true"
            if index is not None:
                params["waitIndex"] = str(index)
            response = await self._request("GET", prefix, params=params, timeout=timeout)
            if not response.content:
                continue
            payload = self._decode(response, "GET", prefix)
            if payload.get("errorCode") == EVENT_INDEX_CLEARED:
                cluster_index = _cluster_index(response)
                LOGGER.info(
                    "Watch index %s on %s was cleared; resuming from %d",
                    index,
                    prefix,
                    cluster_index + 1,
                )
                index = cluster_index + 1
                # Events up to the cluster index are gone; the consumer re-reads instead.
                yield ChangeEvent(action="resync", key=normalize_key(prefix), index=cluster_index)
                continue
            if response.status_code >= 400:
                raise StoreUnavailableError(
                    f"etcd watch on {prefix} failed: {payload.get('message', response.status_code)}"
                )
            node = _parse_node(payload.get("node"))
            event_index = node.modified_index if node else _cluster_index(response)
            index = event_index + 1
            yield ChangeEvent(
                action=payload.get("action", "unknown"),
                key=node.key if node else normalize_key(prefix),
                index=event_index,
                node=node,
                prev_node=_parse_node(payload.get("prevNode")),
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        key: str,
        *,
        params: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, str]] = None,
        timeout: Optional[httpx.Timeout] = None,
        rounds: int = 1,
    ) -> httpx.Response:
        path = f"/v2/keys{normalize_key(key)}"
        last_error: object = None
        for _ in range(rounds):
            for host in self.hosts:
                url = f"{host}{path}"
                try:
                    response = await self._client.request(
                        method,
                        url,
                        params=params,
                        data=data,
                        timeout=timeout if timeout is not None else self._timeout,
                    )
                except httpx.HTTPError as exc:
                    LOGGER.warning("etcd %s %s failed: %s", method, url, exc)
                    last_error = exc
                    continue
                if response.status_code >= 500:
                    LOGGER.warning("etcd %s %s returned %d", method, url, response.status_code)
                    last_error = f"HTTP {response.status_code}"
                    continue
                return response
        raise StoreUnavailableError(f"etcd {method} {path} failed on all endpoints: {last_error}")

    def _decode(self, response: httpx.Response, method: str, key: str) -> Dict[str, Any]:
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise StoreUnavailableError(f"etcd {method} {key} returned invalid JSON") from exc

    def _payload(self, response: httpx.Response, method: str, key: str) -> Dict[str, Any]:
        payload = self._decode(response, method, key)
        if response.status_code >= 400:
            raise StoreUnavailableError(
                f"etcd {method} {key} failed ({payload.get('errorCode')}): {payload.get('message')}"
            )
        return payload
