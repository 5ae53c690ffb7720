"""Key-value lookup of stored object records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import httpx

from .errors import MetadataStoreError

if TYPE_CHECKING:
    from collections.abc import Mapping

LOG = logging.getLogger("file_gateway.store")


@dataclass(frozen=True)
class StoredEntry:
    value: bytes | None
    metadata: dict[str, Any] | None


class MetadataStore(Protocol):
    async def get(self, key: str) -> StoredEntry | None: ...


class InMemoryMetadataStore:
    def __init__(self, entries: Mapping[str, StoredEntry] | None = None):
        self._entries: dict[str, StoredEntry] = dict(entries or {})

    def put(
        self,
        key: str,
        metadata: Mapping[str, Any] | None,
        value: bytes | str | None = None,
    ) -> None:
        if isinstance(value, str):
            value = value.encode()
        self._entries[key] = StoredEntry(
            value=value, metadata=dict(metadata) if metadata is not None else None
        )

    async def get(self, key: str) -> StoredEntry | None:
        return self._entries.get(key)


class CloudflareKVStore:
    """Workers KV namespace read through the Cloudflare REST API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        account_id: str,
        namespace_id: str,
        api_token: str,
        api_base: str = "https://api.cloudflare.com/client/v4",
    ):
        self._http = http_client
        self._base = (
            f"{api_base.rstrip('/')}/accounts/{account_id}"
            f"/storage/kv/namespaces/{namespace_id}"
        )
        self._headers = {"Authorization": f"Bearer {api_token}"}

    async def get(self, key: str) -> StoredEntry | None:
        quoted = quote(key, safe="")
        metadata_response = await self._request(f"{self._base}/metadata/{quoted}")
        if metadata_response is None:
            LOG.debug("metadata miss for %s", key)
            return None
        try:
            metadata = metadata_response.json().get("result")
        except ValueError as error:
            msg = "Error: Invalid metadata response"
            raise MetadataStoreError(msg) from error

        value_response = await self._request(f"{self._base}/values/{quoted}")
        value = value_response.content if value_response is not None else None
        return StoredEntry(value=value, metadata=metadata)

    async def _request(self, url: str) -> httpx.Response | None:
        try:
            response = await self._http.get(url, headers=self._headers)
        except httpx.HTTPError as error:
            LOG.warning("metadata store request failed: %s", error)
            msg = "Error: Metadata store unavailable"
            raise MetadataStoreError(msg) from error
        if response.status_code == 404:
            return None
        if not response.is_success:
            LOG.warning("metadata store returned HTTP %s", response.status_code)
            msg = "Error: Metadata store unavailable"
            raise MetadataStoreError(msg)
        return response
