"""Telegram bot API access for message-stored files and their chunks.

Failures surface as ``BackendTransient`` so callers can retry them. Messages
never include request URLs because those embed the bot token.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from .errors import BackendTransient

if TYPE_CHECKING:
    from collections.abc import Mapping

LOG = logging.getLogger("file_gateway.telegram")


class TelegramClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
    ):
        self._http = http_client
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")

    def file_url(self, file_path: str) -> str:
        return f"{self._api_base}/file/bot{self._bot_token}/{file_path.lstrip('/')}"

    async def get_file_path(self, file_id: str) -> str:
        """Resolve a Telegram ``file_id`` to its downloadable path."""
        try:
            response = await self._http.get(
                f"{self._api_base}/bot{self._bot_token}/getFile",
                params={"file_id": file_id},
            )
        except httpx.HTTPError as error:
            msg = f"getFile request failed ({type(error).__name__})"
            raise BackendTransient(msg) from error

        if response.status_code != 200:
            msg = f"getFile returned HTTP {response.status_code}"
            raise BackendTransient(msg)
        try:
            payload = response.json()
        except ValueError as error:
            msg = "getFile returned invalid JSON"
            raise BackendTransient(msg) from error

        file_path = (payload.get("result") or {}).get("file_path")
        if not payload.get("ok") or not file_path:
            msg = "getFile returned no file path"
            raise BackendTransient(msg)
        return file_path

    async def fetch_file(self, file_path: str) -> bytes:
        try:
            response = await self._http.get(self.file_url(file_path))
        except httpx.HTTPError as error:
            msg = f"file download failed ({type(error).__name__})"
            raise BackendTransient(msg) from error
        if not response.is_success:
            msg = f"HTTP {response.status_code}: {response.reason_phrase}"
            raise BackendTransient(msg)
        return response.content

    async def fetch_chunk(self, remote_id: str) -> bytes:
        file_path = await self.get_file_path(remote_id)
        return await self.fetch_file(file_path)

    async def open_file(
        self,
        file_path: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Send a streaming request for ``file_path``; the caller closes it."""
        request = self._http.build_request(
            method=method,
            url=self.file_url(file_path),
            headers=dict(headers or {}),
        )
        try:
            return await self._http.send(request, stream=True)
        except httpx.HTTPError as error:
            msg = f"file request failed ({type(error).__name__})"
            raise BackendTransient(msg) from error
