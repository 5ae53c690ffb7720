from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING

import httpx
import pytest
from file_gateway import Gateway, GatewaySettings
from file_gateway.access import AccessPolicy
from file_gateway.store import InMemoryMetadataStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Generator


class FakeBackend:
    """Telegram bot API plus static assets, served through httpx.MockTransport.

    ``files`` maps Telegram file ids to their bytes, ``failures`` makes the
    next N downloads of a file id answer 502, and ``static`` maps asset paths
    (``/static/BlockImg.png``) to image bytes.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.failures: dict[str, int] = {}
        self.static: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []

    @property
    def downloads(self) -> list[str]:
        return [
            request.url.path.rsplit("/", 1)[1]
            for request in self.requests
            if request.url.path.startswith("/file/bot")
        ]

    @property
    def telegram_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "api.telegram.org"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.startswith("/static/"):
            asset = self.static.get(path)
            if asset is None:
                return httpx.Response(404)
            return httpx.Response(
                200, content=asset, headers={"content-type": "image/png"}
            )

        if path.endswith("/getFile"):
            file_id = request.url.params.get("file_id", "")
            if file_id not in self.files:
                return httpx.Response(400, json={"ok": False})
            return httpx.Response(
                200,
                json={"ok": True, "result": {"file_path": f"documents/{file_id}"}},
            )

        if path.startswith("/file/bot"):
            file_id = path.rsplit("/", 1)[1]
            remaining = self.failures.get(file_id, 0)
            if remaining:
                self.failures[file_id] = remaining - 1
                return httpx.Response(502)
            data = self.files.get(file_id)
            if data is None:
                return httpx.Response(404)
            headers = {"content-type": "application/octet-stream"}
            range_header = request.headers.get("range")
            if range_header and request.method == "GET":
                start_str, end_str = range_header.split("=", 1)[1].split("-", 1)
                start = int(start_str)
                end = int(end_str) if end_str else len(data) - 1
                headers["content-range"] = f"bytes {start}-{end}/{len(data)}"
                return httpx.Response(206, content=data[start : end + 1], headers=headers)
            if request.method == "HEAD":
                headers["content-length"] = str(len(data))
                return httpx.Response(200, headers=headers)
            return httpx.Response(200, content=data, headers=headers)

        return httpx.Response(404)


def put_chunked(
    store: InMemoryMetadataStore,
    backend: FakeBackend,
    key: str,
    parts: list[bytes],
    *,
    total_chunks: int | None = None,
    **metadata: object,
) -> bytes:
    """Store ``parts`` as a chunked Telegram record and return the whole file."""
    chunks = []
    for index, data in enumerate(parts):
        file_id = f"{key.replace('/', '_')}-chunk-{index}"
        backend.files[file_id] = data
        chunks.append({"index": index, "fileId": file_id, "size": len(data)})
    record = {
        "Channel": "TelegramNew",
        "IsChunked": True,
        "TotalChunks": total_chunks if total_chunks is not None else len(parts),
        "FileName": key.rsplit("/", 1)[-1],
        "FileType": "video/mp4",
        "TimeStamp": 1700000000000,
    }
    record.update(metadata)
    # stored out of order on purpose; readers must sort by index
    store.put(key, record, json.dumps(list(reversed(chunks))))
    return b"".join(parts)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        telegram_bot_token="test-token",
        chunk_retry_delay=0,
        bucket_name=None,
    )


@pytest.fixture
async def make_gateway(
    gateway_settings: GatewaySettings,
    store: InMemoryMetadataStore,
    backend: FakeBackend,
) -> AsyncGenerator[Callable[..., Gateway]]:
    """Build gateways wired to the fake backend; extra kwargs go to Gateway."""
    clients: list[httpx.AsyncClient] = []

    def factory(
        policy: AccessPolicy | None = None,
        settings: GatewaySettings | None = None,
        **kwargs: object,
    ) -> Gateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
        clients.append(client)
        resolved = policy or AccessPolicy()
        return Gateway(
            settings or gateway_settings,
            store,
            policy_provider=lambda: resolved,
            http_client=client,
            **kwargs,
        )

    yield factory

    for client in clients:
        await client.aclose()


def _set_env(env_vars: dict[str, str]) -> dict[str, str | None]:
    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value
    return original_values


def _restore_env(original_values: dict[str, str | None]) -> None:
    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
def gateway_env_vars() -> Generator[dict[str, str]]:
    """Set up environment variables for the backends."""
    env_vars = {
        "FILE_GATEWAY_BUCKET_ENDPOINT": "http://127.0.0.1:9000",
        "FILE_GATEWAY_BUCKET_NAME": "uploads",
        "FILE_GATEWAY_BUCKET_ACCESS_KEY": "minio",
        "FILE_GATEWAY_BUCKET_SECRET_KEY": "minio123",
        "FILE_GATEWAY_TG_BOT_TOKEN": "123:abc",
        "FILE_GATEWAY_CHUNK_MAX_ATTEMPTS": "5",
        "FILE_GATEWAY_CHUNK_RETRY_DELAY": "0.25",
    }
    original_values = _set_env(env_vars)
    yield env_vars
    _restore_env(original_values)


@pytest.fixture
def access_env_vars() -> Generator[dict[str, str]]:
    """Set up environment variables for the access policy."""
    env_vars = {
        "FILE_GATEWAY_ALLOWED_DOMAINS": " good.com, Example.ORG ,",
        "FILE_GATEWAY_WHITELIST_MODE": "true",
    }
    original_values = _set_env(env_vars)
    yield env_vars
    _restore_env(original_values)
