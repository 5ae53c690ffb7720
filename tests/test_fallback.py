"""Tests for the block, allow-list and not-found fallback responses."""

from __future__ import annotations

import httpx
import pytest
from file_gateway.fallback import FallbackAssets
from file_gateway.protocol import FALLBACK_CACHE

ORIGIN = "https://img.example.net"


@pytest.fixture
async def http_client(backend):
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    yield client
    await client.aclose()


class TestFallbackAssets:
    """Test the static fallback images and their redirects."""

    @pytest.mark.anyio
    async def test_block_image(self, backend, http_client):
        backend.static["/static/BlockImg.png"] = b"\x89PNG-block"
        result = await FallbackAssets(http_client).blocked(ORIGIN)
        assert result.status_code == 403
        assert result.body == b"\x89PNG-block"
        assert result.headers["Content-Type"] == "image/png"
        assert result.headers["Cache-Control"] == FALLBACK_CACHE
        assert str(backend.requests[-1].url) == f"{ORIGIN}/static/BlockImg.png"

    @pytest.mark.anyio
    async def test_block_redirect_without_image(self, http_client):
        result = await FallbackAssets(http_client).blocked(ORIGIN)
        assert result.status_code == 302
        assert result.headers["Location"] == f"{ORIGIN}/blockimg"

    @pytest.mark.anyio
    async def test_allow_list_notice(self, backend, http_client):
        fallback = FallbackAssets(http_client)
        redirect = await fallback.allow_list_notice(ORIGIN)
        assert redirect.status_code == 302
        assert redirect.headers["Location"] == f"{ORIGIN}/whiteliston"

        backend.static["/static/WhiteListOn.png"] = b"\x89PNG-notice"
        image = await fallback.allow_list_notice(ORIGIN)
        assert image.status_code == 403
        assert image.body == b"\x89PNG-notice"

    @pytest.mark.anyio
    async def test_not_found_text(self, http_client):
        result = await FallbackAssets(http_client).not_found(ORIGIN)
        assert result.status_code == 404
        assert result.body == b"Error: Image Not Found"
        assert result.headers["Cache-Control"] == FALLBACK_CACHE

    @pytest.mark.anyio
    async def test_not_found_image(self, backend, http_client):
        backend.static["/static/404.png"] = b"\x89PNG-404"
        result = await FallbackAssets(http_client).not_found(ORIGIN)
        assert result.status_code == 404
        assert result.body == b"\x89PNG-404"

    @pytest.mark.anyio
    async def test_base_url_override(self, backend, http_client):
        backend.static["/static/BlockImg.png"] = b"png"
        fallback = FallbackAssets(http_client, base_url="https://assets.example.com/")
        await fallback.blocked(ORIGIN)
        assert str(backend.requests[-1].url) == (
            "https://assets.example.com/static/BlockImg.png"
        )

    @pytest.mark.anyio
    async def test_unreachable_assets_redirect(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await FallbackAssets(client).blocked(ORIGIN)
        assert result.status_code == 302
        assert result.headers["Location"] == f"{ORIGIN}/blockimg"
