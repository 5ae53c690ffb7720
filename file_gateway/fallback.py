from __future__ import annotations

import logging

import httpx

from .protocol import FALLBACK_CACHE, FetchResult, error_result, redirect_result

LOG = logging.getLogger("file_gateway.fallback")

BLOCK_IMAGE = "/static/BlockImg.png"
ALLOW_LIST_IMAGE = "/static/WhiteListOn.png"
NOT_FOUND_IMAGE = "/static/404.png"


class FallbackAssets:
    """Static images served in place of a file the client may not see.

    Assets are fetched from ``base_url`` (the request's own origin when
    unset); when an asset is unavailable the client is redirected to a page
    explaining the decision instead.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str | None = None):
        self._http = http_client
        self._base_url = base_url.rstrip("/") if base_url else None

    async def blocked(self, origin: str) -> FetchResult:
        return await self._image_or_redirect(origin, BLOCK_IMAGE, "/blockimg")

    async def allow_list_notice(self, origin: str) -> FetchResult:
        return await self._image_or_redirect(origin, ALLOW_LIST_IMAGE, "/whiteliston")

    async def not_found(self, origin: str) -> FetchResult:
        image = await self._fetch(origin, NOT_FOUND_IMAGE)
        if image is None:
            result = error_result("Error: Image Not Found", 404)
            result.headers["Cache-Control"] = FALLBACK_CACHE
            return result
        return self._image_result(image, 404)

    async def _image_or_redirect(
        self, origin: str, asset: str, notice_path: str
    ) -> FetchResult:
        image = await self._fetch(origin, asset)
        if image is None:
            return redirect_result(
                f"{origin.rstrip('/')}{notice_path}", cache_policy=FALLBACK_CACHE
            )
        return self._image_result(image, 403)

    @staticmethod
    def _image_result(image: bytes, status_code: int) -> FetchResult:
        return FetchResult(
            status_code=status_code,
            headers={
                "Content-Type": "image/png",
                "Content-Disposition": "inline",
                "Cache-Control": FALLBACK_CACHE,
            },
            body=image,
        )

    async def _fetch(self, origin: str, asset: str) -> bytes | None:
        url = f"{self._base_url or origin.rstrip('/')}{asset}"
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as error:
            LOG.warning("failed to fetch fallback asset %s: %s", url, error)
            return None
        if not response.is_success:
            LOG.debug("fallback asset %s unavailable (HTTP %s)", url, response.status_code)
            return None
        return response.content
