from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

import httpx

from .access import AccessPolicy, Decision, label_decision, referer_allowed
from .channels import (
    BucketStoreAdapter,
    ChannelAdapter,
    ChunkedAdapter,
    ExternalAdapter,
    MessageAdapter,
    S3Adapter,
)
from .errors import ChannelUnavailable, GatewayError, ObjectNotFound, RangeNotSatisfiable
from .fallback import FallbackAssets
from .protocol import (
    FetchRequest,
    FetchResult,
    decode_object_key,
    error_result,
    range_not_satisfiable,
)
from .records import (
    BucketPayload,
    ChunkedPayload,
    ExternalPayload,
    MessagePayload,
    ObjectRecord,
    S3Payload,
)
from .retry import RetryPolicy
from .settings import GatewaySettings, load_access_policy, load_gateway_settings_from_env
from .store import CloudflareKVStore, InMemoryMetadataStore, MetadataStore
from .telegram import TelegramClient
from .transform import ImageTransformer, TransformParams, is_compressible

if TYPE_CHECKING:
    from collections.abc import Callable

    from litestar import Request
    from litestar.response import Response

LOG = logging.getLogger("file_gateway.gateway")


class Gateway:
    def __init__(
        self,
        settings: GatewaySettings,
        store: MetadataStore | None = None,
        *,
        policy_provider: Callable[[], AccessPolicy] = load_access_policy,
        http_client: httpx.AsyncClient | None = None,
        bucket_client: Any | None = None,
        transformer: ImageTransformer | None = None,
    ):
        self._settings = settings
        self._store = store
        self._policy_provider = policy_provider
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._transformer = transformer
        self._retry = RetryPolicy(
            max_attempts=settings.chunk_max_attempts,
            base_delay=settings.chunk_retry_delay,
        )
        if bucket_client is not None:
            self._bucket = BucketStoreAdapter(bucket_client, settings.bucket_name)
        else:
            self._bucket = BucketStoreAdapter.from_settings(settings)
        self._fallback: FallbackAssets | None = None
        self._adapters: dict[type, ChannelAdapter] = {}
        if http_client is not None:
            self._wire(http_client)

    @classmethod
    def from_env(cls) -> Gateway:
        """Create a Gateway instance from environment variables.

        Returns:
            Gateway configured from environment variables.
        """
        return cls(settings=load_gateway_settings_from_env())

    async def startup(self) -> None:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(60.0, read=300.0),
                trust_env=False,
            )
            self._owns_http_client = True
            self._wire(self._http_client)
        if self._store is None:
            self._store = self._build_store(self._http_client)
        LOG.info(
            "file gateway ready (bucket=%s, metadata=%s, telegram=%s)",
            "enabled" if self._bucket.enabled else "disabled",
            type(self._store).__name__,
            self._settings.telegram_api,
        )

    async def shutdown(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def handle(self, request: Request, raw_key: str) -> Response:
        LOG.debug("handle method=%s key=%s", request.method, raw_key)
        if self._http_client is None or self._store is None:
            message = "gateway not initialised"
            raise RuntimeError(message)

        fetch_request = self._build_fetch_request(request)
        try:
            result = await self._serve(fetch_request, raw_key)
        except RangeNotSatisfiable as error:
            LOG.debug(
                "unsatisfiable range %r for %s (size %s)",
                error.header,
                raw_key,
                error.total_size,
            )
            result = range_not_satisfiable()
        except GatewayError as error:
            if error.status_code >= 500:
                LOG.warning("failed to serve %s: %s", raw_key, error.message)
            else:
                LOG.debug("rejected %s: %s", raw_key, error.message)
            result = error_result(error.message, error.status_code)
        return result.to_response()

    async def _serve(self, request: FetchRequest, raw_key: str) -> FetchResult:
        assert self._store is not None
        assert self._fallback is not None
        key = decode_object_key(raw_key)
        policy = self._policy_provider()

        if not referer_allowed(request.referer, request.origin, policy):
            return await self._fallback.blocked(request.origin)

        entry = await self._store.get(key)
        if entry is None or entry.metadata is None:
            msg = "Error: Image Not Found"
            raise ObjectNotFound(msg)
        record = ObjectRecord.from_stored(key, entry.metadata, entry.value)

        decision = label_decision(request.referer, request.origin, record, policy)
        if decision is Decision.BLOCK_IMAGE:
            LOG.debug("blocked %s (label=%s)", key, record.policy_label.value)
            return await self._fallback.blocked(request.origin)
        if decision is Decision.ALLOW_LIST_NOTICE:
            return await self._fallback.allow_list_notice(request.origin)

        adapter = self._adapters[type(record.payload)]
        LOG.debug("dispatching %s to %s", key, type(adapter).__name__)
        result = await adapter.fetch(record, request)
        return await self._maybe_transform(request, result)

    async def _maybe_transform(
        self, request: FetchRequest, result: FetchResult
    ) -> FetchResult:
        if self._transformer is None or result.status_code != 200:
            return result
        if request.is_head or request.range_header:
            return result
        params = TransformParams.from_query(request.query)
        content_type = result.headers.get("Content-Type")
        if params is None or not is_compressible(content_type):
            return result

        body = await result.read_body()
        headers = dict(result.headers)
        try:
            transformed = await self._transformer.transform(body, content_type, params)
        except Exception:
            LOG.warning("image transform failed, serving original", exc_info=True)
            transformed = None

        if transformed is not None:
            body, headers["Content-Type"] = transformed
            headers.pop("ETag", None)
        headers["Content-Length"] = str(len(body))
        return FetchResult(
            status_code=200, headers=headers, body=body, total_size=len(body)
        )

    def _build_fetch_request(self, request: Request) -> FetchRequest:
        parts = urlsplit(str(request.url))
        return FetchRequest(
            method=request.method,
            origin=f"{parts.scheme}://{parts.netloc}",
            referer=request.headers.get("referer"),
            range_header=request.headers.get("range"),
            if_none_match=request.headers.get("if-none-match"),
            query={key: value for key, value in request.query_params.items()},
        )

    def _wire(self, http_client: httpx.AsyncClient) -> None:
        self._fallback = FallbackAssets(http_client, self._settings.static_base_url)
        self._adapters = {
            BucketPayload: self._bucket,
            S3Payload: S3Adapter(),
            MessagePayload: MessageAdapter(
                self._telegram_for, self._fallback, self._retry
            ),
            ChunkedPayload: ChunkedAdapter(self._telegram_for, self._retry),
            ExternalPayload: ExternalAdapter(),
        }

    def _telegram_for(self, bot_token: str | None) -> TelegramClient:
        assert self._http_client is not None
        token = bot_token or self._settings.telegram_bot_token
        if not token:
            msg = "Error: Please configure a Telegram bot token"
            raise ChannelUnavailable(msg)
        return TelegramClient(self._http_client, token, self._settings.telegram_api)

    def _build_store(self, http_client: httpx.AsyncClient) -> MetadataStore:
        settings = self._settings
        if settings.kv_enabled:
            assert settings.kv_account_id and settings.kv_namespace_id
            assert settings.kv_api_token
            return CloudflareKVStore(
                http_client,
                account_id=settings.kv_account_id,
                namespace_id=settings.kv_namespace_id,
                api_token=settings.kv_api_token,
                api_base=settings.kv_api_base,
            )
        LOG.warning("no metadata store configured, using an empty in-memory store")
        return InMemoryMetadataStore()
