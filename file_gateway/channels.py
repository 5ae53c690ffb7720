from __future__ import annotations

import logging
from datetime import UTC, datetime
from email.utils import format_datetime
from functools import partial
from typing import TYPE_CHECKING, Any

from anyio import to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import BackendFatal, BackendTransient, ChannelUnavailable
from .protocol import (
    FetchResult,
    canonical_header,
    common_headers,
    head_result,
    make_etag,
    match_range,
    not_modified,
    parse_range,
    range_headers,
    range_not_satisfiable,
    redirect_result,
)
from .reconstruct import ChunkReconstructor, check_integrity
from .records import (
    BucketPayload,
    ChunkedPayload,
    ExternalPayload,
    MessagePayload,
    S3Payload,
)
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Mapping

    from .fallback import FallbackAssets
    from .protocol import FetchRequest
    from .records import ObjectRecord
    from .settings import GatewaySettings
    from .telegram import TelegramClient

LOG = logging.getLogger("file_gateway.channels")

READ_SIZE = 1024 * 64

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

OBJECT_HEADERS = {
    "Content-Encoding": "ContentEncoding",
    "Content-Language": "ContentLanguage",
    "Content-Type": "ContentType",
    "ETag": "ETag",
    "Expires": "Expires",
    "Last-Modified": "LastModified",
}


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(partial(func, *args, **kwargs))


def _format_header_value(value: Any) -> str:
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        aware = aware.astimezone(UTC)
        return format_datetime(aware, usegmt=True)
    return str(value)


def _object_headers(result: Mapping[str, Any]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for header, key in OBJECT_HEADERS.items():
        value = result.get(key)
        if value is None:
            continue
        headers[header] = _format_header_value(value)
    return headers


def _prepare_response_headers(headers: Iterable[tuple[bytes, bytes]]) -> dict[str, str]:
    prepared: dict[str, str] = {}
    for key_bytes, value_bytes in headers:
        key = key_bytes.decode("latin-1")
        if key.lower() in HOP_BY_HOP:
            continue
        prepared[canonical_header(key)] = value_bytes.decode("latin-1")
    return prepared


def _error_code(error: ClientError) -> str | None:
    return error.response.get("Error", {}).get("Code")


def _error_status(error: ClientError) -> int:
    return int(error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 500))


def _is_range_error(error: ClientError) -> bool:
    return _error_code(error) == "InvalidRange" or _error_status(error) == 416


def _total_from_content_range(content_range: str | None) -> int | None:
    if not content_range or "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


def _body_iterator(streaming_body: Any) -> Callable[[], AsyncIterator[bytes]]:
    async def iterator() -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await _run_sync(streaming_body.read, READ_SIZE)
                if not chunk:
                    break
                yield chunk
        finally:
            await _run_sync(streaming_body.close)

    return iterator


def _base_headers(record: ObjectRecord, request: FetchRequest) -> dict[str, str]:
    return common_headers(
        record.display_name, record.file_type, request.referer, request.origin
    )


def build_s3_client(payload: S3Payload):
    session = Session(
        aws_access_key_id=payload.access_key_id,
        aws_secret_access_key=payload.secret_access_key,
        region_name=payload.region,
    )
    return session.client(
        "s3",
        endpoint_url=payload.endpoint,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3},
            s3={"addressing_style": "path" if payload.path_style else "auto"},
        ),
    )


def build_bucket_client(settings: GatewaySettings):
    session = Session(
        aws_access_key_id=settings.bucket_access_key,
        aws_secret_access_key=settings.bucket_secret_key,
        region_name=settings.bucket_region,
    )
    return session.client(
        "s3",
        endpoint_url=settings.bucket_endpoint,
        config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3}),
    )


class ChannelAdapter:
    """Serve one stored object over a single backend kind."""

    async def fetch(self, record: ObjectRecord, request: FetchRequest) -> FetchResult:
        raise NotImplementedError


class BucketStoreAdapter(ChannelAdapter):
    """Gateway-owned bucket addressed by the object key itself."""

    def __init__(self, client: Any | None, bucket: str | None):
        self._client = client
        self._bucket = bucket

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> BucketStoreAdapter:
        if not settings.bucket_enabled:
            return cls(client=None, bucket=None)
        return cls(client=build_bucket_client(settings), bucket=settings.bucket_name)

    @property
    def enabled(self) -> bool:
        return self._client is not None and bool(self._bucket)

    async def fetch(self, record: ObjectRecord, request: FetchRequest) -> FetchResult:
        if not self.enabled:
            msg = "Error: Please configure the bucket store"
            raise ChannelUnavailable(msg)
        assert isinstance(record.payload, BucketPayload)
        key = record.payload.key
        headers = _base_headers(record, request)

        if request.is_head:
            try:
                result = await _run_sync(
                    self._client.head_object, Bucket=self._bucket, Key=key
                )
            except ClientError as error:
                raise self._fatal(error, key) from error
            except BotoCoreError as error:
                raise self._unreachable(error, key) from error
            headers = {**_object_headers(result), **headers}
            headers["Content-Length"] = str(result.get("ContentLength", 0))
            LOG.debug("bucket HEAD hit for %s", key)
            return head_result(headers)

        get_kwargs: dict[str, Any] = {"Bucket": self._bucket, "Key": key}
        matched = match_range(request.range_header)
        if matched is not None:
            start, end = matched
            if end is None or end < start:
                get_kwargs["Range"] = f"bytes={start}-"
            else:
                get_kwargs["Range"] = f"bytes={start}-{end}"

        try:
            result = await _run_sync(self._client.get_object, **get_kwargs)
        except ClientError as error:
            if matched is not None and _is_range_error(error):
                return range_not_satisfiable()
            raise self._fatal(error, key) from error
        except BotoCoreError as error:
            raise self._unreachable(error, key) from error

        headers = {**_object_headers(result), **headers}
        content_length = result.get("ContentLength")
        if content_length is not None:
            headers["Content-Length"] = str(content_length)
        content_range = result.get("ContentRange")
        status_code = 200
        if matched is not None and content_range:
            headers["Content-Range"] = content_range
            status_code = 206

        LOG.debug("bucket GET hit for %s status=%s", key, status_code)
        return FetchResult(
            status_code=status_code,
            headers=headers,
            stream=_body_iterator(result["Body"]),
            total_size=_total_from_content_range(content_range) or content_length,
        )

    def _fatal(self, error: ClientError, key: str) -> BackendFatal:
        code = _error_code(error)
        if code in {"404", "NoSuchKey", "NotFound"}:
            LOG.error("object %s has a record but is missing from the bucket", key)
            return BackendFatal("Error: Failed to fetch file")
        LOG.warning("bucket store error for %s: %s", key, error)
        return BackendFatal(f"Error: Failed to fetch from bucket store - {code}")

    def _unreachable(self, error: BotoCoreError, key: str) -> BackendFatal:
        LOG.warning("bucket store client error for %s: %s", key, error)
        return BackendFatal(
            f"Error: Failed to fetch from bucket store - {type(error).__name__}"
        )


class S3Adapter(ChannelAdapter):
    """Per-object S3 bucket; the backend handles Range itself."""

    def __init__(self, client_factory: Callable[[S3Payload], Any] = build_s3_client):
        self._client_factory = client_factory

    async def fetch(self, record: ObjectRecord, request: FetchRequest) -> FetchResult:
        assert isinstance(record.payload, S3Payload)
        payload = record.payload
        kwargs: dict[str, Any] = {"Bucket": payload.bucket, "Key": payload.key}
        if request.range_header:
            kwargs["Range"] = request.range_header

        try:
            client = await _run_sync(self._client_factory, payload)
            operation = client.head_object if request.is_head else client.get_object
            result = await _run_sync(operation, **kwargs)
        except ClientError as error:
            if request.range_header and _is_range_error(error):
                return range_not_satisfiable()
            message = error.response.get("Error", {}).get("Message") or _error_code(
                error
            )
            LOG.warning("S3 error for %s: %s", record.key, error)
            msg = f"Error: Failed to fetch from S3 - {message}"
            raise BackendFatal(msg) from error
        except BotoCoreError as error:
            LOG.warning("S3 client error for %s: %s", record.key, error)
            msg = f"Error: Failed to fetch from S3 - {type(error).__name__}"
            raise BackendFatal(msg) from error

        headers = _base_headers(record, request)
        content_length = result.get("ContentLength")
        if content_length is not None:
            headers["Content-Length"] = str(content_length)
        content_range = result.get("ContentRange")
        if content_range:
            headers["Content-Range"] = content_range

        if request.is_head:
            return head_result(headers)

        status_code = result.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if not status_code:
            status_code = 206 if content_range else 200
        return FetchResult(
            status_code=int(status_code),
            headers=headers,
            stream=_body_iterator(result["Body"]),
            total_size=_total_from_content_range(content_range) or content_length,
        )


class MessageAdapter(ChannelAdapter):
    """A file stored as a single Telegram message, proxied as-is."""

    def __init__(
        self,
        telegram_for: Callable[[str | None], TelegramClient],
        fallback: FallbackAssets,
        retry_policy: RetryPolicy | None = None,
    ):
        self._telegram_for = telegram_for
        self._fallback = fallback
        self._retry = retry_policy or RetryPolicy()

    async def fetch(self, record: ObjectRecord, request: FetchRequest) -> FetchResult:
        assert isinstance(record.payload, MessagePayload)
        payload = record.payload
        telegram = self._telegram_for(payload.bot_token)

        try:
            file_path = await self._retry.run(
                partial(telegram.get_file_path, payload.file_id),
                describe=f"file path for {record.key}",
            )
        except BackendTransient as error:
            msg = "Error: Failed to fetch image path"
            raise BackendFatal(msg) from error

        forward: dict[str, str] = {}
        if request.range_header:
            forward["Range"] = request.range_header
        if request.if_none_match:
            forward["If-None-Match"] = request.if_none_match

        async def attempt():
            response = await telegram.open_file(
                file_path, method=request.method, headers=forward
            )
            if response.is_success or response.status_code in {304, 404}:
                return response
            await response.aclose()
            msg = f"HTTP {response.status_code}"
            raise BackendTransient(msg)

        try:
            response = await self._retry.run(attempt, describe=f"file {record.key}")
        except BackendTransient as error:
            msg = "Error: Failed to fetch image"
            raise BackendFatal(msg) from error

        if response.status_code == 404:
            await response.aclose()
            return await self._fallback.not_found(request.origin)

        headers = _prepare_response_headers(response.headers.raw)
        headers.update(_base_headers(record, request))

        if request.is_head or response.status_code == 304:
            await response.aclose()
            if response.status_code == 304:
                return FetchResult(status_code=304, headers=headers)
            return head_result(headers)

        async def iterator() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_raw():
                    yield chunk
            finally:
                await response.aclose()

        content_length = headers.get("Content-Length")
        return FetchResult(
            status_code=response.status_code,
            headers=headers,
            stream=iterator,
            total_size=int(content_length) if content_length else None,
        )


class ChunkedAdapter(ChannelAdapter):
    """A file split across many Telegram messages, rebuilt on the fly."""

    def __init__(
        self,
        telegram_for: Callable[[str | None], TelegramClient],
        retry_policy: RetryPolicy | None = None,
    ):
        self._telegram_for = telegram_for
        self._retry = retry_policy or RetryPolicy()

    async def fetch(self, record: ObjectRecord, request: FetchRequest) -> FetchResult:
        assert isinstance(record.payload, ChunkedPayload)
        payload = record.payload
        total = check_integrity(payload.chunks, payload.total_chunks)

        headers = _base_headers(record, request)
        headers["Content-Length"] = str(total)
        etag = make_etag(record.timestamp, total)
        headers["ETag"] = etag

        if request.if_none_match and request.if_none_match == etag:
            return not_modified(etag, headers["Cache-Control"])

        byte_range = parse_range(request.range_header, total)

        if request.is_head:
            return head_result(headers, etag)

        reconstructor = ChunkReconstructor(
            self._telegram_for(payload.bot_token).fetch_chunk, self._retry
        )
        start, end = (byte_range.start, byte_range.end) if byte_range else (0, total - 1)

        def stream() -> AsyncIterator[bytes]:
            return reconstructor.iter_range(payload.chunks, start, end)

        status_code = 200
        if byte_range is not None:
            headers.update(range_headers(byte_range, total))
            status_code = 206
        LOG.debug(
            "serving %s bytes %d-%d/%d from %d chunks",
            record.key,
            start,
            end,
            total,
            len(payload.chunks),
        )
        return FetchResult(
            status_code=status_code,
            headers=headers,
            stream=stream,
            total_size=total,
        )


class ExternalAdapter(ChannelAdapter):
    async def fetch(self, record: ObjectRecord, request: FetchRequest) -> FetchResult:
        assert isinstance(record.payload, ExternalPayload)
        return redirect_result(record.payload.url, 302)
