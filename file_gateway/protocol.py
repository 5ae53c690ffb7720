"""HTTP semantics shared by every channel: headers, ranges, ETags and keys."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, unquote

from litestar.enums import MediaType
from litestar.response import Response, Stream

from .access import is_same_origin
from .errors import InvalidObjectKey, RangeNotSatisfiable

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, AsyncIterator, Callable, Mapping

PRIVATE_CACHE = "private, max-age=86400"
PUBLIC_CACHE = "public, max-age=604800"
FALLBACK_CACHE = "public, max-age=86400"

KEY_DELIMITER = ","

_RANGE_PATTERN = re.compile(r"\s*bytes=(\d+)-(\d*)")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_URI_COMPONENT_SAFE = "-_.!~*'()"
_HEADER_NAMES = {"etag": "ETag", "www-authenticate": "WWW-Authenticate"}


@dataclass(frozen=True)
class RangeRequest:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class FetchRequest:
    """The parts of an inbound request a channel adapter may look at."""

    method: str
    origin: str
    referer: str | None = None
    range_header: str | None = None
    if_none_match: str | None = None
    query: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_head(self) -> bool:
        return self.method.upper() == "HEAD"


@dataclass
class FetchResult:
    """Status, headers and body produced by a channel adapter."""

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    stream: Callable[[], AsyncIterable[bytes]] | AsyncIterable[bytes] | None = None
    total_size: int | None = None
    media_type: str | None = None
    header_only: bool = False

    async def read_body(self) -> bytes:
        if self.stream is None:
            return self.body
        source = self.stream() if callable(self.stream) else self.stream
        return b"".join([part async for part in source])

    def to_response(self) -> Response[Any]:
        # litestar emits Content-Type from media_type, and Content-Length for
        # buffered bodies, so neither may also travel in ``headers``.
        headers = dict(self.headers)
        content_type = headers.pop("Content-Type", None)
        if self.stream is not None or self.header_only:
            return Stream(
                content=self.stream or _empty_body,
                status_code=self.status_code,
                headers=headers,
                media_type=(
                    self.media_type or content_type or "application/octet-stream"
                ),
            )
        headers.pop("Content-Length", None)
        return Response(
            content=self.body,
            status_code=self.status_code,
            headers=headers,
            media_type=self.media_type or content_type or MediaType.TEXT,
        )


async def _empty_body() -> AsyncIterator[bytes]:
    return
    yield


def canonical_header(name: str) -> str:
    lowered = name.lower()
    if lowered in _HEADER_NAMES:
        return _HEADER_NAMES[lowered]
    return "-".join(part.capitalize() for part in lowered.split("-"))


def encode_uri_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


def content_disposition(file_name: str) -> str:
    encoded = encode_uri_component(file_name)
    plain = file_name
    if not (file_name.isascii() and file_name.isprintable()):
        plain = encoded
    elif '"' in file_name or "\\" in file_name:
        plain = encoded
    return f"inline; filename=\"{plain}\"; filename*=UTF-8''{encoded}"


def cache_control(referer: str | None, origin: str) -> str:
    if is_same_origin(referer, origin):
        return PRIVATE_CACHE
    return PUBLIC_CACHE


def common_headers(
    file_name: str,
    file_type: str | None,
    referer: str | None,
    origin: str,
) -> dict[str, str]:
    headers = {
        "Content-Disposition": content_disposition(file_name),
        "Access-Control-Allow-Origin": "*",
        "Accept-Ranges": "bytes",
        "Cache-Control": cache_control(referer, origin),
    }
    if file_type:
        headers["Content-Type"] = file_type
    return headers


def match_range(range_header: str | None) -> tuple[int, int | None] | None:
    """Return ``(start, end)`` from a ``bytes=`` header, ``end`` may be open."""
    if not range_header:
        return None
    matches = _RANGE_PATTERN.match(range_header)
    if matches is None:
        return None
    start = int(matches.group(1))
    end = int(matches.group(2)) if matches.group(2) else None
    return start, end


def parse_range(range_header: str | None, total_size: int) -> RangeRequest | None:
    """Resolve a ``Range`` header against a known size.

    Headers that do not look like ``bytes=<start>-<end>`` are ignored and the
    whole resource is served.

    Raises:
        RangeNotSatisfiable: the range falls outside ``[0, total_size)`` or
            starts after it ends.
    """
    matched = match_range(range_header)
    if matched is None:
        return None
    start, end = matched
    if end is None:
        end = total_size - 1
    if start >= total_size or end >= total_size or start > end:
        raise RangeNotSatisfiable(range_header or "", total_size)
    return RangeRequest(start=start, end=end)


def range_headers(byte_range: RangeRequest, total_size: int) -> dict[str, str]:
    return {
        "Content-Length": str(byte_range.length),
        "Content-Range": f"bytes {byte_range.start}-{byte_range.end}/{total_size}",
    }


def make_etag(timestamp: str | None, total_size: int) -> str:
    return f'"{timestamp or 0}-{total_size}"'


def not_modified(etag: str, cache_policy: str) -> FetchResult:
    return FetchResult(
        status_code=304,
        headers={
            "ETag": etag,
            "Cache-Control": cache_policy,
            "Accept-Ranges": "bytes",
        },
    )


def head_result(headers: Mapping[str, str], etag: str | None = None) -> FetchResult:
    """Header-only 200 response mirroring what a GET would report."""
    result_headers = {
        "Content-Length": headers.get("Content-Length") or "0",
        "Content-Type": headers.get("Content-Type") or "application/octet-stream",
        "Content-Disposition": headers.get("Content-Disposition") or "inline",
        "Access-Control-Allow-Origin": headers.get("Access-Control-Allow-Origin")
        or "*",
        "Accept-Ranges": headers.get("Accept-Ranges") or "bytes",
        "Cache-Control": headers.get("Cache-Control") or PUBLIC_CACHE,
    }
    if etag:
        result_headers["ETag"] = etag
    return FetchResult(status_code=200, headers=result_headers, header_only=True)


def error_result(message: str, status_code: int = 500) -> FetchResult:
    return FetchResult(
        status_code=status_code,
        body=message.encode(),
        media_type=MediaType.TEXT,
    )


def range_not_satisfiable() -> FetchResult:
    return FetchResult(status_code=416, headers={"Accept-Ranges": "bytes"})


def redirect_result(
    location: str, status_code: int = 302, cache_policy: str | None = None
) -> FetchResult:
    headers = {"Location": location}
    if cache_policy:
        headers["Cache-Control"] = cache_policy
    return FetchResult(status_code=status_code, headers=headers)


def decode_object_key(segment: str) -> str:
    """Turn the percent-encoded path segment back into the stored key.

    Raises:
        InvalidObjectKey: the segment is empty or not valid percent-encoded
            UTF-8.
    """
    message = "Error: Decode Image ID Failed"
    if not segment or _BAD_ESCAPE.search(segment):
        raise InvalidObjectKey(message)
    try:
        decoded = unquote(segment, errors="strict")
    except UnicodeDecodeError as error:
        raise InvalidObjectKey(message) from error
    return decoded.replace(KEY_DELIMITER, "/")


def encode_object_key(key: str) -> str:
    return quote(key.replace("/", KEY_DELIMITER), safe="")
