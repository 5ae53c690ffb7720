"""Stored object records and the per-channel payloads they carry."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)

from .errors import ChunkIntegrityError, InvalidChannel

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

LOG = logging.getLogger("file_gateway.records")


# Channel names as written into stored records.
STORED_BUCKET_STORE = "CloudflareR2"
STORED_S3 = "S3"
STORED_TELEGRAM = "TelegramNew"
STORED_EXTERNAL = "External"


class Channel(Enum):
    """Backend kind a record resolves to.

    Single-message and chunked Telegram files share the stored name
    ``TelegramNew``; the ``IsChunked`` flag tells them apart.
    """

    BUCKET_STORE = "bucket_store"
    S3 = "s3"
    MESSAGE = "message"
    CHUNKED = "chunked"
    EXTERNAL = "external"


class PolicyLabel(Enum):
    NONE = "None"
    WHITE = "White"
    BLOCK = "Block"
    ADULT = "Adult"


@dataclass(frozen=True)
class ChunkDescriptor:
    index: int
    remote_id: str
    size: int


@dataclass(frozen=True)
class BucketPayload:
    key: str


@dataclass(frozen=True)
class S3Payload:
    bucket: str
    key: str
    endpoint: str | None = None
    region: str = "auto"
    access_key_id: str | None = None
    secret_access_key: str | None = None
    path_style: bool = False


@dataclass(frozen=True)
class MessagePayload:
    file_id: str
    bot_token: str | None = None


@dataclass(frozen=True)
class ChunkedPayload:
    chunks: tuple[ChunkDescriptor, ...]
    total_chunks: int
    bot_token: str | None = None


@dataclass(frozen=True)
class ExternalPayload:
    url: str


ChannelPayload = (
    BucketPayload | S3Payload | MessagePayload | ChunkedPayload | ExternalPayload
)


class _StoredChunk(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int
    file_id: str = Field(validation_alias=AliasChoices("fileId", "file_id"))
    size: int | None = None


_CHUNK_LIST = TypeAdapter(list[_StoredChunk])


class StoredMetadata(BaseModel):
    """Metadata record as written by the upload pipeline."""

    model_config = ConfigDict(extra="ignore")

    channel: str | None = Field(default=None, validation_alias="Channel")
    file_name: str | None = Field(default=None, validation_alias="FileName")
    file_type: str | None = Field(default=None, validation_alias="FileType")
    list_type: str | None = Field(default=None, validation_alias="ListType")
    label: str | None = Field(default=None, validation_alias="Label")
    timestamp: int | str | None = Field(default=None, validation_alias="TimeStamp")
    tg_file_id: str | None = Field(default=None, validation_alias="TgFileId")
    tg_bot_token: str | None = Field(default=None, validation_alias="TgBotToken")
    is_chunked: bool | None = Field(default=None, validation_alias="IsChunked")
    total_chunks: int | None = Field(default=None, validation_alias="TotalChunks")
    s3_endpoint: str | None = Field(default=None, validation_alias="S3Endpoint")
    s3_region: str | None = Field(default=None, validation_alias="S3Region")
    s3_access_key_id: str | None = Field(
        default=None, validation_alias="S3AccessKeyId"
    )
    s3_secret_access_key: str | None = Field(
        default=None, validation_alias="S3SecretAccessKey"
    )
    s3_path_style: bool | None = Field(default=None, validation_alias="S3PathStyle")
    s3_bucket_name: str | None = Field(default=None, validation_alias="S3BucketName")
    s3_file_key: str | None = Field(default=None, validation_alias="S3FileKey")
    external_link: str | None = Field(default=None, validation_alias="ExternalLink")

    @property
    def policy_label(self) -> PolicyLabel:
        if self.list_type == "White":
            return PolicyLabel.WHITE
        if self.list_type == "Block":
            return PolicyLabel.BLOCK
        if (self.label or "").lower() == "adult":
            return PolicyLabel.ADULT
        return PolicyLabel.NONE


def parse_chunk_set(value: bytes | str | None) -> tuple[ChunkDescriptor, ...]:
    """Parse a stored chunk list and order it by index.

    Raises:
        ChunkIntegrityError: the list is missing, unparsable or empty.
    """
    if not value:
        msg = "Error: No chunks found for this file"
        raise ChunkIntegrityError(msg)
    try:
        stored = _CHUNK_LIST.validate_python(json.loads(value))
    except (ValueError, ValidationError) as error:
        LOG.warning("failed to parse chunk list: %s", error)
        msg = "Error: Invalid chunks data"
        raise ChunkIntegrityError(msg) from error
    if not stored:
        msg = "Error: No chunks found for this file"
        raise ChunkIntegrityError(msg)
    chunks = [
        ChunkDescriptor(index=item.index, remote_id=item.file_id, size=item.size or 0)
        for item in stored
    ]
    chunks.sort(key=lambda chunk: chunk.index)
    return tuple(chunks)


def total_size(chunks: Sequence[ChunkDescriptor]) -> int:
    return sum(chunk.size for chunk in chunks)


@dataclass(frozen=True)
class ObjectRecord:
    key: str
    channel: Channel
    payload: ChannelPayload
    file_name: str | None = None
    file_type: str | None = None
    policy_label: PolicyLabel = PolicyLabel.NONE
    timestamp: str | None = None

    @property
    def display_name(self) -> str:
        return self.file_name or self.key

    @classmethod
    def from_stored(
        cls,
        key: str,
        metadata: Mapping[str, Any],
        value: bytes | str | None = None,
    ) -> ObjectRecord:
        """Build a record from a stored metadata mapping and its raw value.

        Raises:
            InvalidChannel: the record names an unknown channel or lacks the
                fields its channel needs.
            ChunkIntegrityError: a chunked record carries an unusable chunk list.
        """
        try:
            meta = StoredMetadata.model_validate(dict(metadata))
        except ValidationError as error:
            LOG.warning("malformed metadata for %s: %s", key, error)
            msg = "Error: Invalid metadata record"
            raise InvalidChannel(msg) from error

        channel, payload = _build_payload(key, meta, value)
        return cls(
            key=key,
            channel=channel,
            payload=payload,
            file_name=meta.file_name,
            file_type=meta.file_type,
            policy_label=meta.policy_label,
            timestamp=str(meta.timestamp) if meta.timestamp is not None else None,
        )


def _build_payload(
    key: str, meta: StoredMetadata, value: bytes | str | None
) -> tuple[Channel, ChannelPayload]:
    if meta.channel == STORED_BUCKET_STORE:
        return Channel.BUCKET_STORE, BucketPayload(key=key)

    if meta.channel == STORED_S3:
        if not meta.s3_bucket_name or not meta.s3_file_key:
            msg = "Error: Incomplete S3 record"
            raise InvalidChannel(msg)
        return Channel.S3, S3Payload(
            bucket=meta.s3_bucket_name,
            key=meta.s3_file_key,
            endpoint=meta.s3_endpoint,
            region=meta.s3_region or "auto",
            access_key_id=meta.s3_access_key_id,
            secret_access_key=meta.s3_secret_access_key,
            path_style=bool(meta.s3_path_style),
        )

    if meta.channel == STORED_TELEGRAM:
        if meta.is_chunked:
            chunks = parse_chunk_set(value)
            return Channel.CHUNKED, ChunkedPayload(
                chunks=chunks,
                total_chunks=meta.total_chunks or len(chunks),
                bot_token=meta.tg_bot_token,
            )
        if not meta.tg_file_id:
            msg = "Error: Incomplete message record"
            raise InvalidChannel(msg)
        return Channel.MESSAGE, MessagePayload(
            file_id=meta.tg_file_id, bot_token=meta.tg_bot_token
        )

    if meta.channel == STORED_EXTERNAL:
        if not meta.external_link:
            msg = "Error: Incomplete external record"
            raise InvalidChannel(msg)
        return Channel.EXTERNAL, ExternalPayload(url=meta.external_link)

    LOG.warning("unknown channel %r for %s", meta.channel, key)
    msg = "Error: Invalid Channel"
    raise InvalidChannel(msg)
