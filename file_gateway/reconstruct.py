"""Rebuild one byte stream from a file stored as ordered remote chunks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .errors import BackendTransient, ChunkFetchError, ChunkIntegrityError
from .records import total_size
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from .records import ChunkDescriptor

LOG = logging.getLogger("file_gateway.reconstruct")


def check_integrity(chunks: Sequence[ChunkDescriptor], declared_total: int) -> int:
    """Verify the chunk count and return the logical file size.

    Raises:
        ChunkIntegrityError: fewer or more chunks than the record declares.
    """
    if len(chunks) != declared_total:
        msg = f"Error: Missing chunks, expected {declared_total}, got {len(chunks)}"
        raise ChunkIntegrityError(msg)
    return total_size(chunks)


class ChunkReconstructor:
    def __init__(
        self,
        fetch_chunk: Callable[[str], Awaitable[bytes]],
        retry_policy: RetryPolicy | None = None,
    ):
        self._fetch_chunk = fetch_chunk
        self._retry = retry_policy or RetryPolicy()

    async def fetch(self, chunk: ChunkDescriptor) -> bytes:
        async def attempt() -> bytes:
            data = await self._fetch_chunk(chunk.remote_id)
            if chunk.size and len(data) != chunk.size:
                LOG.warning(
                    "chunk %d size mismatch: expected %d, got %d",
                    chunk.index,
                    chunk.size,
                    len(data),
                )
            return data

        try:
            return await self._retry.run(attempt, describe=f"chunk {chunk.index}")
        except BackendTransient as error:
            LOG.exception(
                "chunk %d failed after %d attempts",
                chunk.index,
                self._retry.max_attempts,
            )
            msg = f"Failed to fetch chunk {chunk.index} after retries"
            raise ChunkFetchError(msg) from error

    async def iter_range(
        self,
        chunks: Sequence[ChunkDescriptor],
        start: int,
        end: int,
    ) -> AsyncIterator[bytes]:
        """Yield bytes ``start..end`` (inclusive) in order, one chunk at a time.

        Chunks wholly before ``start`` are skipped without being fetched and
        iteration stops at the first chunk beginning after ``end``.
        """
        position = 0
        for chunk in chunks:
            size = chunk.size
            if position + size <= start:
                position += size
                continue
            if position > end:
                break

            data = await self.fetch(chunk)
            local_start = max(0, start - position)
            local_end = min(size, end - position + 1)
            if local_start > 0 or local_end < size:
                data = data[local_start:local_end]
            LOG.debug(
                "chunk %d emitted %d bytes at offset %d",
                chunk.index,
                len(data),
                position + local_start,
            )
            yield data
            position += size
