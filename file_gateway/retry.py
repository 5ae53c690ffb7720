from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import anyio

from .errors import BackendTransient

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

LOG = logging.getLogger("file_gateway.retry")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with linear backoff: ``base_delay * attempt``."""

    max_attempts: int = 3
    base_delay: float = 0.5

    def delay(self, attempt: int) -> float:
        return self.base_delay * attempt

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        describe: str = "operation",
    ) -> T:
        """Await ``operation`` until it succeeds or attempts run out.

        Only ``BackendTransient`` is retried; the last one is re-raised once
        ``max_attempts`` is reached.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except BackendTransient as error:
                LOG.warning(
                    "%s attempt %d/%d failed: %s",
                    describe,
                    attempt,
                    self.max_attempts,
                    error,
                )
                if attempt >= self.max_attempts:
                    raise
                await anyio.sleep(self.delay(attempt))
                attempt += 1
