from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

_logger = logging.getLogger("recap.retry")

Sleep = Callable[[float], Awaitable[None]]


async def retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 3.0,
    *,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    sleep: Sleep = asyncio.sleep,
    label: str = "request",
) -> T:
    """Call ``fn`` until it succeeds, with exponential backoff.

    On failure: sleep ``delay``, double it, decrement ``retries`` and try
    again. Once ``retries`` reaches zero the last error is re-raised, so
    ``fn`` runs at most ``retries + 1`` times. Errors for which
    ``should_retry`` returns False propagate immediately.
    """
    while True:
        try:
            return await fn()
        except Exception as exc:
            if retries <= 0 or (should_retry is not None and not should_retry(exc)):
                raise
            _logger.info(
                "%s failed (%s), retrying in %.1fs (%d retries left)",
                label,
                exc,
                delay,
                retries,
            )
            await sleep(delay)
            delay *= 2
            retries -= 1


def retry_transient(exc: BaseException) -> bool:
    """Retry predicate: only errors flagged retryable (network, 429, 5xx)."""
    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 3
    delay: float = 3.0
    should_retry: Optional[Callable[[BaseException], bool]] = None
    sleep: Sleep = asyncio.sleep

    async def run(self, fn: Callable[[], Awaitable[T]], *, label: str = "request") -> T:
        return await retry(
            fn,
            self.retries,
            self.delay,
            should_retry=self.should_retry,
            sleep=self.sleep,
            label=label,
        )
