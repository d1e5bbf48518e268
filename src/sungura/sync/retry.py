"""
Retry policy for reconciliation fetches.

One policy is shared by every reconciliation so all entity kinds recover
from transient failures the same way: a fixed number of attempts with a
fixed wait between them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from sungura.config import Settings
from sungura.exceptions import RemoteAPIError
from sungura.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Failed requests, 5xx and 429 are retried; nothing else is."""
    return isinstance(error, RemoteAPIError) and error.retryable


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Reconciliation fetch failed, retrying",
        attempt=state.attempt_number,
        error=str(error),
    )


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-attempt, fixed-delay retry.

    Attributes:
        max_attempts: Total attempts including the first (2 = one retry).
        delay_seconds: Wait between attempts.
        sleep: Coroutine function awaited for each wait.
    """

    max_attempts: int = 2
    delay_seconds: float = 2.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            delay_seconds=settings.RETRY_DELAY_SECONDS,
        )

    def retrying(self) -> AsyncRetrying:
        """A fresh tenacity controller for one call."""
        return AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            wait=wait_fixed(self.delay_seconds),
            stop=stop_after_attempt(self.max_attempts),
            before_sleep=_log_retry,
            reraise=True,
            sleep=self.sleep,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` under the policy, re-raising the last error."""
        return await self.retrying()(fn, *args, **kwargs)
