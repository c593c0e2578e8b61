"""Retry and backoff policy shared by every external API call site."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Rate limits, 5xx and network errors retry; 4xx and bad payloads don't."""
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError, asyncio.TimeoutError)):
        return True
    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with jitter.

    - ``max_attempts`` total tries (first call included)
    - wait = base_delay * multiplier ** (attempt - 1), capped at max_delay
    - plus uniform jitter in [0, jitter]
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    jitter: float = 0.5

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ) + wait_random(0, self.jitter),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``fn(*args, **kwargs)`` under this policy."""
        async for attempt in self.retrying():
            with attempt:
                return await fn(*args, **kwargs)
        raise AssertionError("unreachable: tenacity reraises on exhaustion")


NO_RETRY = BackoffPolicy(max_attempts=1, base_delay=0.0, jitter=0.0)
