"""Bounded retries with exponential backoff and rate-limit aware waits."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from ordersync.core.config import SyncConfig
from ordersync.core.errors import RateLimitError, SyncError
from ordersync.core.logging import get_logger

log = get_logger("retry")

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Runs an async operation with bounded retries.

    Policy:
    - ``RateLimitError``: sleep exactly the server supplied ``retry_after`` and
      try again. These waits do not consume the retry budget and do not advance
      the exponential sequence; they are capped separately by
      ``rate_limit_max_waits``.
    - Any other retryable ``SyncError``: after the k-th consecutive failure sleep
      ``min(initial_delay * 2**k, max_delay)``, until ``max_retries`` is spent.
    - Non-retryable errors, and the last error after the budget is exhausted,
      are re-raised unchanged.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: float = 0.0,
        rate_limit_default_wait: float = 300.0,
        rate_limit_max_waits: int = 10,
        sleep: Optional[Sleep] = None,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.rate_limit_default_wait = rate_limit_default_wait
        self.rate_limit_max_waits = rate_limit_max_waits
        self.sleep: Sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config: SyncConfig, sleep: Optional[Sleep] = None) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            rate_limit_default_wait=config.rate_limit_default_wait,
            rate_limit_max_waits=config.rate_limit_max_waits,
            sleep=sleep,
        )

    def backoff_delay(
        self,
        failures: int,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ) -> float:
        initial = self.initial_delay if initial_delay is None else initial_delay
        ceiling = self.max_delay if max_delay is None else max_delay
        delay = min(initial * (2**failures), ceiling)
        if self.jitter > 0:
            delay = min(delay + random.uniform(0, delay * self.jitter), ceiling)
        return delay

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        description: str = "operation",
    ) -> T:
        budget = self.max_retries if max_retries is None else max_retries
        failures = 0
        rate_limit_waits = 0

        while True:
            try:
                return await operation()
            except RateLimitError as exc:
                rate_limit_waits += 1
                if rate_limit_waits > self.rate_limit_max_waits:
                    log.error(f"{description}: still rate limited after {self.rate_limit_max_waits} waits, giving up")
                    raise
                wait = exc.retry_after if exc.retry_after is not None else self.rate_limit_default_wait
                log.warning(f"{description}: rate limited, waiting {wait:.1f}s before retrying")
                await self.sleep(wait)
            except SyncError as exc:
                if not exc.retryable:
                    raise
                failures += 1
                if failures > budget:
                    log.error(f"{description}: failed after {budget} retries: {exc}")
                    raise
                delay = self.backoff_delay(failures, initial_delay, max_delay)
                log.warning(f"{description}: retry {failures}/{budget} in {delay:.2f}s ({exc})")
                await self.sleep(delay)
