"""Retry policy for embedding calls.

A small value object (attempt limit, backoff curve) turned into a tenacity
``AsyncRetrying`` controller on demand. Only TransientProviderError is retried;
terminal errors propagate on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
)

from caseforge.errors import TransientProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff on transient provider failures.

    Attributes:
        max_attempts: Total attempts per item, first call included.
        base_delay: Delay before the second attempt; doubles per attempt.
        max_delay: Upper bound on any single delay.
        sleep: Awaitable sleep used between attempts (swap out in tests).
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError("require 0 <= base_delay <= max_delay")

    def delay_for(self, attempt: int) -> float:
        """Delay slept after failed attempt number *attempt* (1-based)."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def retrying(self) -> AsyncRetrying:
        """Return a fresh controller; build one per item, they are stateful."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=lambda state: self.delay_for(state.attempt_number),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )
