# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Bounded exponential backoff for provider calls.

Only TransientProviderError (rate limits, 5xx, dropped connections) is
retried. Permanent errors surface on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from outreach.core.config import Config
from outreach.workflow.exceptions import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry configuration for provider calls.

    Delay formula: min(initial_delay * multiplier ^ attempt + jitter, max_delay)
    """
    max_attempts: int = 3
    initial_delay: float = 1.0       # seconds
    max_delay: float = 30.0          # seconds
    backoff_multiplier: float = 2.0
    jitter: float = 0.3              # up to 30% of the delay
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, config: Config) -> "RetryPolicy":
        return cls(
            max_attempts=config.retry_max_attempts,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            backoff_multiplier=config.retry_backoff_multiplier,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Delay before the next attempt (attempt is 0-indexed)"""
        delay = self.initial_delay * (self.backoff_multiplier ** attempt)
        delay += random.random() * self.jitter * delay
        return min(delay, self.max_delay)

    async def call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Await fn(), retrying transient provider errors.

        Raises:
            TransientProviderError: Still failing after max_attempts
            Exception: Any non-transient error, unchanged
        """
        attempt = 0
        while True:
            try:
                return await fn()
            except TransientProviderError as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise
                delay = self.calculate_delay(attempt - 1)
                logger.warning(
                    f"{operation} failed ({e.message}), retrying in {delay:.2f}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                await self.sleep(delay)
