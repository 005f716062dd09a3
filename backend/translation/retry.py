"""
Retry policy for model backend calls.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar
from loguru import logger

from config import settings
from .models import GenerationParams

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Every attempt failed; `last_error` holds the final failure"""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class RetryPolicy:
    """
    How many times to call, how long to wait between calls, and which
    sampling parameters each attempt uses. The first attempt uses
    `temperature`; later attempts drop to `retry_temperature`.
    """
    max_attempts: int = field(default_factory=lambda: settings.SEGMENT_MAX_ATTEMPTS)
    backoff: float = field(default_factory=lambda: settings.SEGMENT_RETRY_BACKOFF)
    backoff_multiplier: float = 2.0
    temperature: float = field(default_factory=lambda: settings.TRANSLATE_TEMPERATURE)
    retry_temperature: float = field(default_factory=lambda: settings.RETRY_TEMPERATURE)

    def params_for(self, attempt: int) -> GenerationParams:
        """Parameters for a 1-based attempt number"""
        if attempt <= 1:
            return GenerationParams(temperature=self.temperature)
        return GenerationParams(temperature=self.retry_temperature, is_retry=True)

    def delay_for(self, attempt: int) -> float:
        """Delay before a 1-based attempt number (no delay before the first)"""
        if attempt <= 1:
            return 0.0
        return self.backoff * (self.backoff_multiplier ** (attempt - 2))

    async def run(
        self,
        call: Callable[[GenerationParams], Awaitable[T]],
        label: str = "call",
        on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """
        Run `call` until it succeeds or attempts run out.

        `on_retry(attempt, error)` is awaited before each retry. Cancellation
        is never retried.

        Raises:
            RetryExhaustedError: when every attempt failed
        """
        attempts = max(1, self.max_attempts)
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                if on_retry is not None:
                    await on_retry(attempt, last_error)
                delay = self.delay_for(attempt)
                if delay > 0:
                    await sleep(delay)
            try:
                return await call(self.params_for(attempt))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"{label} attempt {attempt}/{attempts} failed: {e}")

        raise RetryExhaustedError(attempts, last_error)
