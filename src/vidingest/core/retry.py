"""Bounded retry with backoff, shared by every component that retries."""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STRATEGIES = ("linear", "fixed", "exponential")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try an operation and how long to wait in between.

    ``linear`` waits ``backoff_seconds * attempt`` after each failed attempt,
    ``fixed`` always waits ``backoff_seconds`` and ``exponential`` doubles the
    wait each time (capped at ``max_backoff_seconds``).
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    strategy: str = "linear"
    max_backoff_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.strategy not in STRATEGIES:
            raise ValueError(f"Unknown retry strategy: {self.strategy}")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        if self.strategy == "fixed":
            delay = self.backoff_seconds
        elif self.strategy == "exponential":
            delay = self.backoff_seconds * (2 ** (attempt - 1))
        else:
            delay = self.backoff_seconds * attempt
        return min(delay, self.max_backoff_seconds)

    def can_retry(self, attempts: int) -> bool:
        return attempts < self.max_attempts

    def _wait(self):
        if self.strategy == "fixed":
            return wait_fixed(self.backoff_seconds)
        if self.strategy == "exponential":
            return wait_exponential(multiplier=self.backoff_seconds, max=self.max_backoff_seconds)
        return wait_incrementing(
            start=self.backoff_seconds,
            increment=self.backoff_seconds,
            max=self.max_backoff_seconds,
        )

    def retrying(
        self,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> AsyncRetrying:
        """Build a fresh tenacity controller for one logical operation."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait(),
            retry=retry_if_exception_type(retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        **kwargs: Any,
    ) -> T:
        """Await ``fn(*args, **kwargs)`` until it succeeds or attempts run out.

        The last exception is re-raised unchanged once the policy is exhausted.
        """
        return await self.retrying(retry_on=retry_on)(fn, *args, **kwargs)
