"""Retry strategies with exponential backoff.

Used by artifact stores to retry failed reads before giving up with a
``StorageError``.

Example:
    >>> from reprocache.execution.retry import ExponentialBackoff, RetryContext
    >>>
    >>> ctx = RetryContext(ExponentialBackoff(max_retries=3, base_delay=0.1))
    >>> payload = ctx.run(path.read_bytes)
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0 = first retry)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether retry number ``attempt`` (0-based) may be made after ``error``."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) ± jitter

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier
        jitter: Add randomness to spread concurrent retries
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retryable_errors: Exception types worth retrying (None = all)
    """

    max_retries: int = 3
    base_delay: float = 0.05
    max_delay: float = 2.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable_errors: tuple[type[BaseException], ...] | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        if error is not None and self.retryable_errors is not None:
            return isinstance(error, self.retryable_errors)
        return True


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


@dataclass
class RetryContext:
    """Tracks retry state and runs a callable under a strategy.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_retries=2))
        >>> result = ctx.run(load_payload, path)
        >>> ctx.attempts
        1
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], None] | None = None
    retry_if: Callable[[Exception], bool] | None = None
    sleep: Callable[[float], None] = time.sleep
    attempts: int = field(default=0, init=False)
    errors: list[Exception] = field(default_factory=list, init=False)

    @property
    def last_error(self) -> Exception | None:
        return self.errors[-1] if self.errors else None

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or the strategy gives up.

        Errors rejected by ``retry_if`` are raised on the spot.

        Raises:
            The last exception once retries are exhausted.
        """
        while True:
            self.attempts += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                self.errors.append(e)
                retry_index = self.attempts - 1
                if self.retry_if is not None and not self.retry_if(e):
                    raise
                if not self.strategy.should_retry(retry_index, e):
                    raise
                delay = self.strategy.next_delay(retry_index)
                if self.on_retry:
                    self.on_retry(self.attempts, e, delay)
                self.sleep(delay)


__all__ = ["ExponentialBackoff", "NoRetry", "RetryContext", "RetryStrategy"]
