"""Execution helpers: retry strategies and cooperative cancellation."""

from reprocache.execution.cancellation import CancelToken, cancel_on_signal
from reprocache.execution.retry import ExponentialBackoff, NoRetry, RetryContext, RetryStrategy

__all__ = [
    "CancelToken",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "cancel_on_signal",
]
