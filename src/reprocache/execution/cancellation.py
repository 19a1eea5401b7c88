"""Cooperative cancellation for pipeline runs.

A ``CancelToken`` is checked by the runner between unit boundaries. Units
already running are allowed to finish (and their artifacts are committed);
units not yet started are skipped with reason ``cancelled``.
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType


class CancelToken:
    """Thread-safe cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


@contextmanager
def cancel_on_signal(token: CancelToken, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)) -> Iterator[CancelToken]:
    """Route SIGINT/SIGTERM to ``token.cancel()`` for the duration of the block.

    Only installs handlers from the main thread; elsewhere the token is
    yielded unchanged.
    """
    previous: dict[int, object] = {}

    def _handle(signum: int, frame: FrameType | None) -> None:
        token.cancel(reason=f"signal {signal.Signals(signum).name}")

    try:
        for sig in signals:
            previous[sig] = signal.signal(sig, _handle)
    except ValueError:
        # Not in main thread
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        previous.clear()

    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


__all__ = ["CancelToken", "cancel_on_signal"]
