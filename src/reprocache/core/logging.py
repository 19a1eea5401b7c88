"""
Structured, run-aware logging for reprocache.

Provides:
- ``configure_logging()`` — one entry point that sets up structlog
- run context propagation via contextvars (``pipeline``, ``run_id``, ``unit``)
- ``log_step()`` — time a block and log its start/end

Configuration is read from environment variables unless passed explicitly:
- REPRO_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
- REPRO_LOG_FORMAT: json | console (default: console)

Usage:
    from reprocache.core.logging import configure_logging, get_logger, bind_context

    configure_logging()
    log = get_logger(__name__)

    bind_context(run_id="run-1a2b")
    log.info("run.start", units=12)
"""

from __future__ import annotations

import logging
import os
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from typing import Any, Literal

import structlog
from structlog.types import Processor

_configured = False


# =============================================================================
# Context
# =============================================================================


@dataclass
class LogContext:
    """Execution context attached to every log entry."""

    pipeline: str | None = None
    run_id: str | None = None
    unit: str | None = None
    fingerprint: str | None = None
    span_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs: Any) -> LogContext:
        """Create new context with merged values."""
        current = asdict(self)
        current.update({k: v for k, v in kwargs.items() if v is not None and k in current})
        return LogContext(**current)


_log_context: ContextVar[LogContext] = ContextVar("repro_log_context")  # noqa: B039


def get_context() -> LogContext:
    """Get the current log context."""
    return _log_context.get(LogContext())


def bind_context(**kwargs: Any) -> LogContext:
    """Merge values into the current context and return it."""
    updated = get_context().merge(**kwargs)
    _log_context.set(updated)
    return updated


def clear_context() -> None:
    """Reset the current context to empty."""
    _log_context.set(LogContext())


class _ContextToken:
    """Token for restoring context after a scoped operation."""

    def __init__(self, token):
        self._token = token

    def restore(self) -> None:
        _log_context.reset(self._token)


def push_context(**kwargs: Any) -> _ContextToken:
    """
    Push new context values, returning a token to restore later.

    Usage:
        token = push_context(unit="fit_model")
        try:
            do_work()
        finally:
            token.restore()
    """
    token = _log_context.set(get_context().merge(**kwargs))
    return _ContextToken(token)


def add_context_processor(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Structlog processor that adds run context to every log entry."""
    for key, value in get_context().to_dict().items():
        event_dict.setdefault(key, value)
    return event_dict


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


# =============================================================================
# Configuration
# =============================================================================


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | str | None = None,
    format: Literal["json", "console"] | str | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Call once at startup (CLI entry, script main). Subsequent calls are
    no-ops unless ``force=True``.

    Args:
        level: Log level (overrides REPRO_LOG_LEVEL)
        format: Output format (overrides REPRO_LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    log_level = (level or os.environ.get("REPRO_LOG_LEVEL", "INFO")).upper()
    log_format = (format or os.environ.get("REPRO_LOG_FORMAT", "console")).lower()

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_context_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level, logging.INFO),
        force=True,
    )
    logging.getLogger("reprocache").setLevel(getattr(logging, log_level, logging.INFO))

    _configured = True


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


# =============================================================================
# Timing
# =============================================================================


@dataclass
class TimingResult:
    """Result of a timed block."""

    step: str
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    started_at: float = field(default_factory=time.perf_counter)
    ended_at: float | None = None
    metrics: dict[str, Any] = field(default_factory=dict)

    def stop(self) -> TimingResult:
        self.ended_at = time.perf_counter()
        return self

    @property
    def duration_seconds(self) -> float:
        end = self.ended_at if self.ended_at is not None else time.perf_counter()
        return end - self.started_at

    @property
    def duration_ms(self) -> float:
        return self.duration_seconds * 1000

    def add_metric(self, key: str, value: Any) -> TimingResult:
        self.metrics[key] = value
        return self

    def to_log_dict(self) -> dict[str, Any]:
        result = {"duration_ms": round(self.duration_ms, 2), "span_id": self.span_id}
        result.update(self.metrics)
        return result


@contextmanager
def log_step(event: str, level: str = "info", **extra_metrics: Any) -> Iterator[TimingResult]:
    """
    Log ``<event>.start`` at DEBUG and ``<event>.end`` with duration.

    On exception, logs ``<event>.error`` and re-raises.

    Usage:
        with log_step("unit.execute", unit="fit") as timer:
            value = body()
            timer.add_metric("size_bytes", 1024)
    """
    log = get_logger("reprocache.timing")
    timer = TimingResult(step=event, metrics=dict(extra_metrics))
    token = push_context(span_id=timer.span_id)

    try:
        log.debug(f"{event}.start", span_id=timer.span_id, **extra_metrics)
        yield timer
    except Exception as e:
        timer.stop()
        log.error(f"{event}.error", error_type=type(e).__name__, error=str(e), **timer.to_log_dict())
        raise
    finally:
        timer.stop()
        token.restore()

    getattr(log, level)(f"{event}.end", **timer.to_log_dict())


__all__ = [
    "LogContext",
    "TimingResult",
    "add_context_processor",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_context",
    "get_logger",
    "is_configured",
    "log_step",
    "push_context",
]
