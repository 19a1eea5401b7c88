"""
Structured error types for reprocache.

Every failure the cache can report is a ``ReproError`` carrying a category,
a retry flag, structured context and an optional chained cause. The runner
never lets these escape as crashes for a single unit; they are recorded on
the unit's terminal state and summarised in the run report.

Manifesto:
    - **Typed hierarchy:** one subclass per failure domain
    - **Explicit retry semantics:** each error knows if it is retryable
    - **Rich context:** unit id, fingerprint and run id travel with the error
    - **Error chaining:** the original exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        ReproError                             │
        │       (category, retryable, context, cause, to_dict)          │
        ├──────────────────────────────────────────────────────────────┤
        │  MalformedUnitError   CycleError        ExecutionError        │
        │  (VALIDATION)         (VALIDATION)      (EXECUTION)           │
        │                                                               │
        │  StorageError         ConfigError                             │
        │  (STORAGE)            (CONFIG)                                │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = StorageError("disk full").with_context(fingerprint="ab12")
    >>> error.context.fingerprint
    'ab12'
    >>> error.to_dict()["category"]
    'STORAGE'

Tags:
    error-handling, exception-hierarchy, retry-logic, reprocache
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and reporting."""

    VALIDATION = "VALIDATION"  # Graph structure, unit declaration
    EXECUTION = "EXECUTION"  # Unit body raised
    STORAGE = "STORAGE"  # Disk, serialization
    CONFIG = "CONFIG"  # Settings, pipeline references
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        unit_id: Computation unit the error concerns
        fingerprint: Fingerprint being computed, read or written
        run_id: Run identifier from the runner
        path: Filesystem path involved (storage errors)
        metadata: Any additional key-value pairs
    """

    unit_id: str | None = None
    fingerprint: str | None = None
    run_id: str | None = None
    path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["unit_id", "fingerprint", "run_id", "path"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ReproError(Exception):
    """
    Base exception for all reprocache errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely pass them explicitly.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ReproError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StorageError("write failed").with_context(
                fingerprint=fp, path=str(path)
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# GRAPH / DECLARATION ERRORS
# =============================================================================


class MalformedUnitError(ReproError):
    """A unit is declared incorrectly (bad upstream reference, duplicate id, bad params)."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, unit_id: str, message: str, **kwargs: Any):
        self.unit_id = unit_id
        super().__init__(f"Unit '{unit_id}': {message}", **kwargs)
        self.context.unit_id = unit_id


class CycleError(ReproError):
    """The dependency graph contains a cycle."""

    default_category = ErrorCategory.VALIDATION

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected in dependency graph: {' -> '.join(cycle)}")


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class ExecutionError(ReproError):
    """A unit body raised while executing."""

    default_category = ErrorCategory.EXECUTION

    def __init__(
        self,
        unit_id: str,
        message: str,
        *,
        traceback: str | None = None,
        cause: Exception | None = None,
    ):
        self.unit_id = unit_id
        self.traceback = traceback
        super().__init__(f"Unit '{unit_id}' failed: {message}", cause=cause)
        self.context.unit_id = unit_id


# =============================================================================
# STORAGE / CONFIG ERRORS
# =============================================================================


class StorageError(ReproError):
    """Artifact persistence failed (read, write, serialization)."""

    default_category = ErrorCategory.STORAGE


class ConfigError(ReproError):
    """Invalid settings or an unresolvable pipeline reference."""

    default_category = ErrorCategory.CONFIG


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ReproError):
        return error.retryable
    return isinstance(error, OSError)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ReproError",
    "MalformedUnitError",
    "CycleError",
    "ExecutionError",
    "StorageError",
    "ConfigError",
    "is_retryable",
]
