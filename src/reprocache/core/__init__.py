"""Core primitives: errors, fingerprinting, logging, settings."""

from reprocache.core.errors import (
    ConfigError,
    CycleError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    MalformedUnitError,
    ReproError,
    StorageError,
)
from reprocache.core.hashing import canonical_json, fingerprint, fingerprint_all, hash_body

__all__ = [
    "ConfigError",
    "CycleError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionError",
    "MalformedUnitError",
    "ReproError",
    "StorageError",
    "canonical_json",
    "fingerprint",
    "fingerprint_all",
    "hash_body",
]
