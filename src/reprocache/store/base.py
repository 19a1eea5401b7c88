"""
Artifact store protocol and records.

An artifact is the realized output of a computation unit for one
fingerprint. Stores are keyed by fingerprint only; the producing unit id is
metadata, used for listing and pruning.

Manifesto:
    - **Keyed by content:** the fingerprint is a function of the inputs, so
      two writers of the same key write the same value
    - **Atomic publish:** ``get`` never sees a half-written artifact
    - **Protocol-based:** the runner depends on ``ArtifactStore``, not on a
      backend

Architecture:
    ::

        ArtifactStore Protocol
        ┌──────────────────────────────────────────────────────────┐
        │ get(fp)            → Artifact | None                      │
        │ put(fp, value, *, unit_id) → ArtifactMetadata             │
        │ exists(fp)         → bool                                 │
        │ invalidate(fp)     → bool                                 │
        │ metadata(fp)       → ArtifactMetadata | None              │
        │ list_artifacts(unit_id=None) → list[ArtifactMetadata]     │
        │ prune(keep)        → list[str]                            │
        │ clear()                                                   │
        └──────────────────────────────────────────────────────────┘
                  │                          │
        ┌─────────▼──────────┐    ┌──────────▼──────────┐
        │ LocalArtifactStore │    │ InMemoryArtifactStore│
        │ (filesystem)       │    │ (dict + lock)        │
        └────────────────────┘    └──────────────────────┘

Tags:
    storage, artifacts, protocol, reprocache
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

# Bump when the on-disk metadata layout changes.
STORE_FORMAT_VERSION = 1


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class ArtifactMetadata:
    """Metadata recorded alongside every artifact."""

    fingerprint: str
    unit_id: str
    created_at: datetime
    size_bytes: int
    serializer: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "unit_id": self.unit_id,
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
            "serializer": self.serializer,
            "format_version": STORE_FORMAT_VERSION,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArtifactMetadata:
        return cls(
            fingerprint=data["fingerprint"],
            unit_id=data["unit_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            size_bytes=int(data["size_bytes"]),
            serializer=data["serializer"],
        )


@dataclass(frozen=True)
class Artifact:
    """A stored value plus its metadata."""

    value: Any
    metadata: ArtifactMetadata

    @property
    def fingerprint(self) -> str:
        return self.metadata.fingerprint

    @property
    def unit_id(self) -> str:
        return self.metadata.unit_id


@runtime_checkable
class ArtifactStore(Protocol):
    """Storage backend for artifacts, keyed by fingerprint."""

    def get(self, fingerprint: str) -> Artifact | None:
        """Return the artifact, or None if not stored."""
        ...

    def put(self, fingerprint: str, value: Any, *, unit_id: str) -> ArtifactMetadata:
        """Persist a value under a fingerprint. Idempotent per fingerprint."""
        ...

    def exists(self, fingerprint: str) -> bool:
        """Check whether a committed artifact exists."""
        ...

    def invalidate(self, fingerprint: str) -> bool:
        """Remove an artifact. Returns True if something was removed."""
        ...

    def metadata(self, fingerprint: str) -> ArtifactMetadata | None:
        """Return metadata without loading the value."""
        ...

    def list_artifacts(self, unit_id: str | None = None) -> list[ArtifactMetadata]:
        """List committed artifacts, optionally for one unit."""
        ...

    def prune(self, keep: Iterable[str]) -> list[str]:
        """Remove every artifact whose fingerprint is not in ``keep``."""
        ...

    def clear(self) -> None:
        """Remove every artifact."""
        ...


__all__ = [
    "STORE_FORMAT_VERSION",
    "Artifact",
    "ArtifactMetadata",
    "ArtifactStore",
    "utcnow",
]
