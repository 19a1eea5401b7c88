"""In-memory artifact store for tests and throwaway runs.

Values are serialized on ``put`` and deserialized on ``get`` so callers
cannot mutate a stored artifact through a shared reference.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

from reprocache.core.errors import StorageError
from reprocache.store.base import Artifact, ArtifactMetadata, utcnow
from reprocache.store.serializers import Serializer, get_serializer


class InMemoryArtifactStore:
    """Dict-backed ``ArtifactStore``. Thread-safe."""

    def __init__(self, *, serializer: str | Serializer = "pickle") -> None:
        self._serializer = get_serializer(serializer)
        self._entries: dict[str, tuple[bytes, ArtifactMetadata]] = {}
        self._lock = threading.Lock()
        self.put_count = 0

    def get(self, fingerprint: str) -> Artifact | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        payload, meta = entry
        return Artifact(value=self._serializer.loads(payload), metadata=meta)

    def put(self, fingerprint: str, value: Any, *, unit_id: str) -> ArtifactMetadata:
        try:
            payload = self._serializer.dumps(value)
        except Exception as e:
            raise StorageError(
                f"Cannot serialize output of unit '{unit_id}' with {self._serializer.name}: {e}",
                cause=e,
            ).with_context(unit_id=unit_id, fingerprint=fingerprint) from e

        meta = ArtifactMetadata(
            fingerprint=fingerprint,
            unit_id=unit_id,
            created_at=utcnow(),
            size_bytes=len(payload),
            serializer=self._serializer.name,
        )
        with self._lock:
            self._entries[fingerprint] = (payload, meta)
            self.put_count += 1
        return meta

    def exists(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._entries

    def invalidate(self, fingerprint: str) -> bool:
        with self._lock:
            return self._entries.pop(fingerprint, None) is not None

    def metadata(self, fingerprint: str) -> ArtifactMetadata | None:
        with self._lock:
            entry = self._entries.get(fingerprint)
        return entry[1] if entry else None

    def list_artifacts(self, unit_id: str | None = None) -> list[ArtifactMetadata]:
        with self._lock:
            metas = [meta for _, meta in self._entries.values()]
        if unit_id is not None:
            metas = [m for m in metas if m.unit_id == unit_id]
        return sorted(metas, key=lambda m: (m.created_at, m.fingerprint))

    def prune(self, keep: Iterable[str]) -> list[str]:
        keep_set = set(keep)
        with self._lock:
            removed = [fp for fp in self._entries if fp not in keep_set]
            for fp in removed:
                del self._entries[fp]
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["InMemoryArtifactStore"]
