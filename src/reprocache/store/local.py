"""
Filesystem artifact store.

Layout::

    <root>/
      artifacts/
        ab/
          ab12...ef.bin     # serialized payload
          ab12...ef.json    # metadata (commit record)

Writes are atomic per file: data goes to a uniquely named temp file in the
same directory, is fsynced, then ``os.replace``d into place. The payload is
published first and the metadata second, so the metadata file is the commit
record: an artifact is visible to ``get``/``exists`` only once both files are
complete. Invalidation removes the metadata first for the same reason.

Transient read failures (``OSError``, an undecodable payload) are retried with
backoff and surface as ``StorageError`` when retries are exhausted; anything
``is_retryable`` rejects fails on the first attempt. Writes fail immediately
with ``StorageError``.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from reprocache.core.errors import StorageError, is_retryable
from reprocache.core.logging import get_logger
from reprocache.execution.retry import ExponentialBackoff, RetryContext, RetryStrategy
from reprocache.store.base import Artifact, ArtifactMetadata, utcnow
from reprocache.store.serializers import Serializer, get_serializer

logger = get_logger(__name__)

_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{8,128}$")


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp-{uuid.uuid4().hex}")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def _read_bytes(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


class LocalArtifactStore:
    """Durable artifact store on the local filesystem.

    Example:
        store = LocalArtifactStore(".reprocache")
        store.put(fp, {"beta": 0.42}, unit_id="fit_model")
        artifact = store.get(fp)
    """

    def __init__(
        self,
        root: str | Path,
        *,
        serializer: str | Serializer = "pickle",
        read_retry: RetryStrategy | None = None,
    ) -> None:
        self._root = Path(root)
        self._artifacts = self._root / "artifacts"
        self._serializer = get_serializer(serializer)
        self._read_retry = read_retry or ExponentialBackoff()
        self._artifacts.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def __repr__(self) -> str:
        return f"LocalArtifactStore({str(self._root)!r}, serializer={self._serializer.name!r})"

    # ------------------------------------------------------------------ #
    # Paths
    # ------------------------------------------------------------------ #

    def _paths(self, fingerprint: str) -> tuple[Path, Path]:
        """Return (metadata_path, payload_path) for a fingerprint."""
        if not _FINGERPRINT_RE.match(fingerprint):
            raise ValueError(f"Invalid fingerprint: {fingerprint!r}")
        base = self._artifacts / fingerprint[:2] / fingerprint
        return base.with_suffix(".json"), base.with_suffix(".bin")

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def _on_retry(self, fingerprint: str):
        def _log(attempt: int, error: Exception, delay: float) -> None:
            logger.warning(
                "store.read_retry",
                fingerprint=fingerprint,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error=str(error),
            )

        return _log

    def _read_metadata(self, meta_path: Path) -> ArtifactMetadata | None:
        raw = _read_bytes(meta_path)
        if raw is None:
            return None
        return ArtifactMetadata.from_dict(json.loads(raw.decode("utf-8")))

    def _load(self, meta_path: Path, payload_path: Path) -> Artifact | None:
        meta = self._read_metadata(meta_path)
        if meta is None:
            return None
        payload = _read_bytes(payload_path)
        if payload is None:
            raise FileNotFoundError(f"payload missing for committed artifact: {payload_path}")
        serializer = self._serializer if meta.serializer == self._serializer.name else get_serializer(meta.serializer)
        try:
            value = serializer.loads(payload)
        except Exception as e:
            # Treated as transient, like OSError.
            raise StorageError(f"Cannot decode payload {payload_path.name}: {e}", retryable=True, cause=e) from e
        return Artifact(value=value, metadata=meta)

    def get(self, fingerprint: str) -> Artifact | None:
        meta_path, payload_path = self._paths(fingerprint)
        ctx = RetryContext(self._read_retry, on_retry=self._on_retry(fingerprint), retry_if=is_retryable)
        try:
            return ctx.run(self._load, meta_path, payload_path)
        except Exception as e:
            if not meta_path.is_file():
                # Invalidated while we were reading.
                return None
            raise StorageError(
                f"Failed to read artifact {fingerprint} after {ctx.attempts} attempt(s): {e}",
                retryable=is_retryable(e),
                cause=e,
            ).with_context(fingerprint=fingerprint, path=str(payload_path)) from e

    def exists(self, fingerprint: str) -> bool:
        meta_path, _ = self._paths(fingerprint)
        return meta_path.is_file()

    def metadata(self, fingerprint: str) -> ArtifactMetadata | None:
        meta_path, _ = self._paths(fingerprint)
        ctx = RetryContext(self._read_retry, on_retry=self._on_retry(fingerprint), retry_if=is_retryable)
        try:
            return ctx.run(self._read_metadata, meta_path)
        except Exception as e:
            raise StorageError(f"Failed to read metadata for {fingerprint}: {e}", cause=e).with_context(
                fingerprint=fingerprint, path=str(meta_path)
            ) from e

    def list_artifacts(self, unit_id: str | None = None) -> list[ArtifactMetadata]:
        results: list[ArtifactMetadata] = []
        for meta_path in self._artifacts.glob("*/*.json"):
            try:
                meta = self._read_metadata(meta_path)
            except (OSError, ValueError, KeyError) as e:
                logger.warning("store.metadata_unreadable", path=str(meta_path), error=str(e))
                continue
            if meta is None:
                continue
            if unit_id is None or meta.unit_id == unit_id:
                results.append(meta)
        return sorted(results, key=lambda m: (m.created_at, m.fingerprint))

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def put(self, fingerprint: str, value: Any, *, unit_id: str) -> ArtifactMetadata:
        meta_path, payload_path = self._paths(fingerprint)

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

        try:
            _atomic_write_bytes(payload_path, payload)
            _atomic_write_bytes(meta_path, json.dumps(meta.to_dict(), indent=2).encode("utf-8"))
        except OSError as e:
            raise StorageError(f"Failed to write artifact {fingerprint}: {e}", cause=e).with_context(
                unit_id=unit_id, fingerprint=fingerprint, path=str(payload_path)
            ) from e

        logger.debug("store.put", fingerprint=fingerprint, unit=unit_id, size_bytes=meta.size_bytes)
        return meta

    def invalidate(self, fingerprint: str) -> bool:
        meta_path, payload_path = self._paths(fingerprint)
        try:
            existed = meta_path.is_file() or payload_path.is_file()
            meta_path.unlink(missing_ok=True)
            payload_path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to invalidate artifact {fingerprint}: {e}", cause=e).with_context(
                fingerprint=fingerprint
            ) from e
        if existed:
            logger.info("store.invalidate", fingerprint=fingerprint)
        return existed

    def prune(self, keep: Iterable[str]) -> list[str]:
        keep_set = set(keep)
        removed: list[str] = []

        for meta in self.list_artifacts():
            if meta.fingerprint not in keep_set and self.invalidate(meta.fingerprint):
                removed.append(meta.fingerprint)

        # Payloads whose metadata never got committed.
        for payload_path in self._artifacts.glob("*/*.bin"):
            fp = payload_path.stem
            if fp not in keep_set and not payload_path.with_suffix(".json").exists():
                payload_path.unlink(missing_ok=True)
                removed.append(fp)

        logger.info("store.prune", removed=len(removed), kept=len(keep_set))
        return removed

    def clear(self) -> None:
        try:
            shutil.rmtree(self._artifacts, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to clear store at {self._root}: {e}", cause=e) from e
        self._artifacts.mkdir(parents=True, exist_ok=True)


__all__ = ["LocalArtifactStore"]
