"""
Shared pytest fixtures and configuration for reprocache tests.

This module provides:
- Environment and settings isolation (no REPRO_* leakage between tests)
- Artifact store fixtures (in-memory and local filesystem)
- Sample graph builders with call recording, so tests can assert exactly
  which unit bodies ran

Usage:
    def test_rerun_is_cached(memory_store, recorder):
        graph = build_diamond(recorder)
        ...
"""

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import pytest

from reprocache.core.logging import clear_context
from reprocache.core.settings import clear_settings_cache
from reprocache.execution.retry import ExponentialBackoff
from reprocache.orchestration import Graph
from reprocache.store import InMemoryArtifactStore, LocalArtifactStore


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """
    Strip REPRO_* variables, run from an empty directory, reset caches.

    Running from ``tmp_path`` keeps a stray ``.env`` or ``.reprocache``
    directory in the checkout from leaking into tests.
    """
    for key in list(os.environ):
        if key.startswith("REPRO_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    clear_context()
    yield
    clear_settings_cache()
    clear_context()


# =============================================================================
# Stores
# =============================================================================


@pytest.fixture
def memory_store() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


@pytest.fixture
def local_store(tmp_path: Path) -> LocalArtifactStore:
    """Local store with fast, jitter-free read retries."""
    return LocalArtifactStore(
        tmp_path / "store",
        read_retry=ExponentialBackoff(max_retries=2, base_delay=0.001, jitter=False),
    )


@pytest.fixture(params=["memory", "local"])
def any_store(request: pytest.FixtureRequest, tmp_path: Path):
    """Each test using this runs once per backend."""
    if request.param == "memory":
        return InMemoryArtifactStore()
    return LocalArtifactStore(
        tmp_path / "store",
        read_retry=ExponentialBackoff(max_retries=2, base_delay=0.001, jitter=False),
    )


# =============================================================================
# Sample graphs
# =============================================================================


class Recorder:
    """Collects the ids of unit bodies as they run."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def hit(self, unit_id: str) -> None:
        self.calls.append(unit_id)

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


def build_diamond(recorder: Recorder, *, scale: float = 2.0, fail_total: bool = False) -> Graph:
    """
    Diamond dependency pattern::

            data
           /    \\
       scaled   total
           \\    /
           summary
    """
    graph = Graph(name="diamond")

    @graph.unit()
    def data():
        recorder.hit("data")
        return [1.0, 2.0, 3.0, 4.0]

    @graph.unit(upstream=["data"], params={"scale": scale})
    def scaled(data, scale):
        recorder.hit("scaled")
        return [x * scale for x in data]

    if fail_total:

        @graph.unit(upstream=["data"])
        def total(data):
            recorder.hit("total")
            raise ValueError("cannot total")

    else:

        @graph.unit(upstream=["data"])
        def total(data):
            recorder.hit("total")
            return sum(data)

    @graph.unit(upstream=["scaled", "total"])
    def summary(scaled, total):
        recorder.hit("summary")
        return {"max": max(scaled), "total": total}

    return graph


@pytest.fixture
def diamond(recorder: Recorder) -> Graph:
    return build_diamond(recorder)
