"""Tests for reprocache.store.memory and behaviour shared by every backend."""

from __future__ import annotations

import threading

import pytest

from reprocache.core.errors import StorageError
from reprocache.store import ArtifactStore, InMemoryArtifactStore, get_serializer
from reprocache.store.serializers import JsonSerializer, PickleSerializer

FP_A = "a1" * 32
FP_B = "b2" * 32


class TestInMemoryStore:
    def test_satisfies_protocol(self, memory_store):
        assert isinstance(memory_store, ArtifactStore)

    def test_values_are_copies(self, memory_store):
        value = {"rows": [1, 2]}
        memory_store.put(FP_A, value, unit_id="u")
        value["rows"].append(3)
        assert memory_store.get(FP_A).value == {"rows": [1, 2]}

    def test_put_count_and_len(self, memory_store):
        memory_store.put(FP_A, 1, unit_id="u")
        memory_store.put(FP_B, 2, unit_id="u")
        assert memory_store.put_count == 2
        assert len(memory_store) == 2

    def test_unserializable(self):
        store = InMemoryArtifactStore(serializer="json")
        with pytest.raises(StorageError):
            store.put(FP_A, {1, 2}, unit_id="u")

    def test_concurrent_puts(self, memory_store):
        fps = [f"{i:064x}" for i in range(32)]
        threads = [threading.Thread(target=memory_store.put, args=(fp, fp), kwargs={"unit_id": "u"}) for fp in fps]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(memory_store) == 32


class TestStoreContract:
    """Behaviour every ArtifactStore backend must share."""

    def test_get_put_exists(self, any_store):
        assert not any_store.exists(FP_A)
        any_store.put(FP_A, {"beta": 1.5}, unit_id="fit")
        assert any_store.exists(FP_A)
        assert any_store.get(FP_A).value == {"beta": 1.5}
        assert any_store.metadata(FP_A).unit_id == "fit"

    def test_invalidate(self, any_store):
        any_store.put(FP_A, 1, unit_id="u")
        assert any_store.invalidate(FP_A)
        assert any_store.get(FP_A) is None
        assert not any_store.invalidate(FP_A)

    def test_prune_and_clear(self, any_store):
        any_store.put(FP_A, 1, unit_id="u")
        any_store.put(FP_B, 2, unit_id="u")
        assert any_store.prune([FP_A]) == [FP_B]
        assert [m.fingerprint for m in any_store.list_artifacts()] == [FP_A]
        any_store.clear()
        assert any_store.list_artifacts() == []


class TestSerializers:
    def test_lookup_by_name(self):
        assert isinstance(get_serializer("pickle"), PickleSerializer)
        assert isinstance(get_serializer("json"), JsonSerializer)

    def test_instance_passes_through(self):
        serializer = JsonSerializer()
        assert get_serializer(serializer) is serializer

    def test_json_is_stable(self):
        assert JsonSerializer().dumps({"b": 1, "a": 2}) == JsonSerializer().dumps({"a": 2, "b": 1})
