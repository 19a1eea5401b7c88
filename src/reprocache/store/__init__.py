"""Artifact stores keyed by fingerprint."""

from reprocache.store.base import Artifact, ArtifactMetadata, ArtifactStore
from reprocache.store.local import LocalArtifactStore
from reprocache.store.memory import InMemoryArtifactStore
from reprocache.store.serializers import JsonSerializer, PickleSerializer, get_serializer

__all__ = [
    "Artifact",
    "ArtifactMetadata",
    "ArtifactStore",
    "InMemoryArtifactStore",
    "JsonSerializer",
    "LocalArtifactStore",
    "PickleSerializer",
    "get_serializer",
]
