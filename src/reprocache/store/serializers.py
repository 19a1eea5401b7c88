"""Artifact payload serializers.

``pickle`` handles arbitrary Python objects (fitted models, arrays, frames)
and is the default. ``json`` is available for artifacts that must stay
human-readable.
"""

from __future__ import annotations

import json
import pickle
from typing import Any, Protocol

from reprocache.core.errors import ConfigError


class Serializer(Protocol):
    name: str

    def dumps(self, value: Any) -> bytes: ...

    def loads(self, data: bytes) -> Any: ...


class PickleSerializer:
    name = "pickle"

    def dumps(self, value: Any) -> bytes:
        return pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)

    def loads(self, data: bytes) -> Any:
        return pickle.loads(data)


class JsonSerializer:
    name = "json"

    def dumps(self, value: Any) -> bytes:
        return json.dumps(value, sort_keys=True, ensure_ascii=False).encode("utf-8")

    def loads(self, data: bytes) -> Any:
        return json.loads(data.decode("utf-8"))


_SERIALIZERS: dict[str, type] = {
    PickleSerializer.name: PickleSerializer,
    JsonSerializer.name: JsonSerializer,
}


def get_serializer(name: str | Serializer) -> Serializer:
    """Resolve a serializer by name, or pass an instance through."""
    if not isinstance(name, str):
        return name
    try:
        return _SERIALIZERS[name]()
    except KeyError:
        raise ConfigError(f"Unknown serializer: {name!r} (expected one of {sorted(_SERIALIZERS)})") from None


__all__ = ["JsonSerializer", "PickleSerializer", "Serializer", "get_serializer"]
