"""ComputationUnit — one named, cacheable step of a pipeline.

A unit declares what it computes (``body``), which other units it reads
(``upstream``) and any constant inputs (``params``). It is immutable once
declared; the graph owns the wiring and the runner owns execution.

The body is either a callable or a Python expression string:

- **callable** — called as ``body(**upstream_values, **params)``
- **expression** — evaluated with upstream values and params as names

Expression bodies are evaluated with ``eval`` and the full builtins, so they
can do anything a callable body can: only load pipelines you trust.

Example::

    from reprocache.orchestration import ComputationUnit

    def fit(data, prior_scale):
        ...

    fit_unit = ComputationUnit("fit", fit, upstream=["data"], params={"prior_scale": 2.5})
    summary = ComputationUnit("summary", "fit['beta'] * 2", upstream=["fit"])
"""

from __future__ import annotations

import builtins
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import CodeType, MappingProxyType
from typing import Any

from reprocache.core.errors import MalformedUnitError

UnitBody = Callable[..., Any] | str


def _normalize_upstream(upstream: Iterable[str] | str | None) -> frozenset[str]:
    if upstream is None:
        return frozenset()
    if isinstance(upstream, str):
        return frozenset([upstream])
    return frozenset(upstream)


@dataclass(frozen=True)
class ComputationUnit:
    """
    A named computation with declared upstream references.

    An expression body is trusted code: it runs via ``eval`` with full
    builtins, not in a sandbox.

    Attributes:
        unit_id: Unique identifier within a graph
        body: Callable or expression string
        upstream: Ids of the units whose artifacts this unit reads
        params: JSON-serializable constants passed to the body (hashed)
        description: Human-readable description
    """

    unit_id: str
    body: UnitBody
    upstream: frozenset[str] = field(default_factory=frozenset)
    params: Mapping[str, Any] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self):
        if not isinstance(self.unit_id, str) or not self.unit_id.strip():
            raise MalformedUnitError(str(self.unit_id), "unit_id must be a non-empty string")

        object.__setattr__(self, "upstream", _normalize_upstream(self.upstream))
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

        if not isinstance(self.body, str) and not callable(self.body):
            raise MalformedUnitError(self.unit_id, f"body must be callable or str, got {type(self.body).__name__}")

        clashes = sorted(self.upstream & set(self.params))
        if clashes:
            raise MalformedUnitError(self.unit_id, f"params shadow upstream inputs: {', '.join(clashes)}")

        if isinstance(self.body, str):
            object.__setattr__(self, "_code", self._compile(self.body))

    def _compile(self, expression: str) -> CodeType:
        try:
            return compile(expression.strip(), f"<unit {self.unit_id}>", "eval")
        except SyntaxError as e:
            raise MalformedUnitError(self.unit_id, f"invalid expression body: {e.msg}", cause=e) from e

    @property
    def is_expression(self) -> bool:
        return isinstance(self.body, str)

    def execute(self, inputs: Mapping[str, Any]) -> Any:
        """Run the body with upstream values (keyed by upstream id) and params."""
        namespace = {**self.params, **inputs}
        if self.is_expression:
            # Names go in globals so comprehensions inside the expression can see them.
            return eval(self._code, {"__builtins__": builtins, **namespace})  # noqa: S307
        return self.body(**namespace)

    def __hash__(self) -> int:
        return hash(self.unit_id)

    def __repr__(self) -> str:
        deps = ", ".join(sorted(self.upstream))
        return f"ComputationUnit({self.unit_id!r}, upstream=[{deps}])"


__all__ = ["ComputationUnit", "UnitBody"]
