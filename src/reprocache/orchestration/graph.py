"""
Dependency graph of computation units.

The graph maps unit ids to ``ComputationUnit`` objects and answers the
structural questions the runner needs: is it closed and acyclic, what is a
valid execution order, and which units sit downstream of a given unit.

Design Principles:
- Pure structure: no execution, no store access
- Declaration order is preserved and used to break ties in ordering
- Every structural failure raises before any unit executes

Example::

    from reprocache.orchestration import Graph

    graph = Graph()

    @graph.unit()
    def data():
        return load_csv("kidiq.csv")

    @graph.unit(upstream=["data"], params={"prior_scale": 2.5})
    def fit(data, prior_scale):
        return fit_regression(data, prior_scale)

    graph.topological_order()   # ['data', 'fit']
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

from reprocache.core.errors import CycleError, MalformedUnitError
from reprocache.orchestration.unit import ComputationUnit, UnitBody


class Graph:
    """
    Mapping from unit id to ComputationUnit with structural checks.

    Invariants (checked by ``validate()``):
        - unit ids are unique (also enforced by ``add``)
        - every upstream reference resolves to a unit in the graph
        - the dependency relation is acyclic
    """

    def __init__(self, units: Iterable[ComputationUnit] | None = None, *, name: str = "pipeline"):
        self.name = name
        self._units: dict[str, ComputationUnit] = {}
        if units is not None:
            for unit in units:
                self.add(unit)
            self.validate()

    # =========================================================================
    # Declaration
    # =========================================================================

    def add(self, unit: ComputationUnit) -> ComputationUnit:
        """Add a unit. Raises MalformedUnitError on a duplicate id."""
        if unit.unit_id in self._units:
            raise MalformedUnitError(unit.unit_id, "duplicate unit id")
        self._units[unit.unit_id] = unit
        return unit

    def add_unit(
        self,
        unit_id: str,
        body: UnitBody,
        upstream: Iterable[str] | str | None = None,
        params: Mapping[str, Any] | None = None,
        description: str = "",
    ) -> ComputationUnit:
        """Declare and add a unit in one call."""
        return self.add(
            ComputationUnit(
                unit_id=unit_id,
                body=body,
                upstream=upstream,
                params=params or {},
                description=description,
            )
        )

    def unit(
        self,
        unit_id: str | None = None,
        *,
        upstream: Iterable[str] | str | None = None,
        params: Mapping[str, Any] | None = None,
        description: str | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """
        Decorator declaring a function as a unit.

        The unit id defaults to the function name and the description to the
        first docstring line. The function itself is returned unchanged.
        """

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            doc = (func.__doc__ or "").strip().splitlines()
            self.add_unit(
                unit_id or func.__name__,
                func,
                upstream=upstream,
                params=params,
                description=description if description is not None else (doc[0] if doc else ""),
            )
            return func

        return decorator

    # =========================================================================
    # Accessors
    # =========================================================================

    def __getitem__(self, unit_id: str) -> ComputationUnit:
        return self._units[unit_id]

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def __len__(self) -> int:
        return len(self._units)

    def __iter__(self) -> Iterator[ComputationUnit]:
        return iter(self._units.values())

    def get(self, unit_id: str) -> ComputationUnit | None:
        return self._units.get(unit_id)

    def ids(self) -> list[str]:
        """Unit ids in declaration order."""
        return list(self._units)

    def dependents(self) -> dict[str, list[str]]:
        """Adjacency list upstream id -> direct dependents (declaration order)."""
        graph: dict[str, list[str]] = {uid: [] for uid in self._units}
        for unit in self._units.values():
            for dep in sorted(unit.upstream):
                if dep in graph:
                    graph[dep].append(unit.unit_id)
        return graph

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> None:
        """
        Validate that the graph is closed and acyclic.

        Raises:
            MalformedUnitError: If a unit references an unknown upstream id
            CycleError: If the dependency relation has a cycle
        """
        for unit in self._units.values():
            missing = sorted(dep for dep in unit.upstream if dep not in self._units)
            if missing:
                raise MalformedUnitError(unit.unit_id, f"references unknown upstream units: {', '.join(missing)}")

        cycle = self._find_cycle()
        if cycle:
            raise CycleError(cycle)

    def _find_cycle(self) -> list[str] | None:
        """
        Depth-first search with three-color marking.

        WHITE = unvisited, GRAY = on the current path, BLACK = finished.
        Reaching a GRAY node closes a cycle, which is returned as a path
        ending where it started (``["a", "b", "a"]``).
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {uid: WHITE for uid in self._units}
        path: list[str] = []

        def dfs(node: str) -> list[str] | None:
            color[node] = GRAY
            path.append(node)
            for dep in sorted(self._units[node].upstream):
                if color[dep] == GRAY:
                    start = path.index(dep)
                    return path[start:] + [dep]
                if color[dep] == WHITE:
                    found = dfs(dep)
                    if found:
                        return found
            color[node] = BLACK
            path.pop()
            return None

        for uid in self._units:
            if color[uid] == WHITE:
                found = dfs(uid)
                if found:
                    # Report in data-flow direction (upstream first).
                    return list(reversed(found))
        return None

    # =========================================================================
    # Ordering
    # =========================================================================

    def topological_order(self) -> list[str]:
        """
        Return unit ids so that every unit follows all of its upstream units.

        Kahn's algorithm; ties are broken by declaration order, so the
        result is stable for a given declaration.

        Raises:
            MalformedUnitError: If a reference does not resolve
            CycleError: If the graph is not acyclic
        """
        self.validate()

        in_degree = {uid: len(unit.upstream) for uid, unit in self._units.items()}
        adjacency = self.dependents()
        position = {uid: i for i, uid in enumerate(self._units)}

        queue: deque[str] = deque(uid for uid in self._units if in_degree[uid] == 0)
        result: list[str] = []

        while queue:
            node = queue.popleft()
            result.append(node)
            ready = []
            for child in adjacency[node]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    ready.append(child)
            queue.extend(sorted(ready, key=position.__getitem__))

        if len(result) != len(self._units):
            remaining = [uid for uid in self._units if uid not in set(result)]
            raise CycleError(remaining)

        return result

    def downstream(self, unit_id: str) -> set[str]:
        """All transitive dependents of a unit (excluding the unit itself)."""
        if unit_id not in self._units:
            raise KeyError(unit_id)
        adjacency = self.dependents()
        seen: set[str] = set()
        stack = list(adjacency[unit_id])
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(adjacency[node])
        return seen

    def upstream_closure(self, unit_ids: Iterable[str]) -> set[str]:
        """The given units plus all of their transitive upstream units."""
        seen: set[str] = set()
        stack = list(unit_ids)
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            if node not in self._units:
                raise KeyError(node)
            seen.add(node)
            stack.extend(self._units[node].upstream)
        return seen

    def subgraph(self, targets: Iterable[str]) -> Graph:
        """A new graph holding ``targets`` and everything they depend on."""
        keep = self.upstream_closure(targets)
        sub = Graph(name=self.name)
        for uid, unit in self._units.items():
            if uid in keep:
                sub.add(unit)
        return sub

    def __repr__(self) -> str:
        return f"Graph({self.name!r}, units={len(self._units)})"


def topological_order(graph: Graph) -> list[str]:
    """Module-level alias for ``graph.topological_order()``."""
    return graph.topological_order()


__all__ = ["Graph", "topological_order"]
