"""Graph Visualizer — render dependency graphs as Mermaid diagrams.

Nodes are drawn as rectangles for callable bodies and rounded boxes for
expression bodies. Passing ``statuses`` colours each node by its state in a
plan or a run.

Example::

    from reprocache.orchestration.visualizer import visualize_mermaid

    print(visualize_mermaid(graph))
    # graph LR
    #     data["data"]
    #     fit["fit"]
    #
    #     data --> fit

    report = runner.run(graph)
    print(visualize_mermaid(graph, statuses={r.unit_id: r.state.value for r in report.units}))
"""

from __future__ import annotations

import re
from collections.abc import Mapping

from reprocache.orchestration.graph import Graph
from reprocache.orchestration.unit import ComputationUnit

_UNSAFE = re.compile(r"[^A-Za-z0-9_]")

STATUS_STYLES: dict[str, str] = {
    "up_to_date": "fill:#e8f5e9,stroke:#2e7d32",
    "cache_hit": "fill:#e8f5e9,stroke:#2e7d32",
    "done": "fill:#e3f2fd,stroke:#1565c0",
    "outdated": "fill:#fff3e0,stroke:#e65100",
    "failed": "fill:#ffebee,stroke:#c62828",
    "skipped": "fill:#eceff1,stroke:#607d8b,stroke-dasharray:4",
}


def _node_id(unit_id: str) -> str:
    return _UNSAFE.sub("_", unit_id)


def _mermaid_node(unit: ComputationUnit) -> str:
    """Return a Mermaid node definition for a unit."""
    node = _node_id(unit.unit_id)
    label = unit.unit_id.replace('"', "'")
    if unit.is_expression:
        return f'    {node}("{label}")'
    return f'    {node}["{label}"]'


def visualize_mermaid(
    graph: Graph,
    *,
    statuses: Mapping[str, str] | None = None,
    direction: str = "LR",
) -> str:
    """Render a graph as a Mermaid flowchart.

    Parameters
    ----------
    graph
        The graph to visualize.
    statuses
        Optional unit id → status (``up_to_date``, ``outdated``, ``done``,
        ``cache_hit``, ``failed``, ``skipped``). Unknown statuses are drawn
        unstyled.
    direction
        ``"LR"`` (left-right) or ``"TD"`` (top-down).

    Returns
    -------
    str
        Complete Mermaid graph definition, nodes in topological order.
    """
    order = graph.topological_order()
    lines: list[str] = [f"graph {direction}"]

    for uid in order:
        lines.append(_mermaid_node(graph[uid]))

    edges = [
        f"    {_node_id(dep)} --> {_node_id(uid)}"
        for uid in order
        for dep in sorted(graph[uid].upstream)
    ]
    if edges:
        lines.append("")
        lines.extend(edges)

    if statuses:
        styles = []
        for uid in order:
            style = STATUS_STYLES.get(str(statuses.get(uid, "")))
            if style:
                styles.append(f"    style {_node_id(uid)} {style}")
        if styles:
            lines.append("")
            lines.extend(styles)

    return "\n".join(lines)


__all__ = ["STATUS_STYLES", "visualize_mermaid"]
