"""
Orchestration — declare units, wire them into a graph, run incrementally.

    from reprocache.orchestration import Graph, PipelineRunner

    graph = Graph(name="kidiq")
    graph.add_unit("data", load_data)
    graph.add_unit("fit", fit_model, upstream=["data"], params={"prior_scale": 2.5})

    report = PipelineRunner(store).run(graph)
"""

from reprocache.orchestration.graph import Graph, topological_order
from reprocache.orchestration.outdated import OutdatedReport, UnitPlan, outdated
from reprocache.orchestration.runner import (
    PipelineRunner,
    RunReport,
    RunStatus,
    SkipReason,
    UnitExecution,
    UnitState,
    load,
)
from reprocache.orchestration.unit import ComputationUnit
from reprocache.orchestration.visualizer import visualize_mermaid

__all__ = [
    "ComputationUnit",
    "Graph",
    "OutdatedReport",
    "PipelineRunner",
    "RunReport",
    "RunStatus",
    "SkipReason",
    "UnitExecution",
    "UnitPlan",
    "UnitState",
    "load",
    "outdated",
    "topological_order",
    "visualize_mermaid",
]
