"""
reprocache — incremental, reproducible pipeline execution.

Units of computation are fingerprinted from their code, params and
upstream fingerprints; a run executes only the units whose fingerprint has
no artifact in the store.
"""

__version__ = "0.1.0"

from reprocache.core.errors import (
    ConfigError,
    CycleError,
    ExecutionError,
    MalformedUnitError,
    ReproError,
    StorageError,
)
from reprocache.core.hashing import fingerprint
from reprocache.execution.cancellation import CancelToken
from reprocache.orchestration import (
    ComputationUnit,
    Graph,
    PipelineRunner,
    RunReport,
    RunStatus,
    SkipReason,
    UnitState,
    load,
    outdated,
    topological_order,
    visualize_mermaid,
)
from reprocache.store import InMemoryArtifactStore, LocalArtifactStore

__all__ = [
    "__version__",
    "CancelToken",
    "ComputationUnit",
    "ConfigError",
    "CycleError",
    "ExecutionError",
    "Graph",
    "InMemoryArtifactStore",
    "LocalArtifactStore",
    "MalformedUnitError",
    "PipelineRunner",
    "ReproError",
    "RunReport",
    "RunStatus",
    "SkipReason",
    "StorageError",
    "UnitState",
    "fingerprint",
    "load",
    "outdated",
    "topological_order",
    "visualize_mermaid",
]
