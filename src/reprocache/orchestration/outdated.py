"""Outdated planner — preview what a run would execute, without side effects.

Fingerprints every unit and checks the store for each one. Nothing is
executed and nothing is written, so the plan is safe to compute at any time
(the CLI ``outdated`` command, pre-flight checks in scripts).

ARCHITECTURE
────────────
::

    outdated(graph, store, targets)
    │
    ├── Validate graph, resolve topological order
    ├── Fingerprint every unit
    ├── store.exists(fp) per unit
    │
    ▼
    OutdatedReport
    ├── plan: list[UnitPlan]
    ├── outdated: list[str]     (units that would execute)
    └── summary() → str

A unit is reported outdated when its own artifact is missing. Dependents
of an outdated unit already carry a new fingerprint (upstream fingerprints
are folded in), so they are reported outdated for the same reason.

Example::

    from reprocache.orchestration.outdated import outdated

    report = outdated(graph, store)
    print(report.summary())
    if not report.outdated:
        print("Nothing to do")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from reprocache.core.hashing import fingerprint_all
from reprocache.orchestration.graph import Graph
from reprocache.store.base import ArtifactStore

REASON_CACHED = "cached"
REASON_NO_ARTIFACT = "no artifact"


@dataclass(frozen=True)
class UnitPlan:
    """Planned outcome for one unit.

    Attributes:
        unit_id: The unit.
        fingerprint: Its current fingerprint.
        up_to_date: True if an artifact exists for the fingerprint.
        reason: ``"cached"`` or ``"no artifact"``.
        upstream: Upstream ids, sorted.
    """

    unit_id: str
    fingerprint: str
    up_to_date: bool
    reason: str
    upstream: tuple[str, ...] = ()


@dataclass
class OutdatedReport:
    """Result of an outdated check."""

    graph_name: str
    plan: list[UnitPlan] = field(default_factory=list)

    @property
    def outdated(self) -> list[str]:
        """Units a run would execute, in topological order."""
        return [p.unit_id for p in self.plan if not p.up_to_date]

    @property
    def up_to_date(self) -> list[str]:
        return [p.unit_id for p in self.plan if p.up_to_date]

    @property
    def fingerprints(self) -> dict[str, str]:
        return {p.unit_id: p.fingerprint for p in self.plan}

    def statuses(self) -> dict[str, str]:
        """Unit id → ``"up_to_date"`` | ``"outdated"`` (for the visualizer)."""
        return {p.unit_id: "up_to_date" if p.up_to_date else "outdated" for p in self.plan}

    def to_dict(self) -> dict:
        return {
            "graph_name": self.graph_name,
            "outdated": self.outdated,
            "plan": [
                {
                    "unit_id": p.unit_id,
                    "fingerprint": p.fingerprint,
                    "up_to_date": p.up_to_date,
                    "reason": p.reason,
                }
                for p in self.plan
            ],
        }

    def summary(self) -> str:
        """Human-readable summary of the plan."""
        lines: list[str] = []
        lines.append(f"=== Outdated: {self.graph_name} ===")
        lines.append(f"Units: {len(self.plan)}  outdated: {len(self.outdated)}  cached: {len(self.up_to_date)}")
        lines.append("")

        for order, p in enumerate(self.plan, start=1):
            marker = ">" if not p.up_to_date else "="
            deps = f" (after: {', '.join(p.upstream)})" if p.upstream else ""
            lines.append(f"  {marker} {order}. {p.unit_id} [{p.fingerprint[:12]}] {p.reason}{deps}")

        return "\n".join(lines)


def outdated(graph: Graph, store: ArtifactStore, targets: Iterable[str] | None = None) -> OutdatedReport:
    """Report which units a run would execute, without executing anything.

    Parameters
    ----------
    graph
        The graph to analyse.
    store
        The artifact store a run would use.
    targets
        Restrict the plan to these units and their upstream closure.

    Raises
    ------
    MalformedUnitError, CycleError
        Same structural failures as a run.
    """
    graph.validate()
    work = graph.subgraph(targets) if targets is not None else graph
    order = work.topological_order()
    fingerprints = fingerprint_all(work[uid] for uid in order)

    report = OutdatedReport(graph_name=work.name)
    for uid in order:
        fp = fingerprints[uid]
        cached = store.exists(fp)
        report.plan.append(
            UnitPlan(
                unit_id=uid,
                fingerprint=fp,
                up_to_date=cached,
                reason=REASON_CACHED if cached else REASON_NO_ARTIFACT,
                upstream=tuple(sorted(work[uid].upstream)),
            )
        )
    return report


__all__ = ["OutdatedReport", "UnitPlan", "outdated"]
