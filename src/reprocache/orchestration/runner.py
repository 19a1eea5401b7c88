"""Pipeline Runner — executes a dependency graph against an artifact store.

The PipelineRunner takes a :class:`~reprocache.orchestration.graph.Graph`,
fingerprints every unit, and executes only the units whose fingerprint has
no artifact in the store (sequentially or as a parallel DAG). It handles:

- **Cache hits**: unit is marked done without running its body
- **Cache misses**: upstream artifacts are loaded, the body runs, the result
  is published to the store under the unit's fingerprint
- **Failures**: the unit is recorded as failed and every transitive
  dependent is skipped; independent branches keep running
- **Cancellation**: checked between unit boundaries via a ``CancelToken``

Per-unit state machine::

    PENDING → FINGERPRINTED → CACHE_HIT → DONE
                            ↘ CACHE_MISS → RUNNING → DONE | FAILED
    PENDING → SKIPPED (upstream_failed | cancelled)

Example::

    from reprocache.orchestration import Graph, PipelineRunner, RunStatus
    from reprocache.store import LocalArtifactStore

    runner = PipelineRunner(LocalArtifactStore(".reprocache"), max_workers=4)
    report = runner.run(graph)

    if report.status == RunStatus.SUCCESS:
        print(f"Executed {len(report.executed)}, reused {len(report.cache_hits)}")
    else:
        for unit_id in report.failed:
            print(report[unit_id].error)
"""

from __future__ import annotations

import traceback
import uuid
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any

from reprocache.core.errors import ExecutionError, ReproError, StorageError
from reprocache.core.hashing import fingerprint_all
from reprocache.core.logging import get_logger, log_step, push_context
from reprocache.execution.cancellation import CancelToken
from reprocache.orchestration.graph import Graph
from reprocache.orchestration.unit import ComputationUnit
from reprocache.store.base import ArtifactStore, utcnow

logger = get_logger(__name__)


class UnitState(str, Enum):
    """Lifecycle state of one unit within a run."""

    PENDING = "pending"
    FINGERPRINTED = "fingerprinted"
    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    """Why a unit was never executed."""

    UPSTREAM_FAILED = "upstream_failed"
    CANCELLED = "cancelled"


class RunStatus(str, Enum):
    """Overall status of a pipeline run."""

    SUCCESS = "success"
    PARTIAL = "partial"  # some units done, some failed or skipped
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = frozenset({UnitState.DONE, UnitState.FAILED, UnitState.SKIPPED})


@dataclass
class UnitExecution:
    """Record of one unit's passage through a run."""

    unit_id: str
    fingerprint: str | None = None
    state: UnitState = UnitState.PENDING
    skip_reason: SkipReason | None = None
    error: ReproError | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    history: list[UnitState] = field(default_factory=lambda: [UnitState.PENDING])

    def transition(self, state: UnitState) -> None:
        self.state = state
        self.history.append(state)

    @property
    def cached(self) -> bool:
        """True if the unit was satisfied from the store."""
        return UnitState.CACHE_HIT in self.history and self.state == UnitState.DONE

    @property
    def executed(self) -> bool:
        """True if the body ran to completion in this run."""
        return UnitState.RUNNING in self.history and self.state == UnitState.DONE

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/storage."""
        return {
            "unit_id": self.unit_id,
            "fingerprint": self.fingerprint,
            "state": self.state.value,
            "cached": self.cached,
            "skip_reason": self.skip_reason.value if self.skip_reason else None,
            "error": self.error.to_dict() if self.error else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunReport:
    """Result of running a graph."""

    run_id: str
    graph_name: str
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None = None
    units: list[UnitExecution] = field(default_factory=list)

    def __getitem__(self, unit_id: str) -> UnitExecution:
        for record in self.units:
            if record.unit_id == unit_id:
                return record
        raise KeyError(unit_id)

    def __contains__(self, unit_id: object) -> bool:
        return any(record.unit_id == unit_id for record in self.units)

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def executed(self) -> list[str]:
        """Units whose body ran in this run."""
        return [r.unit_id for r in self.units if r.executed]

    @property
    def cache_hits(self) -> list[str]:
        """Units satisfied from the store without executing."""
        return [r.unit_id for r in self.units if r.cached]

    @property
    def failed(self) -> list[str]:
        return [r.unit_id for r in self.units if r.state == UnitState.FAILED]

    @property
    def skipped(self) -> list[str]:
        return [r.unit_id for r in self.units if r.state == UnitState.SKIPPED]

    @property
    def fingerprints(self) -> dict[str, str]:
        return {r.unit_id: r.fingerprint for r in self.units if r.fingerprint}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/storage."""
        return {
            "run_id": self.run_id,
            "graph_name": self.graph_name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "executed": self.executed,
            "cache_hits": self.cache_hits,
            "failed": self.failed,
            "skipped": self.skipped,
            "units": [r.to_dict() for r in self.units],
        }


def _final_status(records: Iterable[UnitExecution]) -> RunStatus:
    records = list(records)
    if any(r.skip_reason == SkipReason.CANCELLED for r in records):
        return RunStatus.CANCELLED
    done = sum(1 for r in records if r.state == UnitState.DONE)
    if done == len(records):
        return RunStatus.SUCCESS
    if done == 0:
        return RunStatus.FAILED
    return RunStatus.PARTIAL


class PipelineRunner:
    """
    Executes graphs incrementally against an artifact store.

    Args:
        store: Where artifacts are looked up and published
        max_workers: Units executed concurrently (1 = sequential)
        force: Execute every unit even when its artifact exists
    """

    def __init__(self, store: ArtifactStore, max_workers: int = 1, force: bool = False):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.store = store
        self.max_workers = max_workers
        self.force = force

    def run(
        self,
        graph: Graph,
        targets: Iterable[str] | None = None,
        cancel: CancelToken | None = None,
    ) -> RunReport:
        """
        Run a graph (or the part of it that ``targets`` depend on).

        Raises:
            MalformedUnitError: Bad reference, or params that cannot be
                fingerprinted (before anything executes)
            CycleError: The graph is cyclic (before anything executes)
            KeyError: A target is not in the graph
        """
        graph.validate()
        work = graph.subgraph(targets) if targets is not None else graph

        order = work.topological_order()
        fingerprints = fingerprint_all(work[uid] for uid in order)

        run_id = f"run-{uuid.uuid4().hex[:12]}"
        records = {uid: UnitExecution(unit_id=uid, fingerprint=fingerprints[uid]) for uid in order}
        started_at = utcnow()

        token = push_context(run_id=run_id)
        try:
            logger.info(
                "run.start",
                graph=work.name,
                units=len(order),
                max_workers=self.max_workers,
                force=self.force,
            )

            if self.max_workers > 1 and len(order) > 1:
                self._execute_parallel(work, order, records, run_id, cancel)
            else:
                self._execute_sequential(work, order, records, run_id, cancel)

            report = RunReport(
                run_id=run_id,
                graph_name=work.name,
                status=_final_status(records.values()),
                started_at=started_at,
                completed_at=utcnow(),
                units=[records[uid] for uid in order],
            )

            logger.info(
                "run.complete",
                graph=work.name,
                status=report.status.value,
                duration_seconds=report.duration_seconds,
                executed=len(report.executed),
                cache_hits=len(report.cache_hits),
                failed=len(report.failed),
                skipped=len(report.skipped),
            )
            return report
        finally:
            token.restore()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def _skip(self, record: UnitExecution, reason: SkipReason, blocked_by: list[str] | None = None) -> None:
        record.skip_reason = reason
        record.transition(UnitState.SKIPPED)
        logger.warning(
            "unit.skipped",
            unit=record.unit_id,
            reason=reason.value,
            blocked_by=blocked_by or [],
        )

    @staticmethod
    def _blockers(unit: ComputationUnit, records: dict[str, UnitExecution]) -> list[str]:
        """Upstream units that ended without an artifact."""
        return sorted(
            dep for dep in unit.upstream if records[dep].state in (UnitState.FAILED, UnitState.SKIPPED)
        )

    def _execute_sequential(
        self,
        graph: Graph,
        order: list[str],
        records: dict[str, UnitExecution],
        run_id: str,
        cancel: CancelToken | None,
    ) -> None:
        for uid in order:
            record = records[uid]
            if cancel is not None and cancel.cancelled:
                self._skip(record, SkipReason.CANCELLED)
                continue
            blockers = self._blockers(graph[uid], records)
            if blockers:
                self._skip(record, SkipReason.UPSTREAM_FAILED, blockers)
                continue
            self._execute_unit(graph[uid], record, records, run_id)

    def _execute_parallel(
        self,
        graph: Graph,
        order: list[str],
        records: dict[str, UnitExecution],
        run_id: str,
        cancel: CancelToken | None,
    ) -> None:
        """
        Execute units in parallel, respecting the dependency partial order.

        A unit is submitted as soon as every upstream unit is DONE. Units
        whose upstream failed (or was skipped) are skipped in turn. After
        cancellation no new unit is submitted; running units finish.
        """
        pending: list[str] = list(order)
        lock = Lock()

        def is_ready(uid: str) -> bool:
            return all(records[dep].state == UnitState.DONE for dep in graph[uid].upstream)

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reprocache") as executor:
            futures: dict[Future, str] = {}

            while pending or futures:
                running = set(futures.values())

                with lock:
                    if cancel is not None and cancel.cancelled:
                        for uid in [u for u in pending if u not in running]:
                            self._skip(records[uid], SkipReason.CANCELLED)
                            pending.remove(uid)

                    # Repeat until stable so skips propagate down whole chains.
                    changed = True
                    while changed:
                        changed = False
                        for uid in list(pending):
                            blockers = self._blockers(graph[uid], records)
                            if blockers:
                                self._skip(records[uid], SkipReason.UPSTREAM_FAILED, blockers)
                                pending.remove(uid)
                                changed = True

                    ready = [uid for uid in pending if uid not in running and is_ready(uid)]

                slots_available = self.max_workers - len(futures)
                for uid in ready[:slots_available]:
                    future = executor.submit(self._execute_unit, graph[uid], records[uid], records, run_id)
                    futures[future] = uid
                    pending.remove(uid)
                    logger.debug("run.parallel.submitted", unit=uid, active_futures=len(futures))

                if not futures:
                    # Nothing running and nothing ready: everything left is resolved.
                    break

                # Wait for one future to complete, then recheck ready units
                for future in as_completed(futures.keys()):
                    uid = futures.pop(future)
                    try:
                        future.result()
                    except Exception as e:
                        # _execute_unit records its own failures; this is a runner bug.
                        logger.exception("run.parallel.unexpected_error", unit=uid, error=str(e))
                        with lock:
                            record = records[uid]
                            record.error = ExecutionError(uid, str(e), cause=e)
                            record.transition(UnitState.FAILED)
                    break

    # =========================================================================
    # Unit execution
    # =========================================================================

    def _fail(self, record: UnitExecution, error: ReproError) -> None:
        record.error = error
        record.transition(UnitState.FAILED)
        logger.error(
            "unit.failed",
            unit=record.unit_id,
            error_type=type(error).__name__,
            error=error.message,
        )

    def _load_inputs(self, unit: ComputationUnit, records: dict[str, UnitExecution]) -> dict[str, Any]:
        """Read upstream artifacts; values always come from the store."""
        inputs: dict[str, Any] = {}
        for dep in sorted(unit.upstream):
            fp = records[dep].fingerprint
            artifact = self.store.get(fp)
            if artifact is None:
                raise StorageError(f"Artifact for upstream unit '{dep}' is missing from the store").with_context(
                    unit_id=unit.unit_id, fingerprint=fp
                )
            inputs[dep] = artifact.value
        return inputs

    def _execute_unit(
        self,
        unit: ComputationUnit,
        record: UnitExecution,
        records: dict[str, UnitExecution],
        run_id: str,
    ) -> UnitExecution:
        """Resolve one unit from the cache or by executing it. Never raises."""
        fp = record.fingerprint
        token = push_context(run_id=run_id, unit=unit.unit_id, fingerprint=fp[:12])
        record.started_at = utcnow()
        try:
            record.transition(UnitState.FINGERPRINTED)

            if not self.force and self.store.exists(fp):
                record.transition(UnitState.CACHE_HIT)
                record.transition(UnitState.DONE)
                logger.info("unit.cache_hit", unit=unit.unit_id)
                return record

            record.transition(UnitState.CACHE_MISS)
            try:
                inputs = self._load_inputs(unit, records)
            except ReproError as e:
                self._fail(record, e)
                return record

            record.transition(UnitState.RUNNING)
            try:
                with log_step("unit.execute", unit=unit.unit_id):
                    value = unit.execute(inputs)
            except Exception as e:
                self._fail(
                    record,
                    ExecutionError(
                        unit.unit_id,
                        f"{type(e).__name__}: {e}",
                        traceback=traceback.format_exc(),
                        cause=e,
                    ).with_context(fingerprint=fp, run_id=run_id),
                )
                return record

            try:
                self.store.put(fp, value, unit_id=unit.unit_id)
            except StorageError as e:
                self._fail(record, e)
                return record

            record.transition(UnitState.DONE)
            return record
        finally:
            record.completed_at = utcnow()
            token.restore()


def load(report: RunReport, store: ArtifactStore, unit_id: str) -> Any:
    """
    Return the artifact value a run produced (or reused) for a unit.

    Raises:
        KeyError: If the unit was not part of the run
        ExecutionError: If the unit did not finish DONE
        StorageError: If the artifact has since disappeared from the store
    """
    record = report[unit_id]
    if record.state != UnitState.DONE:
        raise ExecutionError(unit_id, f"no artifact, unit ended {record.state.value}")
    artifact = store.get(record.fingerprint)
    if artifact is None:
        raise StorageError(f"Artifact for unit '{unit_id}' is missing from the store").with_context(
            unit_id=unit_id, fingerprint=record.fingerprint, run_id=report.run_id
        )
    return artifact.value


__all__ = [
    "PipelineRunner",
    "RunReport",
    "RunStatus",
    "SkipReason",
    "UnitExecution",
    "UnitState",
    "load",
]
