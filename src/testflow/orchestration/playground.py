"""Workflow Playground — run an AnsibleTest against the in-memory cluster.

Drives the real reconciler cycle by cycle and plays the part of the
cluster in between: every worker the reconciler creates finishes with the
outcome chosen for its step.  Each cycle is recorded, so a developer can
see which action was taken, which workers existed and what the
conditions looked like, without a cluster.

Architecture::

    WorkflowPlayground(cluster, reconciler)
    ├── load(test)             → adds the instance (and its CA bundle, if asked)
    ├── cycle()                → one reconcile + worker completion, returns CycleSnapshot
    ├── run(max_cycles)        → cycles until done, failed or out of cycles
    └── outcomes               → step index → final worker phase (default Succeeded)

    PlaygroundReport
    ├── cycles                 → list[CycleSnapshot]
    ├── completed / failed     → final state
    └── created_workers        → worker names in creation order

Example::

    pg = WorkflowPlayground()
    pg.load(AnsibleTest.from_yaml_file("smoke.yaml"), outcomes={1: WorkerPhase.FAILED})
    report = await pg.run()
    report.failed            # True, step 1 failed and step 2 was never created

Tags:
    testflow, orchestration, playground, simulation, debugging
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from testflow.core.errors import TestflowError
from testflow.core.logging import get_logger
from testflow.core.settings import OperatorSettings, get_settings
from testflow.execution.cluster import InMemoryCluster
from testflow.execution.runtimes import Worker, WorkerPhase
from testflow.orchestration.reconciler import AnsibleTestReconciler
from testflow.orchestration.step_executor import INSTANCE_NAME_LABEL, WORKFLOW_STEP_LABEL
from testflow.orchestration.workflow_yaml import AnsibleTest
from testflow.status.conditions import ConditionType

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CycleSnapshot:
    """State after one reconcile cycle.

    Attributes:
        cycle: 0-based cycle number.
        action: Action the reconciler took (``None`` for the init cycle).
        step: Step the action concerned.
        requeue_after: Requeue the reconciler asked for.
        workers: Worker name → phase, after the cycle.
        conditions: Condition type → status, after the cycle.
        error: Error message if the reconcile raised.
    """

    cycle: int
    action: str | None
    step: int | None
    requeue_after: float | None
    workers: dict[str, str]
    conditions: dict[str, str]
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycle": self.cycle,
            "action": self.action,
            "step": self.step,
            "requeue_after": self.requeue_after,
            "workers": dict(self.workers),
            "conditions": dict(self.conditions),
            "error": self.error,
        }


@dataclass
class PlaygroundReport:
    """Everything recorded during a playground run."""

    name: str
    namespace: str
    cycles: list[CycleSnapshot] = field(default_factory=list)
    created_workers: list[str] = field(default_factory=list)
    lock_holder: str | None = None

    @property
    def completed(self) -> bool:
        return bool(self.cycles) and self.cycles[-1].conditions.get(
            ConditionType.DEPLOYMENT_READY.value
        ) == "True"

    @property
    def failed(self) -> bool:
        return bool(self.cycles) and self.cycles[-1].error is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "completed": self.completed,
            "failed": self.failed,
            "created_workers": list(self.created_workers),
            "lock_holder": self.lock_holder,
            "cycles": [c.to_dict() for c in self.cycles],
        }


# ---------------------------------------------------------------------------
# WorkflowPlayground
# ---------------------------------------------------------------------------

class WorkflowPlayground:
    """Cycle-by-cycle AnsibleTest runner on an ``InMemoryCluster``."""

    def __init__(
        self,
        cluster: InMemoryCluster | None = None,
        reconciler: AnsibleTestReconciler | None = None,
        settings: OperatorSettings | None = None,
    ):
        self.settings = settings or get_settings()
        self.cluster = cluster or InMemoryCluster()
        self.reconciler = reconciler or AnsibleTestReconciler(self.cluster, settings=self.settings)
        self.outcomes: dict[int, WorkerPhase] = {}
        self._namespace = ""
        self._name = ""
        self._cycle = 0
        self._report: PlaygroundReport | None = None

    def load(
        self,
        test: AnsibleTest,
        *,
        outcomes: dict[int, WorkerPhase] | None = None,
        with_ca_bundle: bool = False,
    ) -> None:
        """Add ``test`` to the cluster and reset the recorded history."""
        instance = test.to_instance()
        self.cluster.add_workflow(instance)
        if with_ca_bundle:
            self.cluster.add_secret(instance.namespace, self.settings.ca_bundle_secret_name)
        self.outcomes = dict(outcomes or {})
        self._namespace = instance.namespace
        self._name = instance.name
        self._cycle = 0
        self._report = PlaygroundReport(name=instance.name, namespace=instance.namespace)

    @property
    def report(self) -> PlaygroundReport:
        if self._report is None:
            raise RuntimeError("No workflow loaded. Call load() first.")
        return self._report

    async def cycle(self) -> CycleSnapshot:
        """Reconcile once, then finish every worker that is still running."""
        report = self.report
        action = step = requeue_after = error = None
        try:
            result = await self.reconciler.reconcile(self._namespace, self._name)
            action = result.action.value if result.action else None
            step, requeue_after = result.step, result.requeue_after
        except TestflowError as exc:
            error = exc.message
            logger.info("playground_cycle_failed", cycle=self._cycle, error=exc.message)

        self._complete_running_workers()

        instance = self.cluster.workflow(self._namespace, self._name)
        conditions = {}
        if instance is not None and instance.conditions is not None:
            conditions = {c.type: c.status.value for c in instance.conditions}
        snapshot = CycleSnapshot(
            cycle=self._cycle,
            action=action,
            step=step,
            requeue_after=requeue_after,
            workers={w.name: w.phase.value for w in self._workers()},
            conditions=conditions,
            error=error,
        )
        report.cycles.append(snapshot)
        report.created_workers = [
            name for name in self.cluster.created_workers if name in snapshot.workers
        ]
        lock = self.cluster.lock(
            self.settings.lock_namespace or self._namespace, self.settings.lock_name
        )
        report.lock_holder = lock.owner_name if lock is not None and lock.is_owned else None
        self._cycle += 1
        return snapshot

    async def run(self, max_cycles: int = 50) -> PlaygroundReport:
        """Cycle until the workflow completes, fails, or ``max_cycles`` is hit."""
        report = self.report
        while self._cycle < max_cycles:
            snapshot = await self.cycle()
            if snapshot.error is not None or report.completed:
                break
        return report

    def _workers(self) -> list[Worker]:
        return sorted(
            (
                w for w in self.cluster.workers(self._namespace)
                if w.labels.get(INSTANCE_NAME_LABEL) == self._name
            ),
            key=lambda w: w.name,
        )

    def _complete_running_workers(self) -> None:
        for worker in self._workers():
            if worker.phase.is_terminal:
                continue
            step = int(worker.labels.get(WORKFLOW_STEP_LABEL, "0"))
            self.cluster.set_worker_phase(
                worker.namespace,
                worker.name,
                self.outcomes.get(step, WorkerPhase.SUCCEEDED),
            )
