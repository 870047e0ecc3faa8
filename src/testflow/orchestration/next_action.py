"""Workflow state evaluator.

Maps the workflow length and the workers observed for one instance to the
single next thing the reconciler should do.  Pure: no cluster access, no
clock, no logging.

.. code-block:: text

    workers observed               decision
    ────────────────               ────────
    none                           CREATE_FIRST_POD(0)
    current Pending / Running      WAIT(current)
    current Succeeded, not last    CREATE_NEXT_POD(current + 1)
    current Succeeded, last        END_TESTING(current)
    current Failed                 FAILURE(StepFailureError)
    anything inconsistent          FAILURE(InvariantViolationError)

    "current" is the worker with the highest step index.  Every lower
    index must have exactly one Succeeded worker.

A workflow with no steps runs one implicit step 0 with the base
parameters, so ``N = 0`` behaves like ``N = 1``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from testflow.core.errors import InvariantViolationError, StepFailureError, TestflowError
from testflow.execution.runtimes import Worker, WorkerPhase
from testflow.orchestration.step_executor import WORKFLOW_STEP_LABEL


class NextAction(str, Enum):
    CREATE_FIRST_POD = "CreateFirstPod"
    CREATE_NEXT_POD = "CreateNextPod"
    WAIT = "Wait"
    END_TESTING = "EndTesting"
    FAILURE = "Failure"


@dataclass(frozen=True)
class Decision:
    """What to do next, for which step, and why it failed (FAILURE only)."""

    action: NextAction
    step: int
    error: TestflowError | None = None

    @classmethod
    def failure(cls, step: int, error: TestflowError) -> Decision:
        return cls(NextAction.FAILURE, step, error)


def step_count(workflow_length: int) -> int:
    """Number of steps actually run (at least one)."""
    return max(workflow_length, 1)


def is_last_step(step: int, workflow_length: int) -> bool:
    return step + 1 >= step_count(workflow_length)


def _step_of(worker: Worker) -> int | None:
    try:
        return int(worker.labels[WORKFLOW_STEP_LABEL])
    except (KeyError, ValueError):
        return None


def next_action(workflow_length: int, workers: Iterable[Worker]) -> Decision:
    """Decide the next action from the observed workers of one instance."""
    total = step_count(workflow_length)
    by_step: dict[int, Worker] = {}

    for worker in workers:
        step = _step_of(worker)
        if step is None:
            return Decision.failure(0, InvariantViolationError(
                f"Worker {worker.name} has no valid {WORKFLOW_STEP_LABEL} label"
            ).with_context(resource=worker.name))
        if not 0 <= step < total:
            return Decision.failure(step, InvariantViolationError(
                f"Worker {worker.name} runs step {step} of a {total}-step workflow"
            ).with_context(step=step, resource=worker.name))
        if step in by_step:
            return Decision.failure(step, InvariantViolationError(
                f"Step {step} has more than one worker: "
                f"{by_step[step].name}, {worker.name}"
            ).with_context(step=step))
        by_step[step] = worker

    if not by_step:
        return Decision(NextAction.CREATE_FIRST_POD, 0)

    current = max(by_step)
    for step in range(current):
        previous = by_step.get(step)
        if previous is None:
            return Decision.failure(step, InvariantViolationError(
                f"Worker for step {step} is missing while step {current} exists"
            ).with_context(step=step))
        if previous.phase is not WorkerPhase.SUCCEEDED:
            return Decision.failure(step, InvariantViolationError(
                f"Worker {previous.name} for step {step} is {previous.phase.value} "
                f"while step {current} exists"
            ).with_context(step=step, resource=previous.name))

    worker = by_step[current]
    if worker.phase in (WorkerPhase.PENDING, WorkerPhase.RUNNING):
        return Decision(NextAction.WAIT, current)
    if worker.phase is WorkerPhase.FAILED:
        return Decision.failure(
            current,
            StepFailureError(current, worker.name).with_context(step=current, resource=worker.name),
        )
    if worker.phase is WorkerPhase.SUCCEEDED:
        if is_last_step(current, workflow_length):
            return Decision(NextAction.END_TESTING, current)
        return Decision(NextAction.CREATE_NEXT_POD, current + 1)

    return Decision.failure(current, InvariantViolationError(
        f"Worker {worker.name} is in unexpected phase {worker.phase.value}"
    ).with_context(step=current, resource=worker.name))


__all__ = ["Decision", "NextAction", "is_last_step", "next_action", "step_count"]
