"""Step worker runtime.

Architecture:

    .. code-block:: text

        testflow.execution.runtimes
        ├── __init__.py  ← Public API (this file)
        ├── _types.py    ← WorkerSpec, Worker, WorkerPhase and spec parts
        └── _base.py     ← WorkerRuntime (idempotent submission + logging)

    WorkerSpec is what a controller wants to run; Worker is what the
    cluster reports back.  WorkerRuntime is the only place that submits.

Tags:
    testflow, execution, runtimes, worker
"""

from testflow.execution.runtimes._base import SubmitOutcome, SubmitResult, WorkerRuntime
from testflow.execution.runtimes._types import (
    ResourceRequirements,
    SecurityContext,
    Toleration,
    Volume,
    VolumeMount,
    Worker,
    WorkerPhase,
    WorkerSpec,
    redact_spec,
    worker_external_name,
)

__all__ = [
    "ResourceRequirements",
    "SecurityContext",
    "SubmitOutcome",
    "SubmitResult",
    "Toleration",
    "Volume",
    "VolumeMount",
    "Worker",
    "WorkerPhase",
    "WorkerRuntime",
    "WorkerSpec",
    "redact_spec",
    "worker_external_name",
]
