"""Worker runtime with shared submission logic.

``WorkerRuntime`` sits between the controllers and ``ClusterClient.create_worker``.
It adds logging, treats a name collision as success, and converts platform
failures into ``ClusterError``.

Architecture:

    .. code-block:: text

        WorkerRuntime(cluster)
        ├── submit(spec)  → logging + idempotent create → SubmitResult
        │     ├── created            → SubmitOutcome.CREATED
        │     ├── AlreadyExistsError → SubmitOutcome.EXISTS (re-read worker)
        │     └── other error        → ClusterError (retryable)
        └── workers(ns, labels) → list_workers passthrough

Usage:
    runtime = WorkerRuntime(InMemoryCluster())
    result = await runtime.submit(spec)
    if result.in_progress:
        ...  # worker not finished yet, report DeploymentReady=False/Requested

Tags:
    testflow, execution, runtimes, submission, idempotent
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from testflow.core.errors import AlreadyExistsError, ClusterError, TestflowError
from testflow.execution.runtimes._types import Worker, WorkerSpec, redact_spec

if TYPE_CHECKING:
    from testflow.execution.cluster import ClusterClient

logger = logging.getLogger(__name__)


class SubmitOutcome(str, Enum):
    CREATED = "created"
    EXISTS = "exists"


@dataclass(frozen=True)
class SubmitResult:
    """Result of an idempotent worker submission."""

    outcome: SubmitOutcome
    worker: Worker

    @property
    def in_progress(self) -> bool:
        """Whether the submitted worker has not reached a final phase."""
        return not self.worker.phase.is_terminal


class WorkerRuntime:
    """Submits step workers to the cluster.

    .. code-block:: text

        submit(spec)
          ├── log: "Submitting worker 'X' (image=...)"
          ├── cluster.create_worker(spec)
          ├── log: "Worker 'X' created"
          ├── on AlreadyExistsError: re-read, log "already exists", EXISTS
          └── on other error: wrap in ClusterError(retryable=True)
    """

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    async def submit(self, spec: WorkerSpec) -> SubmitResult:
        """Create the worker unless it already exists."""
        logger.info(
            "Submitting worker '%s' in %s (image=%s)",
            spec.name, spec.namespace, spec.image,
        )
        logger.debug("Worker spec for '%s': %s", spec.name, redact_spec(spec))
        try:
            worker = await self._cluster.create_worker(spec)
        except AlreadyExistsError:
            existing = await self._find(spec)
            logger.info(
                "Worker '%s' already exists (phase=%s)",
                spec.name, existing.phase.value,
            )
            return SubmitResult(outcome=SubmitOutcome.EXISTS, worker=existing)
        except TestflowError:
            logger.error("Submit failed for worker '%s'", spec.name)
            raise
        except Exception as exc:
            logger.error("Submit failed for worker '%s': %s", spec.name, exc)
            raise ClusterError(
                f"Submit failed: {exc}", cause=exc
            ).with_context(namespace=spec.namespace, resource=spec.name) from exc

        logger.info("Worker '%s' created in %s", spec.name, spec.namespace)
        return SubmitResult(outcome=SubmitOutcome.CREATED, worker=worker)

    async def workers(self, namespace: str, labels: dict[str, str]) -> list[Worker]:
        return await self._cluster.list_workers(namespace, labels)

    async def _find(self, spec: WorkerSpec) -> Worker:
        for worker in await self._cluster.list_workers(spec.namespace, {}):
            if worker.name == spec.name:
                return worker
        # Deleted between the create attempt and the re-read.
        raise ClusterError(
            f"Worker {spec.name} reported as existing but could not be read"
        ).with_context(namespace=spec.namespace, resource=spec.name)
