"""Capabilities shared by every workflow controller.

Lock handling, the logs volume claim, worker submission, image
resolution and secret probing are the same for every workflow kind.
They live behind one ``ControllerToolkit`` interface, implemented once by
``ClusterToolkit`` and injected into each workflow-specific reconciler.

.. code-block:: text

    AnsibleTestReconciler ──uses──► ControllerToolkit (Protocol)
                                          ▲
                                          │ implements
                                    ClusterToolkit(cluster, settings)
                                    ├── ExclusiveLock   acquire_lock / release_lock
                                    ├── ClusterClient   ensure_logs_volume / secret_exists / list_workers
                                    ├── WorkerRuntime   submit_worker
                                    └── OperatorSettings resolve_image

Example::

    toolkit = ClusterToolkit(cluster, settings)
    if not (await toolkit.acquire_lock(instance)).held:
        ...
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from testflow.core.errors import (
    ClusterError,
    ImageResolutionError,
    VolumeNotReadyError,
)
from testflow.core.logging import get_logger
from testflow.core.settings import OperatorSettings, get_settings
from testflow.execution.cluster import (
    ClaimPhase,
    ClusterClient,
    VolumeClaim,
    VolumeClaimSpec,
    WorkflowInstance,
)
from testflow.execution.lock import AcquireResult, ExclusiveLock, ReleaseResult
from testflow.execution.runtimes import SubmitResult, Worker, WorkerRuntime, WorkerSpec

logger = get_logger(__name__)


@runtime_checkable
class ControllerToolkit(Protocol):
    """What a workflow reconciler needs from the platform."""

    async def acquire_lock(self, instance: WorkflowInstance) -> AcquireResult:
        ...

    async def release_lock(self, instance: WorkflowInstance) -> ReleaseResult:
        ...

    def logs_volume_name(self, instance: WorkflowInstance) -> str:
        ...

    async def ensure_logs_volume(
        self, instance: WorkflowInstance, labels: dict[str, str]
    ) -> VolumeClaim:
        """Ensure the logs claim exists and is bound.

        Raises VolumeNotReadyError while the claim is pending.
        """
        ...

    async def submit_worker(self, spec: WorkerSpec) -> SubmitResult:
        ...

    def resolve_image(self, override: str, service_name: str) -> str:
        """Override image if set, else the platform default for the service."""
        ...

    async def secret_exists(self, instance: WorkflowInstance, name: str) -> bool:
        ...

    async def list_workers(
        self, instance: WorkflowInstance, labels: dict[str, str]
    ) -> list[Worker]:
        ...


class ClusterToolkit:
    """``ControllerToolkit`` on top of a ``ClusterClient``."""

    def __init__(self, cluster: ClusterClient, settings: OperatorSettings | None = None):
        self._cluster = cluster
        self._settings = settings or get_settings()
        self._runtime = WorkerRuntime(cluster)

    def lock_for(self, instance: WorkflowInstance) -> ExclusiveLock:
        namespace = self._settings.lock_namespace or instance.namespace
        return ExclusiveLock(self._cluster, self._settings.lock_name, namespace)

    async def acquire_lock(self, instance: WorkflowInstance) -> AcquireResult:
        return await self.lock_for(instance).acquire(instance.uid, instance.name)

    async def release_lock(self, instance: WorkflowInstance) -> ReleaseResult:
        return await self.lock_for(instance).release(instance.uid)

    def logs_volume_name(self, instance: WorkflowInstance) -> str:
        return f"{instance.name}-logs"

    async def ensure_logs_volume(
        self, instance: WorkflowInstance, labels: dict[str, str]
    ) -> VolumeClaim:
        name = self.logs_volume_name(instance)
        claim = await self._cluster.ensure_volume_claim(
            VolumeClaimSpec(
                name=name,
                namespace=instance.namespace,
                storage_class=instance.spec.storage_class,
                size=self._settings.logs_volume_size,
                labels=dict(labels),
                owner_uid=instance.uid,
            )
        )
        if claim.phase is ClaimPhase.PENDING:
            raise VolumeNotReadyError(
                f"Logs volume claim {name} is not bound yet"
            ).with_context(namespace=instance.namespace, instance=instance.name, resource=name)
        if claim.phase is ClaimPhase.LOST:
            raise ClusterError(
                f"Logs volume claim {name} lost its volume", retryable=False
            ).with_context(namespace=instance.namespace, instance=instance.name, resource=name)
        return claim

    async def submit_worker(self, spec: WorkerSpec) -> SubmitResult:
        return await self._runtime.submit(spec)

    def resolve_image(self, override: str, service_name: str) -> str:
        if override:
            return override
        image = self._settings.default_images.get(service_name, "")
        if not image:
            raise ImageResolutionError(service_name)
        return image

    async def secret_exists(self, instance: WorkflowInstance, name: str) -> bool:
        exists = await self._cluster.secret_exists(instance.namespace, name)
        if not exists:
            logger.debug("secret_not_found", secret=name)
        return exists

    async def list_workers(
        self, instance: WorkflowInstance, labels: dict[str, str]
    ) -> list[Worker]:
        return await self._runtime.workers(instance.namespace, labels)


__all__ = ["ClusterToolkit", "ControllerToolkit"]
