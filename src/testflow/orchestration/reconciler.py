"""AnsibleTest reconciler — drives one workflow instance toward completion.

Every call observes the current state of one instance and takes at most
one externally visible step forward (take or release the lock, create a
worker), then asks to be called again.  Nothing waits in-process: a
pending claim, a running worker or a busy lock all become a requeue
after the fixed interval from the settings.

Architecture:

    .. code-block:: text

        reconcile(namespace, name)
          ├── get_workflow ─── gone ──────────────────────► done
          ├── status_guard(instance)   (patches status on every exit)
          │     ├── first sight ─ init conditions Unknown ► requeue now
          │     ├── next_action(N, workers)
          │     │     FAILURE        ─ mark DeploymentReady False/Error, raise
          │     │                      (a failed step also releases the lock)
          │     │     WAIT           ─────────────────────► requeue
          │     │     END_TESTING    ─ release lock
          │     │                      failed   ──────────► requeue
          │     │                      ok ─ DeploymentReady True ► done
          │     │     CREATE_FIRST_POD ─ acquire lock
          │     │                      held by other ─────► requeue
          │     │     CREATE_NEXT_POD  ─ reconfirm lock
          │     │                      lost ─ InvariantViolationError
          │     ├── ensure logs claim  pending ───────────► requeue
          │     ├── ServiceConfigReady True
          │     ├── resolve step parameters, image, CA bundle probe
          │     └── submit worker
          │           failed  ─ release lock, DeploymentReady False/Error, raise
          │           running ─ DeploymentReady False/Requested
          └── ───────────────────────────────────────────► requeue

    status_guard on exit:
        all sub-conditions True → Ready True
        Ready Unknown (or True) → Ready mirrors the first non-ready one
        transition times restored where the status did not change

Tags:
    testflow, orchestration, reconciler, state-machine, operator
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from testflow.core.errors import (
    InvariantViolationError,
    NotFoundError,
    StepFailureError,
    TestflowError,
    VolumeNotReadyError,
)
from testflow.core.logging import LogContext, get_logger
from testflow.core.settings import OperatorSettings, get_settings
from testflow.execution.cluster import ClusterClient, WorkflowInstance
from testflow.execution.lock import ReleaseResult
from testflow.orchestration.next_action import Decision, NextAction, next_action
from testflow.orchestration.overrides import resolve_step
from testflow.orchestration.step_executor import AnsibleStepExecutor
from testflow.orchestration.toolkit import ClusterToolkit, ControllerToolkit
from testflow.status.conditions import (
    DEPLOYMENT_READY_ERROR_MESSAGE,
    DEPLOYMENT_READY_MESSAGE,
    DEPLOYMENT_READY_RUNNING_MESSAGE,
    READY_MESSAGE,
    SERVICE_CONFIG_READY_MESSAGE,
    ConditionList,
    ConditionReason,
    ConditionType,
    Severity,
    initial_conditions,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile.

    ``requeue_after`` is ``None`` when nothing is left to do until the
    instance changes.
    """

    requeue_after: float | None = None
    action: NextAction | None = None
    step: int | None = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


@asynccontextmanager
async def status_guard(
    cluster: ClusterClient, instance: WorkflowInstance
) -> AsyncIterator[ConditionList]:
    """Persist ``instance.conditions`` however the wrapped block exits.

    On exit Ready turns True when every sub-condition is True.  Otherwise,
    while Ready is Unknown (or still True from an earlier exit), it
    mirrors the first non-ready sub-condition.  Every condition whose
    status is unchanged keeps the transition time it had on entry.
    """
    if instance.conditions is None:
        instance.conditions = ConditionList()
    saved = instance.conditions.deep_copy()
    try:
        yield instance.conditions
    finally:
        conditions = instance.conditions
        if conditions.all_sub_conditions_true():
            conditions.mark_true(ConditionType.READY, READY_MESSAGE)
        elif conditions.is_unknown(ConditionType.READY) or conditions.is_true(
            ConditionType.READY
        ):
            # A stale Ready=True is demoted as well.
            conditions.set(conditions.mirror(ConditionType.READY))
        conditions.restore_last_transition_times(saved)
        try:
            await cluster.patch_workflow_status(instance)
        except NotFoundError:
            logger.info("status_patch_skipped_instance_gone")


class AnsibleTestReconciler:
    """Reconciler for the AnsibleTest workflow kind."""

    kind = "AnsibleTest"

    def __init__(
        self,
        cluster: ClusterClient,
        toolkit: ControllerToolkit | None = None,
        settings: OperatorSettings | None = None,
        executor: AnsibleStepExecutor | None = None,
    ):
        self.settings = settings or get_settings()
        self._cluster = cluster
        self._toolkit = toolkit or ClusterToolkit(cluster, self.settings)
        self._executor = executor or AnsibleStepExecutor(self.settings)

    def _requeue(self, decision: Decision) -> ReconcileResult:
        return ReconcileResult(
            requeue_after=self.settings.requeue_after_seconds,
            action=decision.action,
            step=decision.step,
        )

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one reconcile of ``namespace/name``."""
        async with LogContext(controller=self.kind, namespace=namespace, instance=name):
            instance = await self._cluster.get_workflow(namespace, name)
            if instance is None:
                logger.debug("instance_not_found")
                return ReconcileResult()

            is_new = not instance.conditions
            async with status_guard(self._cluster, instance) as conditions:
                if is_new:
                    conditions.init(initial_conditions())
                    logger.info("conditions_initialized")
                    return ReconcileResult(requeue_after=0.0)
                return await self._reconcile_instance(instance, conditions)

    async def _reconcile_instance(
        self, instance: WorkflowInstance, conditions: ConditionList
    ) -> ReconcileResult:
        spec = instance.spec
        workers = await self._toolkit.list_workers(
            instance, self._executor.instance_selector(instance)
        )
        decision = next_action(spec.workflow_length, workers)
        logger.info("next_action", action=decision.action.value, step=decision.step)

        if decision.action is NextAction.FAILURE:
            error = decision.error or InvariantViolationError("Evaluator failed without a cause")
            error.with_context(namespace=instance.namespace, instance=instance.name)
            if isinstance(error, StepFailureError):
                await self._release_after_failure(instance)
            self._mark_deployment_error(conditions, error)
            logger.error("workflow_failed", step=decision.step, error=error.message)
            raise error

        if decision.action is NextAction.WAIT:
            logger.info("waiting_on_worker", step=decision.step)
            return self._requeue(decision)

        if decision.action is NextAction.END_TESTING:
            try:
                released = await self._toolkit.release_lock(instance)
            except TestflowError as exc:
                logger.warning("lock_release_failed", error=exc.message)
                return self._requeue(decision)
            if released is ReleaseResult.NOT_HELD_BY_SELF:
                logger.info("lock_already_released")
            conditions.mark_true(ConditionType.DEPLOYMENT_READY, DEPLOYMENT_READY_MESSAGE)
            logger.info("testing_completed", steps=decision.step + 1)
            return ReconcileResult(action=decision.action, step=decision.step)

        acquired = await self._toolkit.acquire_lock(instance)
        if decision.action is NextAction.CREATE_FIRST_POD:
            if not acquired.held:
                logger.info("lock_busy", lock=self.settings.lock_name)
                return self._requeue(decision)
            logger.info("creating_first_worker", step=decision.step)
        else:
            if not acquired.held:
                error = InvariantViolationError(
                    f"Lock {self.settings.lock_name} is no longer held by this instance"
                ).with_context(
                    namespace=instance.namespace, instance=instance.name, step=decision.step
                )
                self._mark_deployment_error(conditions, error)
                logger.error("lock_ownership_lost", lock=self.settings.lock_name)
                raise error
            logger.info("creating_next_worker", step=decision.step)

        return await self._create_worker(instance, conditions, decision)

    async def _create_worker(
        self, instance: WorkflowInstance, conditions: ConditionList, decision: Decision
    ) -> ReconcileResult:
        step = decision.step
        labels = self._executor.service_labels(instance, step)

        try:
            await self._toolkit.ensure_logs_volume(instance, labels)
        except VolumeNotReadyError:
            logger.info("logs_volume_pending", claim=self._toolkit.logs_volume_name(instance))
            return self._requeue(decision)
        conditions.mark_true(ConditionType.SERVICE_CONFIG_READY, SERVICE_CONFIG_READY_MESSAGE)

        mount_certs = await self._toolkit.secret_exists(
            instance, self.settings.ca_bundle_secret_name
        )
        params = resolve_step(instance.spec, step)

        try:
            image = self._toolkit.resolve_image(params.container_image, self.settings.service_name)
            worker_spec = self._executor.build_worker(
                instance,
                params,
                image=image,
                logs_claim_name=self._toolkit.logs_volume_name(instance),
                mount_certs=mount_certs,
            )
            submitted = await self._toolkit.submit_worker(worker_spec)
        except TestflowError as exc:
            exc.with_context(namespace=instance.namespace, instance=instance.name, step=step)
            await self._release_after_failure(instance)
            self._mark_deployment_error(conditions, exc)
            raise

        if submitted.in_progress:
            conditions.mark_false(
                ConditionType.DEPLOYMENT_READY,
                ConditionReason.REQUESTED,
                Severity.INFO,
                DEPLOYMENT_READY_RUNNING_MESSAGE,
            )
        logger.info(
            "worker_submitted",
            worker=submitted.worker.name,
            step=step,
            step_name=params.step_name,
            outcome=submitted.outcome.value,
        )
        return self._requeue(decision)

    async def _release_after_failure(self, instance: WorkflowInstance) -> None:
        try:
            await self._toolkit.release_lock(instance)
        except TestflowError as exc:
            logger.warning("lock_release_failed", error=exc.message)

    @staticmethod
    def _mark_deployment_error(conditions: ConditionList, error: TestflowError) -> None:
        conditions.mark_false(
            ConditionType.DEPLOYMENT_READY,
            ConditionReason.ERROR,
            Severity.WARNING,
            DEPLOYMENT_READY_ERROR_MESSAGE.format(error=error.message),
        )


__all__ = ["AnsibleTestReconciler", "ReconcileResult", "status_guard"]
