"""Tests for AnsibleTestReconciler."""

import pytest

from testflow.core.errors import (
    ClusterError,
    ImageResolutionError,
    InvariantViolationError,
    StepFailureError,
)
from testflow.core.settings import OperatorSettings
from testflow.execution.cluster import InMemoryCluster, LockRecord
from testflow.execution.runtimes import WorkerPhase
from testflow.orchestration.next_action import NextAction
from testflow.orchestration.reconciler import AnsibleTestReconciler, status_guard
from testflow.status.conditions import (
    DEPLOYMENT_READY_MESSAGE,
    DEPLOYMENT_READY_RUNNING_MESSAGE,
    ConditionList,
    ConditionStatus,
    ConditionType,
    initial_conditions,
)

NS = "openstack"
LOCK = "test-operator-lock"
REQUEUE = 60.0


def _conditions(cluster, name="smoke") -> ConditionList:
    return cluster.workflow(NS, name).conditions


def _assert_ready_consistent(conditions: ConditionList):
    ready = conditions.get(ConditionType.READY)
    assert conditions.has(ConditionType.SERVICE_CONFIG_READY)
    assert conditions.has(ConditionType.DEPLOYMENT_READY)
    if conditions.all_sub_conditions_true():
        assert ready.status is ConditionStatus.TRUE
    else:
        assert ready.status is not ConditionStatus.TRUE


async def _start(reconciler, add_test, test):
    """Add the instance and run the initializing reconcile."""
    instance = add_test(test)
    await reconciler.reconcile(NS, test.metadata.name)
    return instance


# ── Lifecycle ────────────────────────────────────────────────────────────


class TestInitialization:
    @pytest.mark.asyncio
    async def test_first_reconcile_initializes_conditions(
        self, cluster, reconciler, make_test, add_test
    ):
        add_test(make_test())
        result = await reconciler.reconcile(NS, "smoke")
        assert result.requeue_after == 0.0
        assert result.action is None
        conditions = _conditions(cluster)
        assert len(conditions) == 3
        assert all(c.status is ConditionStatus.UNKNOWN for c in conditions)
        assert cluster.created_workers == []

    @pytest.mark.asyncio
    async def test_empty_conditions_treated_as_new(self, cluster, reconciler, make_test):
        instance = make_test().to_instance()
        instance.conditions = ConditionList()
        cluster.add_workflow(instance)
        cluster.put_lock(LockRecord(LOCK, NS, owner_uid="other-uid", owner_name="other"))

        result = await reconciler.reconcile(NS, "smoke")

        assert result.requeue_after == 0.0
        conditions = _conditions(cluster)
        assert len(conditions) == 3
        assert not conditions.is_true(ConditionType.READY)

        result = await reconciler.reconcile(NS, "smoke")

        assert result.action is NextAction.CREATE_FIRST_POD
        assert result.requeue_after == REQUEUE
        assert cluster.created_workers == []
        assert not _conditions(cluster).is_true(ConditionType.READY)

    @pytest.mark.asyncio
    async def test_from_empty_status_list(self, cluster, reconciler, make_test):
        test = make_test()
        test.status.conditions = []
        cluster.add_workflow(test.to_instance())

        await reconciler.reconcile(NS, "smoke")

        conditions = _conditions(cluster)
        assert conditions.has(ConditionType.DEPLOYMENT_READY)
        assert conditions.is_unknown(ConditionType.READY)

    @pytest.mark.asyncio
    async def test_missing_instance_is_noop(self, cluster, reconciler):
        result = await reconciler.reconcile(NS, "missing")
        assert not result.requeue
        assert cluster.status_patches == 0


class TestZeroStepWorkflow:
    @pytest.mark.asyncio
    async def test_runs_one_implicit_step(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test())

        result = await reconciler.reconcile(NS, "smoke")
        assert result.action is NextAction.CREATE_FIRST_POD
        assert result.requeue_after == REQUEUE
        assert cluster.created_workers == ["smoke-s00"]
        (worker,) = cluster.workers(NS)
        assert worker.spec.image == "quay.io/podified/ansible-tests:default"
        conditions = _conditions(cluster)
        assert conditions.is_true(ConditionType.SERVICE_CONFIG_READY)
        deployment = conditions.get(ConditionType.DEPLOYMENT_READY)
        assert deployment.status is ConditionStatus.FALSE
        assert deployment.reason == "Requested"
        assert deployment.message == DEPLOYMENT_READY_RUNNING_MESSAGE
        assert cluster.lock(NS, LOCK).owner_name == "smoke"

        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        result = await reconciler.reconcile(NS, "smoke")

        assert result.action is NextAction.END_TESTING
        assert not result.requeue
        assert cluster.lock(NS, LOCK) is None
        conditions = _conditions(cluster)
        assert conditions.get(ConditionType.DEPLOYMENT_READY).message == DEPLOYMENT_READY_MESSAGE
        assert conditions.is_true(ConditionType.READY)
        assert cluster.created_workers == ["smoke-s00"]


class TestMultiStepWorkflow:
    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run", "cleanup"]))

        for step in range(3):
            result = await reconciler.reconcile(NS, "smoke")
            assert result.step == step
            assert len(cluster.created_workers) == step + 1
            cluster.set_worker_phase(NS, f"smoke-s{step:02d}", WorkerPhase.SUCCEEDED)

        result = await reconciler.reconcile(NS, "smoke")
        assert result.action is NextAction.END_TESTING
        assert cluster.created_workers == ["smoke-s00", "smoke-s01", "smoke-s02"]

    @pytest.mark.asyncio
    async def test_step_override_reaches_worker(self, cluster, reconciler, make_test, add_test):
        test = make_test(
            steps=["prepare", "run"],
            overrides={0: {"containerImage": "custom:v2"}},
            containerImage="default:v1",
        )
        await _start(reconciler, add_test, test)
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        await reconciler.reconcile(NS, "smoke")

        images = {w.name: w.spec.image for w in cluster.workers(NS)}
        assert images == {"smoke-s00": "custom:v2", "smoke-s01": "default:v1"}

    @pytest.mark.asyncio
    async def test_waits_on_running_worker(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run"]))
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.RUNNING)

        result = await reconciler.reconcile(NS, "smoke")

        assert result.action is NextAction.WAIT
        assert result.requeue_after == REQUEUE
        assert cluster.created_workers == ["smoke-s00"]

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run"]))
        await reconciler.reconcile(NS, "smoke")
        before = _conditions(cluster).to_list()

        for _ in range(3):
            await reconciler.reconcile(NS, "smoke")

        assert cluster.created_workers == ["smoke-s00"]
        assert _conditions(cluster).to_list() == before

    @pytest.mark.asyncio
    async def test_ca_bundle_mounted_when_secret_exists(
        self, cluster, reconciler, make_test, add_test
    ):
        cluster.add_secret(NS, "combined-ca-bundle")
        await _start(reconciler, add_test, make_test())
        await reconciler.reconcile(NS, "smoke")
        (worker,) = cluster.workers(NS)
        assert "ca-certs" in {v.name for v in worker.spec.volumes}


# ── Lock ─────────────────────────────────────────────────────────────────


class TestLockContention:
    @pytest.mark.asyncio
    async def test_held_by_other_creates_nothing(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(name="smoke"))
        cluster.put_lock(LockRecord(LOCK, NS, owner_uid="other-uid", owner_name="nightly"))

        result = await reconciler.reconcile(NS, "smoke")

        assert result.requeue_after == REQUEUE
        assert cluster.created_workers == []
        assert cluster.lock(NS, LOCK).owner_name == "nightly"

    @pytest.mark.asyncio
    async def test_instances_run_one_at_a_time(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(name="smoke"))
        await _start(reconciler, add_test, make_test(name="nightly"))

        await reconciler.reconcile(NS, "smoke")
        await reconciler.reconcile(NS, "nightly")
        assert cluster.created_workers == ["smoke-s00"]

        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        await reconciler.reconcile(NS, "smoke")
        await reconciler.reconcile(NS, "nightly")
        assert cluster.created_workers == ["smoke-s00", "nightly-s00"]
        assert cluster.lock(NS, LOCK).owner_name == "nightly"

    @pytest.mark.asyncio
    async def test_lock_lost_mid_workflow(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run"]))
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        cluster.put_lock(LockRecord(LOCK, NS, owner_uid="other-uid", owner_name="nightly"))

        with pytest.raises(InvariantViolationError):
            await reconciler.reconcile(NS, "smoke")

        assert cluster.created_workers == ["smoke-s00"]
        deployment = _conditions(cluster).get(ConditionType.DEPLOYMENT_READY)
        assert deployment.reason == "Error"

    @pytest.mark.asyncio
    async def test_release_failure_defers_completion(
        self, cluster, reconciler, make_test, add_test
    ):
        await _start(reconciler, add_test, make_test())
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        cluster.fail_release = True

        result = await reconciler.reconcile(NS, "smoke")

        assert result.action is NextAction.END_TESTING
        assert result.requeue_after == REQUEUE
        assert not _conditions(cluster).is_true(ConditionType.DEPLOYMENT_READY)

        cluster.fail_release = False
        result = await reconciler.reconcile(NS, "smoke")
        assert not result.requeue
        assert cluster.lock(NS, LOCK) is None
        assert _conditions(cluster).is_true(ConditionType.DEPLOYMENT_READY)

    @pytest.mark.asyncio
    async def test_end_testing_without_lock(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test())
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        cluster.put_lock(LockRecord(LOCK, NS))

        result = await reconciler.reconcile(NS, "smoke")

        assert not result.requeue
        assert _conditions(cluster).is_true(ConditionType.DEPLOYMENT_READY)


# ── Failures ─────────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_step_stops_workflow(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run", "cleanup"]))
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s01", WorkerPhase.FAILED)

        with pytest.raises(StepFailureError):
            await reconciler.reconcile(NS, "smoke")
        with pytest.raises(StepFailureError):
            await reconciler.reconcile(NS, "smoke")

        assert cluster.created_workers == ["smoke-s00", "smoke-s01"]
        assert cluster.lock(NS, LOCK) is None
        conditions = _conditions(cluster)
        deployment = conditions.get(ConditionType.DEPLOYMENT_READY)
        assert deployment.status is ConditionStatus.FALSE
        assert deployment.reason == "Error"
        assert deployment.severity.value == "Warning"
        assert "Workflow step 1 failed" in deployment.message
        assert conditions.is_false(ConditionType.READY)

    @pytest.mark.asyncio
    async def test_submit_failure_releases_lock(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test())
        cluster.fail_create_worker = ClusterError("quota exceeded")

        with pytest.raises(ClusterError):
            await reconciler.reconcile(NS, "smoke")

        assert cluster.lock(NS, LOCK) is None
        deployment = _conditions(cluster).get(ConditionType.DEPLOYMENT_READY)
        assert deployment.reason == "Error"
        assert "quota exceeded" in deployment.message

    @pytest.mark.asyncio
    async def test_missing_image_fails(self, cluster, make_test, add_test):
        reconciler = AnsibleTestReconciler(cluster, settings=OperatorSettings(default_images={}))
        await _start(reconciler, add_test, make_test())

        with pytest.raises(ImageResolutionError):
            await reconciler.reconcile(NS, "smoke")

        assert cluster.created_workers == []
        assert cluster.lock(NS, LOCK) is None

    @pytest.mark.asyncio
    async def test_invariant_violation_keeps_lock(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run"]))
        await reconciler.reconcile(NS, "smoke")
        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.UNKNOWN)

        with pytest.raises(InvariantViolationError):
            await reconciler.reconcile(NS, "smoke")

        assert cluster.lock(NS, LOCK).owner_name == "smoke"


class TestPendingClaim:
    @pytest.mark.asyncio
    async def test_requeues_until_bound(self, settings, make_test):
        cluster = InMemoryCluster(claim_bind_delay=1)
        reconciler = AnsibleTestReconciler(cluster, settings=settings)
        test = make_test()
        cluster.add_workflow(test.to_instance())
        await reconciler.reconcile(NS, "smoke")

        result = await reconciler.reconcile(NS, "smoke")
        assert result.requeue_after == REQUEUE
        assert cluster.created_workers == []
        assert _conditions(cluster).is_unknown(ConditionType.SERVICE_CONFIG_READY)

        await reconciler.reconcile(NS, "smoke")
        assert cluster.created_workers == ["smoke-s00"]


# ── Status ───────────────────────────────────────────────────────────────


class TestStatus:
    @pytest.mark.asyncio
    async def test_patched_on_every_exit(self, cluster, reconciler, make_test, add_test):
        await _start(reconciler, add_test, make_test())
        assert cluster.status_patches == 1

        cluster.put_lock(LockRecord(LOCK, NS, owner_uid="other-uid"))
        await reconciler.reconcile(NS, "smoke")
        assert cluster.status_patches == 2

        cluster.put_lock(LockRecord(LOCK, NS))
        cluster.fail_create_worker = ClusterError("boom")
        with pytest.raises(ClusterError):
            await reconciler.reconcile(NS, "smoke")
        assert cluster.status_patches == 3

    @pytest.mark.asyncio
    async def test_ready_consistent_after_every_reconcile(
        self, cluster, reconciler, make_test, add_test
    ):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run"]))
        _assert_ready_consistent(_conditions(cluster))
        for step in range(2):
            await reconciler.reconcile(NS, "smoke")
            _assert_ready_consistent(_conditions(cluster))
            cluster.set_worker_phase(NS, f"smoke-s{step:02d}", WorkerPhase.SUCCEEDED)
        await reconciler.reconcile(NS, "smoke")
        _assert_ready_consistent(_conditions(cluster))
        assert _conditions(cluster).is_true(ConditionType.READY)

    @pytest.mark.asyncio
    async def test_ready_mirrors_only_while_unknown(
        self, cluster, reconciler, make_test, add_test
    ):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run"]))
        ready = _conditions(cluster).get(ConditionType.READY)
        assert ready.status is ConditionStatus.UNKNOWN

        await reconciler.reconcile(NS, "smoke")
        ready = _conditions(cluster).get(ConditionType.READY)
        assert ready.status is ConditionStatus.FALSE
        assert ready.message == DEPLOYMENT_READY_RUNNING_MESSAGE

        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.FAILED)
        with pytest.raises(StepFailureError):
            await reconciler.reconcile(NS, "smoke")

        conditions = _conditions(cluster)
        assert conditions.get(ConditionType.DEPLOYMENT_READY).reason == "Error"
        ready = conditions.get(ConditionType.READY)
        assert ready.status is ConditionStatus.FALSE
        assert ready.message == DEPLOYMENT_READY_RUNNING_MESSAGE

    @pytest.mark.asyncio
    async def test_stale_ready_true_demoted(self, cluster, make_test, add_test):
        instance = add_test(make_test())
        instance.conditions = ConditionList(initial_conditions())
        instance.conditions.mark_true(ConditionType.READY, "Setup complete")

        async with status_guard(cluster, instance):
            pass

        ready = cluster.workflow(NS, "smoke").conditions.get(ConditionType.READY)
        assert ready.status is ConditionStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_transition_time_kept_while_status_unchanged(
        self, cluster, reconciler, make_test, add_test
    ):
        await _start(reconciler, add_test, make_test(steps=["prepare", "run"]))
        await reconciler.reconcile(NS, "smoke")
        first = _conditions(cluster).get(ConditionType.DEPLOYMENT_READY).last_transition_time

        cluster.set_worker_phase(NS, "smoke-s00", WorkerPhase.SUCCEEDED)
        await reconciler.reconcile(NS, "smoke")

        second = _conditions(cluster).get(ConditionType.DEPLOYMENT_READY)
        assert second.status is ConditionStatus.FALSE
        assert second.last_transition_time == first

    @pytest.mark.asyncio
    async def test_deleted_instance_patch_ignored(self, cluster, make_test, add_test):
        instance = add_test(make_test())
        instance.conditions = ConditionList(initial_conditions())
        cluster.delete_workflow(NS, "smoke")

        async with status_guard(cluster, instance):
            pass

        assert cluster.status_patches == 0

    @pytest.mark.asyncio
    async def test_guard_patches_when_body_raises(self, cluster, make_test, add_test):
        instance = add_test(make_test())

        with pytest.raises(RuntimeError):
            async with status_guard(cluster, instance) as conditions:
                conditions.init(initial_conditions())
                raise RuntimeError("boom")

        assert cluster.status_patches == 1
        assert cluster.workflow(NS, "smoke").conditions.has(ConditionType.DEPLOYMENT_READY)
