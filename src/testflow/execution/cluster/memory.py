"""In-memory cluster for tests, local simulation, and the playground.

``InMemoryCluster`` implements ``ClusterClient`` with the semantics the
reconciler relies on:

- every write bumps a cluster-wide resource version
- lock writes are conditional (create-if-absent, compare-and-set on version)
- reads return copies, so callers hold snapshots that can go stale
- deleting a workflow instance cascades to the workers, claim and lock it owns

.. code-block:: text

    InMemoryCluster behavior:

    create_worker(spec)       → Worker(phase=Pending)
    set_worker_phase(...)     → drive the worker lifecycle from the test
    ensure_volume_claim(spec) → Bound after ``claim_bind_delay`` observations

    Inject failures:
      cluster.fail_create_worker = ClusterError("quota")  → create_worker raises it
      cluster.fail_release = True                      → delete_lock raises ClusterError
      cluster.fail_patch_status = True                     → patch_workflow_status raises

    Track usage:
      cluster.created_workers   → names in creation order
      cluster.status_patches    → number of status patches

Example:
    >>> cluster = InMemoryCluster()
    >>> cluster.add_workflow(AnsibleTest.from_yaml(text).to_instance())
    >>> await reconciler.reconcile("openstack", "smoke")
    >>> cluster.set_worker_phase("openstack", "smoke-s00", WorkerPhase.SUCCEEDED)
"""

from __future__ import annotations

import asyncio
import copy
import threading
from dataclasses import replace

from testflow.core.errors import (
    AlreadyExistsError,
    ClusterError,
    ConflictError,
    NotFoundError,
)
from testflow.execution.cluster._types import (
    ClaimPhase,
    LockRecord,
    VolumeClaim,
    VolumeClaimSpec,
    WorkflowInstance,
)
from testflow.execution.runtimes._types import Worker, WorkerPhase, WorkerSpec

_Key = tuple[str, str]


class InMemoryCluster:
    """Thread-safe in-memory implementation of ``ClusterClient``."""

    def __init__(self, *, claim_bind_delay: int = 0) -> None:
        self._mutex = threading.Lock()
        self._version = 0

        self._workflows: dict[_Key, WorkflowInstance] = {}
        self._workers: dict[_Key, Worker] = {}
        self._claims: dict[_Key, VolumeClaim] = {}
        self._claim_observations: dict[_Key, int] = {}
        self._secrets: set[_Key] = set()
        self._locks: dict[_Key, LockRecord] = {}
        self._lock_owner_refs: dict[_Key, str] = {}

        self.claim_bind_delay = claim_bind_delay

        # Inject failures
        self.fail_create_worker: Exception | None = None
        self.fail_release: bool = False
        self.fail_patch_status: bool = False

        # Track usage
        self.created_workers: list[str] = []
        self.status_patches: int = 0

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    # ------------------------------------------------------------------
    # Workflow instances
    # ------------------------------------------------------------------

    def add_workflow(self, instance: WorkflowInstance) -> None:
        with self._mutex:
            self._workflows[instance.key] = copy.deepcopy(instance)

    def delete_workflow(self, namespace: str, name: str) -> None:
        """Delete an instance and everything it owns."""
        with self._mutex:
            instance = self._workflows.pop((namespace, name), None)
            if instance is None:
                return
            uid = instance.uid
            self._workers = {
                k: w for k, w in self._workers.items() if w.owner_uid != uid
            }
            self._claims = {
                k: c for k, c in self._claims.items() if c.spec.owner_uid != uid
            }
            for key, owner_uid in list(self._lock_owner_refs.items()):
                if owner_uid == uid:
                    self._locks.pop(key, None)
                    del self._lock_owner_refs[key]

    def workflow(self, namespace: str, name: str) -> WorkflowInstance | None:
        """Synchronous read for tests and the playground."""
        with self._mutex:
            instance = self._workflows.get((namespace, name))
            return copy.deepcopy(instance) if instance is not None else None

    async def get_workflow(self, namespace: str, name: str) -> WorkflowInstance | None:
        await asyncio.sleep(0)
        return self.workflow(namespace, name)

    async def patch_workflow_status(self, instance: WorkflowInstance) -> None:
        await asyncio.sleep(0)
        with self._mutex:
            if self.fail_patch_status:
                raise ClusterError("Injected status patch failure").with_context(
                    namespace=instance.namespace, instance=instance.name
                )
            stored = self._workflows.get(instance.key)
            if stored is None or stored.uid != instance.uid:
                raise NotFoundError(
                    f"AnsibleTest {instance.namespace}/{instance.name} not found"
                )
            stored.conditions = (
                instance.conditions.deep_copy() if instance.conditions is not None else None
            )
            self.status_patches += 1

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def list_workers(self, namespace: str, labels: dict[str, str]) -> list[Worker]:
        await asyncio.sleep(0)
        with self._mutex:
            return [
                copy.deepcopy(w)
                for (ns, _), w in self._workers.items()
                if ns == namespace
                and all(w.labels.get(k) == v for k, v in labels.items())
            ]

    async def create_worker(self, spec: WorkerSpec) -> Worker:
        await asyncio.sleep(0)
        with self._mutex:
            if self.fail_create_worker is not None:
                raise self.fail_create_worker
            key = (spec.namespace, spec.name)
            if key in self._workers:
                raise AlreadyExistsError(f"Worker {spec.namespace}/{spec.name} already exists")
            worker = Worker(
                name=spec.name,
                namespace=spec.namespace,
                labels=dict(spec.labels),
                phase=WorkerPhase.PENDING,
                spec=copy.deepcopy(spec),
                owner_uid=spec.owner_uid,
            )
            self._workers[key] = worker
            self.created_workers.append(spec.name)
            self._next_version()
            return copy.deepcopy(worker)

    def set_worker_phase(
        self,
        namespace: str,
        name: str,
        phase: WorkerPhase,
        message: str | None = None,
    ) -> None:
        with self._mutex:
            worker = self._workers.get((namespace, name))
            if worker is None:
                raise NotFoundError(f"Worker {namespace}/{name} not found")
            worker.phase = phase
            worker.message = message
            self._next_version()

    def workers(self, namespace: str | None = None) -> list[Worker]:
        with self._mutex:
            return [
                copy.deepcopy(w)
                for (ns, _), w in self._workers.items()
                if namespace is None or ns == namespace
            ]

    # ------------------------------------------------------------------
    # Secrets
    # ------------------------------------------------------------------

    def add_secret(self, namespace: str, name: str) -> None:
        with self._mutex:
            self._secrets.add((namespace, name))

    async def secret_exists(self, namespace: str, name: str) -> bool:
        await asyncio.sleep(0)
        with self._mutex:
            return (namespace, name) in self._secrets

    # ------------------------------------------------------------------
    # Volume claims
    # ------------------------------------------------------------------

    async def ensure_volume_claim(self, spec: VolumeClaimSpec) -> VolumeClaim:
        await asyncio.sleep(0)
        with self._mutex:
            key = (spec.namespace, spec.name)
            claim = self._claims.get(key)
            if claim is None:
                claim = VolumeClaim(spec=spec)
                self._claims[key] = claim
                self._claim_observations[key] = 0
                self._next_version()
            if claim.phase is ClaimPhase.PENDING:
                if self._claim_observations[key] >= self.claim_bind_delay:
                    claim.phase = ClaimPhase.BOUND
                else:
                    self._claim_observations[key] += 1
            return copy.deepcopy(claim)

    def set_claim_phase(self, namespace: str, name: str, phase: ClaimPhase) -> None:
        with self._mutex:
            claim = self._claims.get((namespace, name))
            if claim is None:
                raise NotFoundError(f"Claim {namespace}/{name} not found")
            claim.phase = phase

    def claims(self) -> list[VolumeClaim]:
        with self._mutex:
            return [copy.deepcopy(c) for c in self._claims.values()]

    # ------------------------------------------------------------------
    # Lock record
    # ------------------------------------------------------------------

    def _owner_uid_for(self, record: LockRecord) -> str | None:
        for instance in self._workflows.values():
            if instance.uid == record.owner_uid:
                return instance.uid
        return None

    async def get_lock(self, namespace: str, name: str) -> LockRecord | None:
        await asyncio.sleep(0)
        with self._mutex:
            return self._locks.get((namespace, name))

    async def create_lock(self, record: LockRecord) -> LockRecord:
        await asyncio.sleep(0)
        with self._mutex:
            key = (record.namespace, record.name)
            if key in self._locks:
                raise AlreadyExistsError(f"Lock {record.namespace}/{record.name} already exists")
            stored = replace(record, version=self._next_version())
            self._locks[key] = stored
            self._set_lock_owner_ref(key, stored)
            return stored

    async def replace_lock(self, record: LockRecord, expected_version: int) -> LockRecord:
        await asyncio.sleep(0)
        with self._mutex:
            key = (record.namespace, record.name)
            current = self._locks.get(key)
            if current is None:
                raise NotFoundError(f"Lock {record.namespace}/{record.name} not found")
            if current.version != expected_version:
                raise ConflictError(
                    f"Lock {record.namespace}/{record.name} changed "
                    f"(version {current.version}, expected {expected_version})",
                    expected_version=expected_version,
                )
            stored = replace(record, version=self._next_version())
            self._locks[key] = stored
            self._set_lock_owner_ref(key, stored)
            return stored

    async def delete_lock(self, namespace: str, name: str, expected_version: int) -> None:
        await asyncio.sleep(0)
        with self._mutex:
            if self.fail_release:
                raise ClusterError("Injected lock delete failure").with_context(
                    namespace=namespace, resource=name
                )
            key = (namespace, name)
            current = self._locks.get(key)
            if current is None:
                raise NotFoundError(f"Lock {namespace}/{name} not found")
            if current.version != expected_version:
                raise ConflictError(
                    f"Lock {namespace}/{name} changed "
                    f"(version {current.version}, expected {expected_version})",
                    expected_version=expected_version,
                )
            del self._locks[key]
            self._lock_owner_refs.pop(key, None)
            self._next_version()

    def _set_lock_owner_ref(self, key: _Key, record: LockRecord) -> None:
        owner_uid = self._owner_uid_for(record) if record.is_owned else None
        if owner_uid:
            self._lock_owner_refs[key] = owner_uid
        else:
            self._lock_owner_refs.pop(key, None)

    def put_lock(self, record: LockRecord) -> LockRecord:
        """Write a lock record unconditionally (test setup, manual intervention)."""
        with self._mutex:
            key = (record.namespace, record.name)
            stored = replace(record, version=self._next_version())
            self._locks[key] = stored
            self._set_lock_owner_ref(key, stored)
            return stored

    def lock(self, namespace: str, name: str) -> LockRecord | None:
        with self._mutex:
            return self._locks.get((namespace, name))
