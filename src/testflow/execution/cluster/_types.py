"""Cluster collaborator types and protocol.

The reconciler never talks to a cluster API directly.  Everything it
needs (read the workflow instance, list and create workers, probe
secrets, ensure the logs claim, read and write the lock record) goes
through ``ClusterClient``.

.. code-block:: text

    ClusterClient Protocol
    ┌───────────────────────────────────────────────────────────────┐
    │  get_workflow(ns, name)          → WorkflowInstance | None     │
    │  patch_workflow_status(inst)     → None                        │
    │  list_workers(ns, labels)        → list[Worker]                │
    │  create_worker(spec)             → Worker  (AlreadyExistsError)│
    │  secret_exists(ns, name)         → bool                        │
    │  ensure_volume_claim(spec)       → VolumeClaim                 │
    │  get_lock(ns, name)              → LockRecord | None           │
    │  create_lock(record)             → LockRecord (AlreadyExists)  │
    │  replace_lock(record, version)   → LockRecord (ConflictError)  │
    │  delete_lock(ns, name, version)  → None (ConflictError)        │
    └───────────────────────────────────────────────────────────────┘

Every write of the lock record is a single conditional operation:
create-if-absent, replace-if-version-matches, delete-if-version-matches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from testflow.execution.runtimes._types import Worker, WorkerSpec
from testflow.status.conditions import ConditionList

if TYPE_CHECKING:
    from testflow.orchestration.workflow_yaml import AnsibleTestSpec


@dataclass
class WorkflowInstance:
    """A workflow instance as stored on the cluster.

    ``conditions`` is ``None`` until the first reconcile initializes it.
    """

    name: str
    namespace: str
    uid: str
    spec: AnsibleTestSpec
    conditions: ConditionList | None = None
    labels: dict[str, str] = field(default_factory=dict)
    generation: int = 1

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)


@dataclass(frozen=True)
class LockRecord:
    """The cluster-wide lock record.

    ``owner_uid == ""`` means the record exists but nobody holds it.
    ``version`` is assigned by the cluster on every write.
    """

    name: str
    namespace: str
    owner_uid: str = ""
    owner_name: str = ""
    version: int = 0

    @property
    def is_owned(self) -> bool:
        return bool(self.owner_uid)


class ClaimPhase(str, Enum):
    PENDING = "Pending"
    BOUND = "Bound"
    LOST = "Lost"


@dataclass(frozen=True)
class VolumeClaimSpec:
    name: str
    namespace: str
    storage_class: str
    size: str = "1Gi"
    access_modes: tuple[str, ...] = ("ReadWriteOnce",)
    labels: dict[str, str] = field(default_factory=dict)
    owner_uid: str | None = None


@dataclass
class VolumeClaim:
    spec: VolumeClaimSpec
    phase: ClaimPhase = ClaimPhase.PENDING

    @property
    def name(self) -> str:
        return self.spec.name


@runtime_checkable
class ClusterClient(Protocol):
    """Protocol for the cluster API used by workflow controllers.

    All methods are async.  Implementations raise ``ClusterError`` (or a
    subclass) for API failures and never return partially applied writes.
    """

    async def get_workflow(self, namespace: str, name: str) -> WorkflowInstance | None:
        """Fetch a fresh snapshot of the instance, ``None`` if it does not exist."""
        ...

    async def patch_workflow_status(self, instance: WorkflowInstance) -> None:
        """Persist ``instance.conditions``. Raises NotFoundError if the instance is gone."""
        ...

    async def list_workers(self, namespace: str, labels: dict[str, str]) -> list[Worker]:
        """Workers in ``namespace`` carrying every given label."""
        ...

    async def create_worker(self, spec: WorkerSpec) -> Worker:
        """Create a worker. Raises AlreadyExistsError when the name is taken."""
        ...

    async def secret_exists(self, namespace: str, name: str) -> bool:
        ...

    async def ensure_volume_claim(self, spec: VolumeClaimSpec) -> VolumeClaim:
        """Create the claim if absent and return its current state."""
        ...

    async def get_lock(self, namespace: str, name: str) -> LockRecord | None:
        ...

    async def create_lock(self, record: LockRecord) -> LockRecord:
        """Create the lock record. Raises AlreadyExistsError if it exists."""
        ...

    async def replace_lock(self, record: LockRecord, expected_version: int) -> LockRecord:
        """Overwrite the record if its version still equals ``expected_version``.

        Raises ConflictError on version mismatch, NotFoundError if absent.
        """
        ...

    async def delete_lock(self, namespace: str, name: str, expected_version: int) -> None:
        """Delete the record if its version still equals ``expected_version``.

        Raises ConflictError on version mismatch, NotFoundError if absent.
        """
        ...
