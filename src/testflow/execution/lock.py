"""Exclusive execution lock — one workflow run at a time.

Step workers of different workflow instances compete for the same scarce
external resource (the cloud under test), so only one instance may have
workers running at any moment.  ``ExclusiveLock`` serializes them through
a single lock record stored on the cluster.

ARCHITECTURE
────────────
::

    ExclusiveLock(cluster, name, namespace)
      ├── .acquire(owner_uid, owner_name) ─ non-blocking, compare-and-set
      ├── .release(owner_uid)             ─ delete if owned by caller
      ├── .holder()                       ─ current owner record, if any
      └── .is_locked()                    ─ check without acquiring

    acquire:
      no record          → create_lock              → ACQUIRED
      owner == caller    →                          → ALREADY_HELD_BY_SELF
      owned by another   →                          → HELD_BY_OTHER
      record, no owner   → replace_lock(version)    → ACQUIRED
      create/replace lost the race → re-read once   → HELD_BY_OTHER
                                                      (or ALREADY_HELD_BY_SELF)

    release:
      owner == caller    → delete_lock(version)     → RELEASED
      otherwise          →                          → NOT_HELD_BY_SELF

Every write is one conditional cluster operation; contention is reported
as a result value, never by waiting.  There is no expiry: a holder that
crashes keeps the lock until someone deletes the record or its owning
workflow instance.

Example::

    lock = ExclusiveLock(cluster, "test-operator-lock", "openstack")
    if await lock.acquire(instance.uid, instance.name) is AcquireResult.HELD_BY_OTHER:
        return requeue()
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum

from testflow.core.errors import AlreadyExistsError, ConflictError, NotFoundError
from testflow.core.logging import get_logger
from testflow.execution.cluster import ClusterClient, LockRecord

logger = get_logger(__name__)


class AcquireResult(str, Enum):
    ACQUIRED = "acquired"
    ALREADY_HELD_BY_SELF = "already_held_by_self"
    HELD_BY_OTHER = "held_by_other"

    @property
    def held(self) -> bool:
        """Whether the caller owns the lock after the call."""
        return self is not AcquireResult.HELD_BY_OTHER


class ReleaseResult(str, Enum):
    RELEASED = "released"
    NOT_HELD_BY_SELF = "not_held_by_self"


class ExclusiveLock:
    """Cluster-wide mutex backed by a versioned lock record."""

    def __init__(self, cluster: ClusterClient, name: str, namespace: str):
        self._cluster = cluster
        self.name = name
        self.namespace = namespace

    async def acquire(self, owner_uid: str, owner_name: str = "") -> AcquireResult:
        """Try to take the lock for ``owner_uid`` without waiting.

        Re-acquiring a lock the caller already holds succeeds with
        ``ALREADY_HELD_BY_SELF``.
        """
        record = await self._cluster.get_lock(self.namespace, self.name)

        if record is None:
            try:
                await self._cluster.create_lock(
                    LockRecord(
                        name=self.name,
                        namespace=self.namespace,
                        owner_uid=owner_uid,
                        owner_name=owner_name,
                    )
                )
            except AlreadyExistsError:
                return await self._after_lost_race(owner_uid)
            logger.info("lock_acquired", lock=self.name, owner=owner_name or owner_uid)
            return AcquireResult.ACQUIRED

        if record.owner_uid == owner_uid:
            return AcquireResult.ALREADY_HELD_BY_SELF

        if record.is_owned:
            logger.debug(
                "lock_held_by_other", lock=self.name, holder=record.owner_name or record.owner_uid
            )
            return AcquireResult.HELD_BY_OTHER

        try:
            await self._cluster.replace_lock(
                replace(record, owner_uid=owner_uid, owner_name=owner_name),
                expected_version=record.version,
            )
        except (ConflictError, NotFoundError):
            return await self._after_lost_race(owner_uid)
        logger.info("lock_acquired", lock=self.name, owner=owner_name or owner_uid)
        return AcquireResult.ACQUIRED

    async def _after_lost_race(self, owner_uid: str) -> AcquireResult:
        record = await self._cluster.get_lock(self.namespace, self.name)
        if record is not None and record.owner_uid == owner_uid:
            return AcquireResult.ALREADY_HELD_BY_SELF
        logger.debug("lock_contended", lock=self.name)
        return AcquireResult.HELD_BY_OTHER

    async def release(self, owner_uid: str) -> ReleaseResult:
        """Drop the lock if ``owner_uid`` holds it.

        Raises:
            ConflictError: The record changed between read and delete.
        """
        record = await self._cluster.get_lock(self.namespace, self.name)
        if record is None or record.owner_uid != owner_uid:
            logger.warning(
                "lock_not_held_by_self",
                lock=self.name,
                holder=(record.owner_name or record.owner_uid) if record else None,
            )
            return ReleaseResult.NOT_HELD_BY_SELF

        try:
            await self._cluster.delete_lock(
                self.namespace, self.name, expected_version=record.version
            )
        except NotFoundError:
            return ReleaseResult.NOT_HELD_BY_SELF
        logger.info("lock_released", lock=self.name, owner=record.owner_name or owner_uid)
        return ReleaseResult.RELEASED

    async def holder(self) -> LockRecord | None:
        """The owning record, or ``None`` when nobody holds the lock."""
        record = await self._cluster.get_lock(self.namespace, self.name)
        if record is None or not record.is_owned:
            return None
        return record

    async def is_locked(self) -> bool:
        return await self.holder() is not None
