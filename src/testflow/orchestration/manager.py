"""Controller manager — the run loop around a reconciler.

Keeps a keyed work queue of ``(namespace, name)`` pairs, runs the
reconciler for every key that is due, and decides when each key comes
back.

.. code-block:: text

    enqueue(ns, name, delay)         duplicate keys coalesce to the earliest due time
         │
    run_once()                       every due key, concurrently, isolated
         ├── ReconcileResult(requeue_after=t)  → due again in t (fixed interval)
         ├── ReconcileResult()                 → dropped until enqueued again
         ├── retryable / uncategorized error   → due again after backoff(attempt)
         └── any other error                   → logged, dropped (terminal)

    run(stop)                        run_once() until ``stop`` is set

One instance's failure never reaches the loop: every error is handled per
key and the other keys keep being processed.

Example::

    manager = ControllerManager(AnsibleTestReconciler(cluster))
    manager.enqueue("openstack", "smoke")
    await manager.run_once()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Protocol

from testflow.core.errors import (
    ErrorCategory,
    TestflowError,
    categorize_error,
    is_retryable,
)
from testflow.core.logging import get_logger
from testflow.core.settings import OperatorSettings, get_settings
from testflow.execution.retry import ExponentialBackoff, RetryStrategy
from testflow.orchestration.reconciler import ReconcileResult

logger = get_logger(__name__)

Key = tuple[str, str]


class Reconciler(Protocol):
    kind: str

    async def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        ...


class ControllerManager:
    """Work queue and run loop for one reconciler."""

    def __init__(
        self,
        reconciler: Reconciler,
        settings: OperatorSettings | None = None,
        *,
        backoff: RetryStrategy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or get_settings()
        self._reconciler = reconciler
        self._backoff = backoff or ExponentialBackoff(
            base_delay=self.settings.backoff_base_seconds,
            max_delay=self.settings.backoff_max_seconds,
        )
        self._clock = clock
        self._due: dict[Key, float] = {}
        self._failures: dict[Key, int] = {}
        self.last_errors: dict[Key, Exception] = {}

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, namespace: str, name: str, delay: float = 0.0) -> None:
        key = (namespace, name)
        due = self._clock() + delay
        current = self._due.get(key)
        if current is None or due < current:
            self._due[key] = due

    def pending(self) -> dict[Key, float]:
        """Due time of every queued key."""
        return dict(self._due)

    def next_due(self) -> float | None:
        return min(self._due.values()) if self._due else None

    def due_keys(self) -> list[Key]:
        now = self._clock()
        return sorted((k for k, due in self._due.items() if due <= now), key=self._due.__getitem__)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def run_once(self) -> int:
        """Reconcile every due key. Returns how many were processed."""
        keys = self.due_keys()
        for key in keys:
            del self._due[key]
        await asyncio.gather(*(self._process(key) for key in keys))
        return len(keys)

    async def _process(self, key: Key) -> None:
        namespace, name = key
        try:
            result = await self._reconciler.reconcile(namespace, name)
        except Exception as exc:
            self._handle_error(key, exc)
            return

        self._failures.pop(key, None)
        self.last_errors.pop(key, None)
        if result.requeue_after is not None:
            self.enqueue(namespace, name, result.requeue_after)

    def _handle_error(self, key: Key, exc: Exception) -> None:
        self.last_errors[key] = exc
        error_info = exc.to_dict() if isinstance(exc, TestflowError) else {
            "error_type": type(exc).__name__,
            "message": str(exc),
        }
        error_info.update(controller=self._reconciler.kind, namespace=key[0], instance=key[1])

        category = categorize_error(exc)
        error_info.setdefault("category", category.value)
        if not is_retryable(exc) and category is not ErrorCategory.UNKNOWN:
            self._failures.pop(key, None)
            logger.error("reconcile_failed_terminal", **error_info)
            return

        attempt = self._failures.get(key, 0)
        if not self._backoff.should_retry(attempt, exc):
            self._failures.pop(key, None)
            logger.error("reconcile_retries_exhausted", attempts=attempt, **error_info)
            return

        delay = self._backoff.next_delay(attempt)
        self._failures[key] = attempt + 1
        self.enqueue(*key, delay=delay)
        logger.warning(
            "reconcile_failed_requeued", attempt=attempt + 1, delay=round(delay, 2), **error_info
        )

    async def run(self, stop: asyncio.Event, poll_interval: float = 1.0) -> None:
        """Process the queue until ``stop`` is set."""
        logger.info("manager_started", controller=self._reconciler.kind)
        while not stop.is_set():
            await self.run_once()
            next_due = self.next_due()
            timeout = poll_interval
            if next_due is not None:
                timeout = max(0.0, min(poll_interval, next_due - self._clock()))
            try:
                await asyncio.wait_for(stop.wait(), timeout=timeout)
            except TimeoutError:
                pass
        logger.info("manager_stopped", controller=self._reconciler.kind)


__all__ = ["ControllerManager", "Reconciler"]
