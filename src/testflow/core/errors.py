"""
Structured error types for the testflow operator.

Every failure the operator can hit falls into one of a handful of classes
that decide what happens next: requeue with the fixed interval, requeue
with platform backoff, or stop and wait for a human.  ``TestflowError``
and its subclasses carry that decision with them instead of leaving it to
string matching at the call site.

Manifesto:
    - **Typed Error Hierarchy:** One class per outcome class of the taxonomy
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry namespace/instance/step for logging
    - **Error Chaining:** Preserve the platform exception as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       TestflowError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  NotFoundError      TransientError        ConfigError            │
        │  (NOT_FOUND)        (retryable=True)      (CONFIG)               │
        │                         │                     │                  │
        │                     ConflictError        ImageResolutionError    │
        │                     VolumeNotReadyError                          │
        │                                                                  │
        │  ClusterError       OrchestrationError                           │
        │  (CLUSTER)          (ORCHESTRATION)                              │
        │       │                  │                                       │
        │  AlreadyExistsError  InvariantViolationError                     │
        │                      StepFailureError                            │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = TransientError("lock record changed underneath us")
    >>> error.retryable
    True

    >>> error = StepFailureError("step 1 failed").with_context(
    ...     namespace="openstack", instance="smoke", step=1
    ... )
    >>> error.context.instance
    'smoke'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context,
    testflow, operator
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing.

    Attributes:
        NOT_FOUND: Object deleted or never created
        TRANSIENT: Contention or not-yet-ready resources
        CLUSTER: Cluster API failures (submission, patch, list)
        CONFIG: Unresolvable image or parameter
        ORCHESTRATION: Workflow state problems (failed step, lost lock)
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    NOT_FOUND = "NOT_FOUND"
    TRANSIENT = "TRANSIENT"
    CLUSTER = "CLUSTER"
    CONFIG = "CONFIG"
    ORCHESTRATION = "ORCHESTRATION"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Attributes:
        namespace: Namespace of the workflow instance
        instance: Name of the workflow instance
        step: Workflow step index, if the error concerns one step
        resource: Name of the cluster object involved (worker, claim, lock)
        metadata: Additional key-value pairs
    """

    namespace: str | None = None
    instance: str | None = None
    step: int | None = None
    resource: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["namespace", "instance", "step", "resource"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TestflowError(Exception):
    """
    Base exception for all testflow errors.

    All TestflowError instances carry:
    - **category:** ErrorCategory enum for classification and routing
    - **retryable:** Whether the controller manager may re-run the reconcile
    - **context:** ErrorContext with structured metadata
    - **cause:** Optional underlying exception for chaining

    Subclasses set ``default_category`` and ``default_retryable``.

    Examples:
        >>> error = TestflowError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    # Keeps pytest from collecting the class because of its name.
    __test__ = False

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TestflowError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ClusterError("create failed").with_context(
                namespace="openstack", resource="smoke-s00"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# NOT FOUND
# =============================================================================


class NotFoundError(TestflowError):
    """Object does not exist (deleted concurrently or never created)."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


# =============================================================================
# TRANSIENT ERRORS (Retryable)
# =============================================================================


class TransientError(TestflowError):
    """
    Temporary condition that resolves by waiting.

    Lock contention, a volume claim that has not bound yet, a worker that is
    still pending.  The reconciler turns these into a fixed-interval requeue;
    they never reach the user as a failure.
    """

    default_category = ErrorCategory.TRANSIENT
    default_retryable = True


class ConflictError(TransientError):
    """Optimistic concurrency check failed (stale resource version)."""

    def __init__(self, message: str, *, expected_version: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expected_version = expected_version


class VolumeNotReadyError(TransientError):
    """Logs volume claim exists but is not bound yet."""

    pass


# =============================================================================
# CLUSTER ERRORS
# =============================================================================


class ClusterError(TestflowError):
    """Cluster API call failed.

    Retryable by default: the manager requeues with platform backoff.
    """

    default_category = ErrorCategory.CLUSTER
    default_retryable = True


class AlreadyExistsError(ClusterError):
    """Create was rejected because an object with that name exists."""

    default_retryable = False


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(TestflowError):
    """Configuration could not be resolved. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class ImageResolutionError(ConfigError):
    """No container image for a step: no override and no platform default."""

    def __init__(self, service_name: str, **kwargs: Any):
        self.service_name = service_name
        super().__init__(f"No container image configured for service: {service_name}", **kwargs)


# =============================================================================
# ORCHESTRATION ERRORS
# =============================================================================


class OrchestrationError(TestflowError):
    """Workflow state error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class InvariantViolationError(OrchestrationError):
    """Observed state contradicts what the workflow must look like.

    Lost lock while believed held, missing predecessor worker, a worker
    for a step beyond the workflow.  Needs intervention.
    """

    pass


class StepFailureError(OrchestrationError):
    """A step's worker finished in the Failed phase. Terminal for the workflow."""

    def __init__(self, step: int, worker_name: str | None = None, **kwargs: Any):
        self.step = step
        self.worker_name = worker_name
        message = f"Workflow step {step} failed"
        if worker_name:
            message = f"{message} (worker {worker_name})"
        super().__init__(message, **kwargs)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, TestflowError):
        return error.retryable
    retryable_types = (
        ConnectionError,
        ConnectionResetError,
        ConnectionRefusedError,
        BrokenPipeError,
        OSError,
    )
    return isinstance(error, retryable_types)


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, TestflowError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.CLUSTER
    if isinstance(error, (KeyError, AttributeError, ValueError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "TestflowError",
    "NotFoundError",
    "TransientError",
    "ConflictError",
    "VolumeNotReadyError",
    "ClusterError",
    "AlreadyExistsError",
    "ConfigError",
    "ImageResolutionError",
    "OrchestrationError",
    "InvariantViolationError",
    "StepFailureError",
    "is_retryable",
    "categorize_error",
]
