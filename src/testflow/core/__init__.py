"""Testflow Core -- errors, logging, and settings shared by every controller.

Modules:
    errors.py      Structured error hierarchy (TestflowError, TransientError, ...)
    logging.py     structlog configuration and scoped log context
    settings.py    OperatorSettings (pydantic-settings, ``TESTFLOW_`` prefix)
"""

from testflow.core.errors import (
    AlreadyExistsError,
    ClusterError,
    ConfigError,
    ConflictError,
    ErrorCategory,
    ErrorContext,
    ImageResolutionError,
    InvariantViolationError,
    NotFoundError,
    OrchestrationError,
    StepFailureError,
    TestflowError,
    TransientError,
    VolumeNotReadyError,
    categorize_error,
    is_retryable,
)
from testflow.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)
from testflow.core.settings import OperatorSettings, get_settings, reset_settings

__all__ = [
    # Errors
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
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    # Settings
    "OperatorSettings",
    "get_settings",
    "reset_settings",
]
