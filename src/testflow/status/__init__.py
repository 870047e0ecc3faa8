"""Status reporting for workflow instances."""

from testflow.status.conditions import (
    DEPLOYMENT_READY_ERROR_MESSAGE,
    DEPLOYMENT_READY_INIT_MESSAGE,
    DEPLOYMENT_READY_MESSAGE,
    DEPLOYMENT_READY_RUNNING_MESSAGE,
    READY_INIT_MESSAGE,
    READY_MESSAGE,
    SERVICE_CONFIG_READY_INIT_MESSAGE,
    SERVICE_CONFIG_READY_MESSAGE,
    Condition,
    ConditionList,
    ConditionReason,
    ConditionStatus,
    ConditionType,
    Severity,
    false_condition,
    initial_conditions,
    true_condition,
    unknown_condition,
)

__all__ = [
    "Condition",
    "ConditionList",
    "ConditionReason",
    "ConditionStatus",
    "ConditionType",
    "Severity",
    "false_condition",
    "initial_conditions",
    "true_condition",
    "unknown_condition",
    "READY_INIT_MESSAGE",
    "READY_MESSAGE",
    "SERVICE_CONFIG_READY_INIT_MESSAGE",
    "SERVICE_CONFIG_READY_MESSAGE",
    "DEPLOYMENT_READY_INIT_MESSAGE",
    "DEPLOYMENT_READY_RUNNING_MESSAGE",
    "DEPLOYMENT_READY_MESSAGE",
    "DEPLOYMENT_READY_ERROR_MESSAGE",
]
