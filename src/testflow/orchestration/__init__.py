"""Testflow Orchestration -- workflow definitions and the AnsibleTest controller.

Modules:
    workflow_yaml.py   AnsibleTest pydantic models (YAML in, WorkflowInstance out)
    overrides.py       Per-step parameter override resolution
    next_action.py     Pure evaluator: observed workers → next action
    step_executor.py   Environment + WorkerSpec for one step
    toolkit.py         Shared controller capabilities (lock, claim, submit, image)
    reconciler.py      AnsibleTestReconciler and the status guard
    manager.py         Work queue and run loop with platform backoff
    playground.py      Cycle-by-cycle simulation on the in-memory cluster
"""

from testflow.orchestration.workflow_yaml import (
    AnsibleTest,
    AnsibleTestParameters,
    AnsibleTestSpec,
    ResourcesSpec,
    StepOverride,
    TolerationSpec,
)
from testflow.orchestration.overrides import (
    EffectiveStepParameters,
    OverridableField,
    ValueKind,
    resolve,
    resolve_step,
)
from testflow.orchestration.step_executor import AnsibleStepExecutor
from testflow.orchestration.next_action import Decision, NextAction, is_last_step, next_action
from testflow.orchestration.toolkit import ClusterToolkit, ControllerToolkit
from testflow.orchestration.reconciler import AnsibleTestReconciler, ReconcileResult, status_guard
from testflow.orchestration.manager import ControllerManager
from testflow.orchestration.playground import CycleSnapshot, PlaygroundReport, WorkflowPlayground

__all__ = [
    # Definitions
    "AnsibleTest",
    "AnsibleTestParameters",
    "AnsibleTestSpec",
    "ResourcesSpec",
    "StepOverride",
    "TolerationSpec",
    # Resolution
    "EffectiveStepParameters",
    "OverridableField",
    "ValueKind",
    "resolve",
    "resolve_step",
    # Decisions
    "Decision",
    "NextAction",
    "is_last_step",
    "next_action",
    # Controller
    "AnsibleStepExecutor",
    "AnsibleTestReconciler",
    "ClusterToolkit",
    "ControllerManager",
    "ControllerToolkit",
    "ReconcileResult",
    "status_guard",
    # Simulation
    "CycleSnapshot",
    "PlaygroundReport",
    "WorkflowPlayground",
]
