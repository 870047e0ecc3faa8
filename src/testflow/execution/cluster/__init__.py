"""Cluster collaborator: protocol, record types, in-memory implementation."""

from testflow.execution.cluster._types import (
    ClaimPhase,
    ClusterClient,
    LockRecord,
    VolumeClaim,
    VolumeClaimSpec,
    WorkflowInstance,
)
from testflow.execution.cluster.memory import InMemoryCluster

__all__ = [
    "ClaimPhase",
    "ClusterClient",
    "InMemoryCluster",
    "LockRecord",
    "VolumeClaim",
    "VolumeClaimSpec",
    "WorkflowInstance",
]
