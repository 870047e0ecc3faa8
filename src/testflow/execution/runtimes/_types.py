"""Worker types for step execution.

This module defines the cluster-facing description of one step worker:

- WorkerSpec: Full spec for a worker (image, env, mounts, placement, ...)
- ResourceRequirements, Toleration, Volume, VolumeMount, SecurityContext
- WorkerPhase: Lifecycle phase observed on the cluster
- Worker: Observed worker object (spec + labels + phase)

Design Notes:
    WorkerSpec is a plain description; the ``ClusterClient`` turns it into
    the platform object.  Names are deterministic (``worker_external_name``)
    so a re-delivered create collides with the existing object instead of
    creating a duplicate.

Architecture:

    .. code-block:: text

        WorkerSpec
        ├── Identity: name, namespace, owner_uid
        ├── What: image, env (ordered)
        ├── Selection: labels, annotations
        ├── Storage: volumes, volume_mounts
        ├── Resources: limits, requests
        ├── Placement: node_selector, tolerations
        ├── Security: run_as_user/group, privileged, capabilities, SELinux level
        └── Policy: restart_policy=Never, active_deadline_seconds
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal


def _utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class WorkerPhase(str, Enum):
    """Phase of a worker as reported by the cluster."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @property
    def is_terminal(self) -> bool:
        """Whether the worker has reached a final phase."""
        return self in (WorkerPhase.SUCCEEDED, WorkerPhase.FAILED)


# ---------------------------------------------------------------------------
# Resource / placement / storage specifications
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResourceRequirements:
    """Resource limits and requests as K8s-style quantity strings.

    Example:
        >>> resources = ResourceRequirements(limits={"cpu": "2", "memory": "4Gi"})
    """

    limits: dict[str, str] = field(default_factory=dict)
    requests: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize non-empty sections."""
        return {k: dict(v) for k, v in {
            "limits": self.limits,
            "requests": self.requests,
        }.items() if v}


@dataclass(frozen=True)
class Toleration:
    key: str = ""
    operator: Literal["Exists", "Equal"] = "Equal"
    value: str = ""
    effect: str = ""
    toleration_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"operator": self.operator}
        if self.key:
            d["key"] = self.key
        if self.value:
            d["value"] = self.value
        if self.effect:
            d["effect"] = self.effect
        if self.toleration_seconds is not None:
            d["tolerationSeconds"] = self.toleration_seconds
        return d


@dataclass(frozen=True)
class Volume:
    """Volume source. Exactly one of the source fields is set."""

    name: str
    secret_name: str | None = None
    config_map_name: str | None = None
    claim_name: str | None = None
    default_mode: int | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name}
        if self.secret_name:
            d["secret"] = {"secretName": self.secret_name}
        elif self.config_map_name:
            d["configMap"] = {"name": self.config_map_name}
        elif self.claim_name:
            d["persistentVolumeClaim"] = {"claimName": self.claim_name}
        if self.default_mode is not None:
            for source in ("secret", "configMap"):
                if source in d:
                    d[source]["defaultMode"] = self.default_mode
        return d


@dataclass(frozen=True)
class VolumeMount:
    name: str
    mount_path: str
    sub_path: str | None = None
    read_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"name": self.name, "mountPath": self.mount_path}
        if self.sub_path:
            d["subPath"] = self.sub_path
        if self.read_only:
            d["readOnly"] = True
        return d


@dataclass(frozen=True)
class SecurityContext:
    run_as_user: int | None = None
    run_as_group: int | None = None
    privileged: bool = False
    allow_privilege_escalation: bool = False
    capabilities_add: tuple[str, ...] = ()
    selinux_level: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "privileged": self.privileged,
            "allowPrivilegeEscalation": self.allow_privilege_escalation,
        }
        if self.run_as_user is not None:
            d["runAsUser"] = self.run_as_user
        if self.run_as_group is not None:
            d["runAsGroup"] = self.run_as_group
        if self.capabilities_add:
            d["capabilities"] = {"add": list(self.capabilities_add)}
        if self.selinux_level:
            d["seLinuxOptions"] = {"level": self.selinux_level}
        return d


# ---------------------------------------------------------------------------
# WorkerSpec
# ---------------------------------------------------------------------------

@dataclass
class WorkerSpec:
    """Full specification for one step worker.

    Example:
        >>> spec = WorkerSpec(
        ...     name="smoke-s00",
        ...     namespace="openstack",
        ...     image="quay.io/podified/ansible-tests:current",
        ...     env={"POD_ANSIBLE_PLAYBOOK": "playbooks/smoke.yaml"},
        ... )
    """

    # === Identity ===
    name: str
    namespace: str
    image: str
    owner_uid: str | None = None

    # === Environment ===
    env: dict[str, str] = field(default_factory=dict)

    # === Selection ===
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    # === Storage ===
    volumes: list[Volume] = field(default_factory=list)
    volume_mounts: list[VolumeMount] = field(default_factory=list)

    # === Resources / placement ===
    resources: ResourceRequirements = field(default_factory=ResourceRequirements)
    node_selector: dict[str, str] = field(default_factory=dict)
    tolerations: list[Toleration] = field(default_factory=list)

    # === Security ===
    security_context: SecurityContext = field(default_factory=SecurityContext)
    service_account: str = "test-operator-runner"

    # === Policy ===
    restart_policy: Literal["Never", "OnFailure", "Always"] = "Never"
    active_deadline_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize in the shape of a pod manifest."""
        container: dict[str, Any] = {
            "name": "ansibletests-container",
            "image": self.image,
            "env": [{"name": k, "value": v} for k, v in self.env.items()],
            "volumeMounts": [m.to_dict() for m in self.volume_mounts],
            "securityContext": self.security_context.to_dict(),
        }
        resources = self.resources.to_dict()
        if resources:
            container["resources"] = resources

        pod_spec: dict[str, Any] = {
            "restartPolicy": self.restart_policy,
            "serviceAccountName": self.service_account,
            "containers": [container],
            "volumes": [v.to_dict() for v in self.volumes],
        }
        if self.node_selector:
            pod_spec["nodeSelector"] = dict(self.node_selector)
        if self.tolerations:
            pod_spec["tolerations"] = [t.to_dict() for t in self.tolerations]
        if self.active_deadline_seconds is not None:
            pod_spec["activeDeadlineSeconds"] = self.active_deadline_seconds

        metadata: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
        }
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.owner_uid:
            metadata["ownerReferences"] = [{"uid": self.owner_uid, "controller": True}]

        return {"metadata": metadata, "spec": pod_spec}

    def spec_hash(self) -> str:
        """SHA-256 hash of the canonical spec."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class Worker:
    """A worker as observed on the cluster."""

    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    phase: WorkerPhase = WorkerPhase.PENDING
    spec: WorkerSpec | None = None
    owner_uid: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "name": self.name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
            "phase": self.phase.value,
            "created_at": self.created_at.isoformat(),
        }
        if self.message:
            d["message"] = self.message
        return d


# ---------------------------------------------------------------------------
# Spec redaction
# ---------------------------------------------------------------------------

_SENSITIVE_ENV_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(?i)(password|secret|token|key|credential|auth)"),
]

_REDACTED = "***REDACTED***"


def redact_spec(spec: WorkerSpec) -> dict[str, Any]:
    """Create a redacted copy of the spec safe for logs.

    Env var values whose name matches a sensitive pattern are masked.
    The original spec is not modified.

    Example:
        >>> spec = WorkerSpec(
        ...     name="w", namespace="ns", image="x",
        ...     env={"API_TOKEN": "hunter2", "POD_DEBUG": "true"},
        ... )
        >>> redact_spec(spec)["spec"]["containers"][0]["env"][0]["value"]
        '***REDACTED***'
    """
    d = spec.to_dict()
    for container in d["spec"]["containers"]:
        for item in container["env"]:
            if any(p.search(item["name"]) for p in _SENSITIVE_ENV_PATTERNS):
                item["value"] = _REDACTED
    return d


# ---------------------------------------------------------------------------
# Deterministic naming
# ---------------------------------------------------------------------------

_SLUG_PATTERN = re.compile(r"[^a-z0-9-]")


def worker_external_name(instance_name: str, step: int) -> str:
    """Deterministic worker name for (instance, step).

    Format: ``{slugified_instance}-s{step:02d}``
    Max length: 63 chars (K8s name constraint)

    Example:
        >>> worker_external_name("smoke", 0)
        'smoke-s00'
        >>> worker_external_name("Nightly Run!", 12)
        'nightly-run-s12'
    """
    suffix = f"-s{step:02d}"
    slug = _SLUG_PATTERN.sub("-", instance_name.lower()).strip("-") or "workflow"
    slug = slug[: 63 - len(suffix)].rstrip("-")
    return f"{slug}{suffix}"
