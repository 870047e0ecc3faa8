"""Pydantic models for AnsibleTest workflow definitions.

An AnsibleTest carries a base set of parameters and an ordered ``workflow``
list.  Each workflow entry is one step and may override any subset of
the base parameters; fields it leaves out fall back to the base.

Usage::

    from testflow.orchestration.workflow_yaml import AnsibleTest

    test = AnsibleTest.from_yaml_file("smoke.yaml")
    instance = test.to_instance()

Example YAML::

    apiVersion: test.openstack.org/v1beta1
    kind: AnsibleTest
    metadata:
      name: smoke
      namespace: openstack
    spec:
      containerImage: quay.io/podified/ansible-tests:current
      ansibleGitRepo: https://github.com/example/ci-playbooks
      ansiblePlaybookPath: playbooks/smoke.yaml
      storageClass: local-storage
      workflow:
        - stepName: prepare
          ansibleExtraVars: "--extra-vars prepare=true"
        - stepName: run
          containerImage: quay.io/podified/ansible-tests:debug
          debug: true

Tags:
    testflow, orchestration, yaml, declarative, pydantic
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from testflow.execution.cluster import WorkflowInstance
from testflow.status.conditions import ConditionList

_DNS_LABEL = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class TolerationSpec(_CamelModel):
    """Taint toleration for step workers."""

    key: str = ""
    operator: Literal["Exists", "Equal"] = "Equal"
    value: str = ""
    effect: Literal["", "NoSchedule", "PreferNoSchedule", "NoExecute"] = ""
    toleration_seconds: int | None = None


class ResourcesSpec(_CamelModel):
    """Compute resource limits and requests (quantity strings, e.g. ``"500m"``, ``"2Gi"``)."""

    limits: dict[str, str] = Field(default_factory=dict)
    requests: dict[str, str] = Field(default_factory=dict)


class AnsibleTestParameters(_CamelModel):
    """Base parameters of an AnsibleTest.

    Fields
    ──────
    workload_ssh_key_secret_name : Secret holding the workload SSH key (optional)
    compute_ssh_key_secret_name  : Secret holding the compute nodes' SSH key
    container_image              : Worker image; empty = platform default
    ansible_*                    : Playbook source, path, inventory, vars, collections
    debug                        : Keep the worker alive for inspection
    privileged                   : Run the worker privileged
    storage_class                : Storage class of the logs volume claim
    node_selector / tolerations  : Placement constraints
    selinux_level                : SELinux level of the worker
    resources                    : Resource limits and requests
    active_deadline_seconds      : Hard time limit per worker (None = none)
    """

    workload_ssh_key_secret_name: str = Field(default="", alias="workloadSSHKeySecretName")
    compute_ssh_key_secret_name: str = Field(
        default="dataplane-ansible-ssh-private-key-secret",
        alias="computeSSHKeySecretName",
    )
    container_image: str = ""
    ansible_extra_vars: str = ""
    ansible_var_files: str = ""
    ansible_inventory: str = ""
    ansible_git_repo: str = ""
    ansible_playbook_path: str = ""
    ansible_collections: str = ""
    debug: bool = False
    privileged: bool = False
    storage_class: str = "local-storage"
    node_selector: dict[str, str] = Field(default_factory=dict)
    tolerations: list[TolerationSpec] = Field(default_factory=list)
    selinux_level: str = Field(default="", alias="SELinuxLevel")
    resources: ResourcesSpec = Field(default_factory=ResourcesSpec)
    active_deadline_seconds: int | None = Field(default=None, ge=1)


class StepOverride(_CamelModel):
    """One workflow step.

    Every field other than ``step_name`` is optional; ``None`` means the
    step does not override the base value.
    """

    step_name: str = Field(..., min_length=1, max_length=40, pattern=_DNS_LABEL)
    workload_ssh_key_secret_name: str | None = Field(default=None, alias="workloadSSHKeySecretName")
    compute_ssh_key_secret_name: str | None = Field(default=None, alias="computeSSHKeySecretName")
    container_image: str | None = None
    ansible_extra_vars: str | None = None
    ansible_var_files: str | None = None
    ansible_inventory: str | None = None
    ansible_git_repo: str | None = None
    ansible_playbook_path: str | None = None
    ansible_collections: str | None = None
    debug: bool | None = None
    privileged: bool | None = None
    node_selector: dict[str, str] | None = None
    tolerations: list[TolerationSpec] | None = None
    selinux_level: str | None = Field(default=None, alias="SELinuxLevel")
    resources: ResourcesSpec | None = None
    active_deadline_seconds: int | None = Field(default=None, ge=1)


class AnsibleTestSpec(AnsibleTestParameters):
    """Base parameters plus the ordered workflow."""

    workflow: list[StepOverride] = Field(default_factory=list)

    @field_validator("workflow")
    @classmethod
    def validate_unique_step_names(cls, v: list[StepOverride]) -> list[StepOverride]:
        """Ensure step names are unique."""
        names = [step.step_name for step in v]
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate step names: {duplicates}")
        return v

    @property
    def workflow_length(self) -> int:
        return len(self.workflow)

    def step_name(self, step: int) -> str:
        """Name of a step; implicit steps are named after their index."""
        if 0 <= step < len(self.workflow):
            return self.workflow[step].step_name
        return f"step-{step}"


class ObjectMetadata(_CamelModel):
    name: str = Field(..., min_length=1, max_length=53, pattern=_DNS_LABEL)
    namespace: str = "default"
    uid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    labels: dict[str, str] = Field(default_factory=dict)


class AnsibleTestStatus(_CamelModel):
    conditions: list[dict[str, Any]] | None = None


class AnsibleTest(_CamelModel):
    """Complete AnsibleTest resource as written by the user."""

    api_version: Literal["test.openstack.org/v1beta1"] = Field(
        default="test.openstack.org/v1beta1",
        alias="apiVersion",
    )
    kind: Literal["AnsibleTest"] = "AnsibleTest"
    metadata: ObjectMetadata
    spec: AnsibleTestSpec = Field(default_factory=AnsibleTestSpec)
    status: AnsibleTestStatus = Field(default_factory=AnsibleTestStatus)

    def to_instance(self) -> WorkflowInstance:
        """Convert to the cluster-side ``WorkflowInstance`` record."""
        conditions = None
        if self.status.conditions is not None:
            conditions = ConditionList.from_list(self.status.conditions)
        return WorkflowInstance(
            name=self.metadata.name,
            namespace=self.metadata.namespace,
            uid=self.metadata.uid,
            spec=self.spec,
            conditions=conditions,
            labels=dict(self.metadata.labels),
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> AnsibleTest:
        """Parse and validate YAML content.

        Raises:
            ValueError: If YAML is invalid or doesn't match the schema.
        """
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("AnsibleTest YAML must be a mapping")

        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: str | Path) -> AnsibleTest:
        """Load and validate from a YAML file."""
        content = Path(path).read_text(encoding="utf-8")
        return cls.from_yaml(content)

    def to_yaml(self) -> str:
        return yaml.safe_dump(
            self.model_dump(by_alias=True, exclude_none=True),
            sort_keys=False,
        )
