"""Per-step parameter override resolution.

Each workflow step may override any subset of the base parameters.
``resolve`` computes one field's effective value at one step index;
``resolve_step`` does it for every overridable field and returns an
immutable ``EffectiveStepParameters``, recomputed on every reconcile and
never stored.

The set of overridable fields is closed: ``OverridableField`` lists them
and ``FIELD_BINDINGS`` maps each one to how it is read, how it is written
into the effective parameters, and what "not overridden" means for it.

.. code-block:: text

    resolve(field, base, overrides, step)

      step outside overrides ──────────────────────► base value
      override value unset for its kind ───────────► base value
      otherwise ───────────────────────────────────► override value

    ValueKind      unset when
    ─────────      ──────────
    BOOL           None (an explicit false overrides a true base)
    NUMBER         None
    STRING         None or ""  (a blank string cannot override)
    OPTIONAL       None        (an explicit empty value does override)

Example::

    params = resolve_step(spec, 0)
    params.container_image    # step 0 override, else base
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from operator import attrgetter
from typing import Any

from testflow.orchestration.workflow_yaml import (
    AnsibleTestParameters,
    AnsibleTestSpec,
    ResourcesSpec,
    StepOverride,
    TolerationSpec,
)


class ValueKind(str, Enum):
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    OPTIONAL = "optional"


class OverridableField(str, Enum):
    """Every parameter a workflow step may override."""

    WORKLOAD_SSH_KEY_SECRET_NAME = "workload_ssh_key_secret_name"
    COMPUTE_SSH_KEY_SECRET_NAME = "compute_ssh_key_secret_name"
    CONTAINER_IMAGE = "container_image"
    ANSIBLE_EXTRA_VARS = "ansible_extra_vars"
    ANSIBLE_VAR_FILES = "ansible_var_files"
    ANSIBLE_INVENTORY = "ansible_inventory"
    ANSIBLE_GIT_REPO = "ansible_git_repo"
    ANSIBLE_PLAYBOOK_PATH = "ansible_playbook_path"
    ANSIBLE_COLLECTIONS = "ansible_collections"
    DEBUG = "debug"
    PRIVILEGED = "privileged"
    NODE_SELECTOR = "node_selector"
    TOLERATIONS = "tolerations"
    SELINUX_LEVEL = "selinux_level"
    RESOURCES = "resources"
    ACTIVE_DEADLINE_SECONDS = "active_deadline_seconds"


@dataclass(frozen=True)
class EffectiveStepParameters:
    """Parameters one step actually runs with."""

    step: int
    step_name: str
    workload_ssh_key_secret_name: str = ""
    compute_ssh_key_secret_name: str = ""
    container_image: str = ""
    ansible_extra_vars: str = ""
    ansible_var_files: str = ""
    ansible_inventory: str = ""
    ansible_git_repo: str = ""
    ansible_playbook_path: str = ""
    ansible_collections: str = ""
    debug: bool = False
    privileged: bool = False
    node_selector: dict[str, str] = field(default_factory=dict)
    tolerations: list[TolerationSpec] = field(default_factory=list)
    selinux_level: str = ""
    resources: ResourcesSpec = field(default_factory=ResourcesSpec)
    active_deadline_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"step": self.step, "step_name": self.step_name}
        for overridable in OverridableField:
            value = FIELD_BINDINGS[overridable].getter(self)
            if isinstance(value, ResourcesSpec):
                value = value.model_dump(exclude_defaults=True)
            elif overridable is OverridableField.TOLERATIONS:
                value = [t.model_dump(exclude_defaults=True) for t in value]
            result[overridable.value] = value
        return result


Getter = Callable[[Any], Any]
Setter = Callable[[EffectiveStepParameters, Any], EffectiveStepParameters]


@dataclass(frozen=True)
class FieldBinding:
    """How one overridable field is read, written and tested for "unset"."""

    kind: ValueKind
    getter: Getter
    setter: Setter

    def is_unset(self, value: Any) -> bool:
        if value is None:
            return True
        return self.kind is ValueKind.STRING and value == ""


def _binding(kind: ValueKind, attribute: str) -> FieldBinding:
    return FieldBinding(
        kind=kind,
        getter=attrgetter(attribute),
        setter=lambda params, value: replace(params, **{attribute: value}),
    )


FIELD_BINDINGS: dict[OverridableField, FieldBinding] = {
    OverridableField.WORKLOAD_SSH_KEY_SECRET_NAME: _binding(
        ValueKind.STRING, "workload_ssh_key_secret_name"
    ),
    OverridableField.COMPUTE_SSH_KEY_SECRET_NAME: _binding(
        ValueKind.STRING, "compute_ssh_key_secret_name"
    ),
    OverridableField.CONTAINER_IMAGE: _binding(ValueKind.STRING, "container_image"),
    OverridableField.ANSIBLE_EXTRA_VARS: _binding(ValueKind.STRING, "ansible_extra_vars"),
    OverridableField.ANSIBLE_VAR_FILES: _binding(ValueKind.STRING, "ansible_var_files"),
    OverridableField.ANSIBLE_INVENTORY: _binding(ValueKind.STRING, "ansible_inventory"),
    OverridableField.ANSIBLE_GIT_REPO: _binding(ValueKind.STRING, "ansible_git_repo"),
    OverridableField.ANSIBLE_PLAYBOOK_PATH: _binding(ValueKind.STRING, "ansible_playbook_path"),
    OverridableField.ANSIBLE_COLLECTIONS: _binding(ValueKind.STRING, "ansible_collections"),
    OverridableField.DEBUG: _binding(ValueKind.BOOL, "debug"),
    OverridableField.PRIVILEGED: _binding(ValueKind.BOOL, "privileged"),
    OverridableField.NODE_SELECTOR: _binding(ValueKind.OPTIONAL, "node_selector"),
    OverridableField.TOLERATIONS: _binding(ValueKind.OPTIONAL, "tolerations"),
    OverridableField.SELINUX_LEVEL: _binding(ValueKind.OPTIONAL, "selinux_level"),
    OverridableField.RESOURCES: _binding(ValueKind.OPTIONAL, "resources"),
    OverridableField.ACTIVE_DEADLINE_SECONDS: _binding(ValueKind.NUMBER, "active_deadline_seconds"),
}


def resolve(
    field_name: OverridableField,
    base: AnsibleTestParameters,
    overrides: Sequence[StepOverride],
    step: int,
) -> Any:
    """Effective value of ``field_name`` at ``step``.

    Defined for every field and every integer step; any step without an
    override record (negative, or past the end of ``overrides``) gets the
    base value.
    """
    binding = FIELD_BINDINGS[field_name]
    base_value = binding.getter(base)
    if not 0 <= step < len(overrides):
        return base_value
    value = binding.getter(overrides[step])
    return base_value if binding.is_unset(value) else value


def overridden_fields(spec: AnsibleTestSpec, step: int) -> list[OverridableField]:
    """Fields whose effective value at ``step`` comes from the step override."""
    if not 0 <= step < len(spec.workflow):
        return []
    override = spec.workflow[step]
    return [
        f for f in OverridableField
        if not FIELD_BINDINGS[f].is_unset(FIELD_BINDINGS[f].getter(override))
    ]


def resolve_step(spec: AnsibleTestSpec, step: int) -> EffectiveStepParameters:
    """Resolve every overridable field for one step."""
    params = EffectiveStepParameters(step=step, step_name=spec.step_name(step))
    for overridable in OverridableField:
        value = resolve(overridable, spec, spec.workflow, step)
        params = FIELD_BINDINGS[overridable].setter(params, value)
    return params


__all__ = [
    "FIELD_BINDINGS",
    "EffectiveStepParameters",
    "FieldBinding",
    "OverridableField",
    "ValueKind",
    "overridden_fields",
    "resolve",
    "resolve_step",
]
