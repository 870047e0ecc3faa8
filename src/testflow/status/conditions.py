"""Status conditions — externally observable readiness flags.

A workflow instance reports progress through a small set of named
conditions.  ``Ready`` is an aggregate: it only turns True when every
other condition is True.  While it is Unknown it repeats the status,
reason and message of the first sub-condition that is not ready yet.

Architecture::

    ConditionList
      ├── init(conditions)            add missing conditions (status Unknown)
      ├── set(condition)              replace; transition time moves only on status change
      ├── mark_true / mark_false      convenience setters
      ├── all_sub_conditions_true()   tracked sub-conditions present, all non-Ready True
      ├── mirror(Ready)               copy of first non-ready sub-condition
      └── restore_last_transition_times(saved)

    Sort order: Ready first, then alphabetical by type.

Example::

    conditions = ConditionList()
    conditions.init(initial_conditions())
    conditions.mark_true(ConditionType.SERVICE_CONFIG_READY, SERVICE_CONFIG_READY_MESSAGE)
    conditions.is_true(ConditionType.READY)   # False, DeploymentReady still Unknown
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    """Return timezone-aware UTC datetime, truncated to seconds."""
    return datetime.now(UTC).replace(microsecond=0)


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(str, Enum):
    READY = "Ready"
    SERVICE_CONFIG_READY = "ServiceConfigReady"
    DEPLOYMENT_READY = "DeploymentReady"


class ConditionReason(str, Enum):
    INIT = "Init"
    REQUESTED = "Requested"
    ERROR = "Error"
    READY = "Ready"


class Severity(str, Enum):
    NONE = ""
    INFO = "Info"
    WARNING = "Warning"
    ERROR = "Error"


# ── Messages ─────────────────────────────────────────────────────────────

READY_INIT_MESSAGE = "Setup started"
READY_MESSAGE = "Setup complete"
SERVICE_CONFIG_READY_INIT_MESSAGE = "Service config create not started"
SERVICE_CONFIG_READY_MESSAGE = "Service config create completed"
DEPLOYMENT_READY_INIT_MESSAGE = "Deployment not started"
DEPLOYMENT_READY_RUNNING_MESSAGE = "Deployment in progress"
DEPLOYMENT_READY_MESSAGE = "Deployment completed"
DEPLOYMENT_READY_ERROR_MESSAGE = "Deployment error occurred {error}"

# Sub-conditions that must be present, and True, before Ready can be True.
TRACKED_SUB_CONDITIONS = (
    ConditionType.SERVICE_CONFIG_READY,
    ConditionType.DEPLOYMENT_READY,
)


@dataclass
class Condition:
    """One named status flag."""

    type: str
    status: ConditionStatus
    reason: str = ""
    severity: Severity = Severity.NONE
    message: str = ""
    last_transition_time: datetime = field(default_factory=_utcnow)

    def same_state(self, other: Condition) -> bool:
        """Whether two conditions agree on everything except the transition time."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.severity == other.severity
            and self.message == other.message
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type,
            "status": self.status.value,
            "lastTransitionTime": self.last_transition_time.isoformat(),
        }
        if self.reason:
            d["reason"] = self.reason
        if self.severity is not Severity.NONE:
            d["severity"] = self.severity.value
        if self.message:
            d["message"] = self.message
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=data["type"],
            status=ConditionStatus(data["status"]),
            reason=data.get("reason", ""),
            severity=Severity(data.get("severity", "")),
            message=data.get("message", ""),
            last_transition_time=datetime.fromisoformat(data["lastTransitionTime"]),
        )


def _type_of(condition_type: ConditionType | str) -> str:
    return condition_type.value if isinstance(condition_type, ConditionType) else condition_type


def unknown_condition(
    condition_type: ConditionType | str,
    reason: ConditionReason | str,
    message: str,
) -> Condition:
    return Condition(
        type=_type_of(condition_type),
        status=ConditionStatus.UNKNOWN,
        reason=reason.value if isinstance(reason, ConditionReason) else reason,
        message=message,
    )


def true_condition(condition_type: ConditionType | str, message: str) -> Condition:
    return Condition(
        type=_type_of(condition_type),
        status=ConditionStatus.TRUE,
        reason=ConditionReason.READY.value,
        message=message,
    )


def false_condition(
    condition_type: ConditionType | str,
    reason: ConditionReason | str,
    severity: Severity,
    message: str,
) -> Condition:
    return Condition(
        type=_type_of(condition_type),
        status=ConditionStatus.FALSE,
        reason=reason.value if isinstance(reason, ConditionReason) else reason,
        severity=severity,
        message=message,
    )


def initial_conditions() -> list[Condition]:
    """Conditions every new workflow instance starts with."""
    return [
        unknown_condition(ConditionType.READY, ConditionReason.INIT, READY_INIT_MESSAGE),
        unknown_condition(
            ConditionType.SERVICE_CONFIG_READY,
            ConditionReason.INIT,
            SERVICE_CONFIG_READY_INIT_MESSAGE,
        ),
        unknown_condition(
            ConditionType.DEPLOYMENT_READY,
            ConditionReason.INIT,
            DEPLOYMENT_READY_INIT_MESSAGE,
        ),
    ]


class ConditionList:
    """Ordered set of conditions keyed by type."""

    def __init__(self, conditions: Iterable[Condition] = ()) -> None:
        self._items: dict[str, Condition] = {}
        for condition in conditions:
            self._items[condition.type] = condition

    # --- Queries ---

    def get(self, condition_type: ConditionType | str) -> Condition | None:
        return self._items.get(_type_of(condition_type))

    def has(self, condition_type: ConditionType | str) -> bool:
        return _type_of(condition_type) in self._items

    def _status_is(self, condition_type: ConditionType | str, status: ConditionStatus) -> bool:
        condition = self.get(condition_type)
        return condition is not None and condition.status is status

    def is_true(self, condition_type: ConditionType | str) -> bool:
        return self._status_is(condition_type, ConditionStatus.TRUE)

    def is_false(self, condition_type: ConditionType | str) -> bool:
        return self._status_is(condition_type, ConditionStatus.FALSE)

    def is_unknown(self, condition_type: ConditionType | str) -> bool:
        condition = self.get(condition_type)
        return condition is None or condition.status is ConditionStatus.UNKNOWN

    def sub_conditions(self) -> list[Condition]:
        return [c for c in self if c.type != ConditionType.READY.value]

    def all_sub_conditions_true(self) -> bool:
        """True when every tracked sub-condition exists and every non-Ready condition is True."""
        return all(self.has(t) for t in TRACKED_SUB_CONDITIONS) and all(
            c.status is ConditionStatus.TRUE for c in self.sub_conditions()
        )

    # --- Mutation ---

    def init(self, conditions: Iterable[Condition]) -> None:
        """Add the given conditions unless a condition of that type exists.

        Ready is always present afterwards.
        """
        for condition in conditions:
            self._items.setdefault(condition.type, condition)
        self._items.setdefault(
            ConditionType.READY.value,
            unknown_condition(ConditionType.READY, ConditionReason.INIT, READY_INIT_MESSAGE),
        )

    def set(self, condition: Condition) -> None:
        """Set a condition; its transition time only moves when the status changes."""
        existing = self._items.get(condition.type)
        if existing is not None and existing.status is condition.status:
            condition.last_transition_time = existing.last_transition_time
        self._items[condition.type] = condition

    def mark_true(self, condition_type: ConditionType | str, message: str) -> None:
        self.set(true_condition(condition_type, message))

    def mark_false(
        self,
        condition_type: ConditionType | str,
        reason: ConditionReason | str,
        severity: Severity,
        message: str,
    ) -> None:
        self.set(false_condition(condition_type, reason, severity, message))

    def mirror(self, target: ConditionType | str) -> Condition:
        """Copy of the first non-ready sub-condition, retyped as ``target``.

        When every sub-condition is True the result is a True condition with
        the standard ready message.  A missing tracked sub-condition yields
        an Unknown condition with the init message.
        """
        if not all(self.has(t) for t in TRACKED_SUB_CONDITIONS):
            return unknown_condition(target, ConditionReason.INIT, READY_INIT_MESSAGE)
        for condition in self.sub_conditions():
            if condition.status is not ConditionStatus.TRUE:
                mirrored = copy.copy(condition)
                mirrored.type = _type_of(target)
                mirrored.last_transition_time = _utcnow()
                return mirrored
        return true_condition(target, READY_MESSAGE)

    def restore_last_transition_times(self, saved: ConditionList) -> None:
        """Put back the saved transition time of every condition whose status did not change."""
        for condition in self._items.values():
            previous = saved.get(condition.type)
            if previous is not None and previous.status is condition.status:
                condition.last_transition_time = previous.last_transition_time

    def deep_copy(self) -> ConditionList:
        return ConditionList(copy.deepcopy(list(self._items.values())))

    # --- Iteration / serialization ---

    def __iter__(self) -> Iterator[Condition]:
        ready = self._items.get(ConditionType.READY.value)
        if ready is not None:
            yield ready
        for type_name in sorted(self._items):
            if type_name != ConditionType.READY.value:
                yield self._items[type_name]

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def to_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self]

    @classmethod
    def from_list(cls, data: Iterable[dict[str, Any]]) -> ConditionList:
        return cls(Condition.from_dict(item) for item in data)

    def __repr__(self) -> str:
        summary = ", ".join(f"{c.type}={c.status.value}" for c in self)
        return f"ConditionList({summary})"
