"""Condition helpers for provider machine status.

Conditions are kept sorted with Ready first and the rest by type. A
condition's lastTransitionTime only moves when its status changes, so
re-applying an identical condition never produces a diff.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from .models import (
    READY_CONDITION,
    Condition,
    ConditionSeverity,
    ConditionStatus,
    ProviderMachine,
)

MACHINE_FAILED_REASON = "MachineFailed"
NOT_REPORTED_REASON = "ConditionNotReported"

_SEVERITY_RANK = {
    ConditionSeverity.ERROR: 3,
    ConditionSeverity.WARNING: 2,
    ConditionSeverity.INFO: 1,
    ConditionSeverity.NONE: 0,
}


def _now() -> datetime:
    # The store keeps second resolution.
    return datetime.now(UTC).replace(microsecond=0)


def _sort_key(condition: Condition) -> tuple[int, str]:
    return (0 if condition.type == READY_CONDITION else 1, condition.type)


def get(machine: ProviderMachine, condition_type: str) -> Condition | None:
    """Return the condition of the given type, or None."""
    for condition in machine.status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def is_true(machine: ProviderMachine, condition_type: str) -> bool:
    condition = get(machine, condition_type)
    return condition is not None and condition.status is ConditionStatus.TRUE


def set_condition(machine: ProviderMachine, condition: Condition) -> None:
    """Add or replace a condition, preserving its transition time if unchanged."""
    existing = get(machine, condition.type)
    if existing is not None and existing.status == condition.status:
        condition = condition.model_copy(
            update={"last_transition_time": existing.last_transition_time}
        )
    elif condition.last_transition_time is None:
        condition = condition.model_copy(update={"last_transition_time": _now()})

    conditions = [c for c in machine.status.conditions if c.type != condition.type]
    conditions.append(condition)
    machine.status.conditions = sorted(conditions, key=_sort_key)


def mark_true(machine: ProviderMachine, condition_type: str) -> None:
    set_condition(machine, Condition(type=condition_type, status=ConditionStatus.TRUE))


def mark_false(
    machine: ProviderMachine,
    condition_type: str,
    reason: str,
    severity: ConditionSeverity,
    message: str = "",
) -> None:
    set_condition(
        machine,
        Condition(
            type=condition_type,
            status=ConditionStatus.FALSE,
            severity=severity,
            reason=reason,
            message=message,
        ),
    )


def mark_unknown(
    machine: ProviderMachine, condition_type: str, reason: str, message: str = ""
) -> None:
    set_condition(
        machine,
        Condition(
            type=condition_type, status=ConditionStatus.UNKNOWN, reason=reason, message=message
        ),
    )


def summarize(machine: ProviderMachine, condition_types: Sequence[str]) -> Condition:
    """Compute the Ready summary of ``condition_types`` without setting it.

    Rules, in order:
    1. A failed machine is Ready=False with severity Error.
    2. Any False condition makes Ready False; the first one with the worst
       severity provides reason, message and severity.
    3. Any Unknown or missing condition makes Ready Unknown.
    4. Otherwise Ready is True.
    """
    status = machine.status
    if status.failure_reason or status.failure_message:
        return Condition(
            type=READY_CONDITION,
            status=ConditionStatus.FALSE,
            severity=ConditionSeverity.ERROR,
            reason=status.failure_reason or MACHINE_FAILED_REASON,
            message=status.failure_message or "",
        )

    worst: Condition | None = None
    unknown: Condition | None = None
    for condition_type in condition_types:
        condition = get(machine, condition_type)
        if condition is None:
            if unknown is None:
                unknown = Condition(
                    type=condition_type,
                    status=ConditionStatus.UNKNOWN,
                    reason=NOT_REPORTED_REASON,
                    message=f"{condition_type} has not been reported yet",
                )
            continue
        if condition.status is ConditionStatus.FALSE:
            if worst is None or _SEVERITY_RANK[condition.severity] > _SEVERITY_RANK[worst.severity]:
                worst = condition
        elif condition.status is ConditionStatus.UNKNOWN and unknown is None:
            unknown = condition

    if worst is not None:
        return Condition(
            type=READY_CONDITION,
            status=ConditionStatus.FALSE,
            severity=worst.severity,
            reason=worst.reason,
            message=worst.message,
        )
    if unknown is not None:
        return Condition(
            type=READY_CONDITION,
            status=ConditionStatus.UNKNOWN,
            reason=unknown.reason,
            message=unknown.message,
        )
    return Condition(type=READY_CONDITION, status=ConditionStatus.TRUE)


def set_summary(machine: ProviderMachine, condition_types: Sequence[str]) -> Condition:
    """Recompute and store the Ready summary. Returns the stored condition."""
    set_condition(machine, summarize(machine, condition_types))
    summary = get(machine, READY_CONDITION)
    assert summary is not None
    return summary
