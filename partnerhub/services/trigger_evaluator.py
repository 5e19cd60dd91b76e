"""
Partner Hub
Trigger Evaluator: pure rule-vs-task matching.

``evaluate(rule, task, now, state)`` decides whether one rule matches one task
snapshot and returns a deterministic occurrence key for the match. It performs
no I/O; the scheduler supplies snapshots and persists the returned state.

Occurrence keys:
    days_after_due   "<rule>:<task>:days_after_due:<overdue days>"
    days_before_due  "<rule>:<task>:days_before_due:<days left>"
    progress_below   "<rule>:<task>:progress_below:<cycle>"

Day buckets are UTC calendar dates: ``now`` is converted to UTC and both
sides are compared as dates, so the bucket advances at UTC midnight.

progress_below cycles:
    The trigger state records whether the condition held at the previous
    evaluation and which cycle it is in. A not-matched → matched transition
    opens a new cycle (re-arm on rise). While the condition keeps holding the
    same key is produced again and the log claim turns it into a no-op. With
    ``rearm=False`` the cycle never advances past 1, so the rule fires once
    per task, ever.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from partnerhub.models.escalation import (
    TRIGGER_DAYS_AFTER_DUE,
    TRIGGER_DAYS_BEFORE_DUE,
    TRIGGER_PROGRESS_BELOW,
)
from partnerhub.utils.helpers import ensure_utc


@dataclass(frozen=True)
class RuleSnapshot:
    """Detached copy of the rule fields the engine reads."""

    id: int
    name: str
    trigger_type: str
    trigger_value: int
    action: str
    priority: int = 1
    project_id: int | None = None

    @classmethod
    def of(cls, rule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            name=rule.name,
            trigger_type=rule.trigger_type,
            trigger_value=rule.trigger_value,
            action=rule.action,
            priority=rule.priority,
            project_id=rule.project_id,
        )


@dataclass(frozen=True)
class TriggerState:
    """Last known condition for one (rule, task) pair."""

    last_matched: bool = False
    cycle: int = 0


@dataclass(frozen=True)
class Evaluation:
    matched: bool
    occurrence_key: str | None = None
    state: TriggerState | None = None
    bucket: int | None = None


NO_MATCH = Evaluation(matched=False)


def occurrence_key(rule_id, task_id, trigger_type, bucket) -> str:
    return f"{rule_id}:{task_id}:{trigger_type}:{bucket}"


def _days_after_due(rule, task, today):
    if task.due_date is None:
        return NO_MATCH
    overdue = (today - task.due_date).days
    if overdue < rule.trigger_value:
        return NO_MATCH
    return Evaluation(True, occurrence_key(rule.id, task.id, rule.trigger_type, overdue), bucket=overdue)


def _days_before_due(rule, task, today):
    if task.due_date is None:
        return NO_MATCH
    days_left = (task.due_date - today).days
    if not 0 <= days_left <= rule.trigger_value:
        return NO_MATCH
    return Evaluation(True, occurrence_key(rule.id, task.id, rule.trigger_type, days_left), bucket=days_left)


def _progress_below(rule, task, state, rearm):
    prev = state or TriggerState()
    if task.progress >= rule.trigger_value:
        return Evaluation(False, state=TriggerState(last_matched=False, cycle=prev.cycle))

    if prev.last_matched:
        cycle = max(prev.cycle, 1)
    elif rearm:
        cycle = prev.cycle + 1
    else:
        cycle = 1
    return Evaluation(
        True,
        occurrence_key(rule.id, task.id, rule.trigger_type, cycle),
        state=TriggerState(last_matched=True, cycle=cycle),
        bucket=cycle,
    )


def evaluate(rule, task, now: datetime, state: TriggerState | None = None, *,
             rearm: bool = True) -> Evaluation:
    """Match one rule against one task snapshot at ``now``.

    Completed (or cancelled) tasks never match, and a project-bound rule only
    matches tasks of its project. For ``progress_below`` the returned
    ``state`` is the new trigger state to persist; date triggers are
    stateless and return ``state=None``.
    """
    if task.is_completed:
        if rule.trigger_type == TRIGGER_PROGRESS_BELOW and state is not None:
            return Evaluation(False, state=TriggerState(last_matched=False, cycle=state.cycle))
        return NO_MATCH
    if rule.project_id is not None and task.project_id != rule.project_id:
        return NO_MATCH

    today = ensure_utc(now).date()
    if rule.trigger_type == TRIGGER_DAYS_AFTER_DUE:
        return _days_after_due(rule, task, today)
    if rule.trigger_type == TRIGGER_DAYS_BEFORE_DUE:
        return _days_before_due(rule, task, today)
    if rule.trigger_type == TRIGGER_PROGRESS_BELOW:
        return _progress_below(rule, task, state, rearm)
    return NO_MATCH
