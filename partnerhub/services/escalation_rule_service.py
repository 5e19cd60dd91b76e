"""
Partner Hub
Escalation Rule Service.

Data access for EscalationRule: list/get/create/update/delete/toggle plus the
default rule seed. No action-specific logic lives here; failures are plain
NotFoundError / ValidationError.

Ordering:
    Rules are always returned by ``priority`` ascending, ties broken by
    creation order (primary key), so the scheduler sees a stable sequence.
"""

from __future__ import annotations

import logging

from partnerhub.core.exceptions import NotFoundError, ValidationError
from partnerhub.models import db
from partnerhub.models.escalation import (
    ACTION_ESCALATE_TO_MANAGER,
    ACTION_NOTIFY_OWNER,
    ACTION_NOTIFY_STAKEHOLDERS,
    ESCALATION_ACTIONS,
    RULE_STATUSES,
    TRIGGER_DAYS_AFTER_DUE,
    TRIGGER_DAYS_BEFORE_DUE,
    TRIGGER_PROGRESS_BELOW,
    TRIGGER_TYPES,
    EscalationLog,
    EscalationRule,
    EscalationTriggerState,
)
from partnerhub.models.project import Project
from partnerhub.utils.helpers import db_commit_or_raise

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "name", "description", "project_id", "trigger_type", "trigger_value",
    "action", "priority", "status",
)

DEFAULT_RULES = (
    {
        "name": "1 day overdue: notify assignee",
        "description": "Notify the task assignee once the task is 1 day past its due date.",
        "trigger_type": TRIGGER_DAYS_AFTER_DUE,
        "trigger_value": 1,
        "action": ACTION_NOTIFY_OWNER,
        "priority": 1,
    },
    {
        "name": "3 days overdue: notify assignee and stakeholders",
        "description": "Notify the assignee and upstream partners once the task is 3 days overdue.",
        "trigger_type": TRIGGER_DAYS_AFTER_DUE,
        "trigger_value": 3,
        "action": ACTION_NOTIFY_STAKEHOLDERS,
        "priority": 2,
    },
    {
        "name": "7 days overdue: notify everyone on the project",
        "description": "Notify every project stakeholder once the task is 7 days overdue.",
        "trigger_type": TRIGGER_DAYS_AFTER_DUE,
        "trigger_value": 7,
        "action": ACTION_NOTIFY_STAKEHOLDERS,
        "priority": 3,
    },
    {
        "name": "14 days overdue: escalate to managers",
        "description": "Escalate to the organization's administrators once the task is 14 days overdue.",
        "trigger_type": TRIGGER_DAYS_AFTER_DUE,
        "trigger_value": 14,
        "action": ACTION_ESCALATE_TO_MANAGER,
        "priority": 4,
    },
    {
        "name": "Due in 3 days: advance notice",
        "description": "Give the assignee advance notice 3 days before the due date.",
        "trigger_type": TRIGGER_DAYS_BEFORE_DUE,
        "trigger_value": 3,
        "action": ACTION_NOTIFY_OWNER,
        "priority": 0,
    },
    {
        "name": "Due tomorrow: reminder",
        "description": "Remind the assignee the day before the due date.",
        "trigger_type": TRIGGER_DAYS_BEFORE_DUE,
        "trigger_value": 1,
        "action": ACTION_NOTIFY_OWNER,
        "priority": 0,
    },
    {
        "name": "Progress below 50%",
        "description": "Alert stakeholders while task progress is under 50%.",
        "trigger_type": TRIGGER_PROGRESS_BELOW,
        "trigger_value": 50,
        "action": ACTION_NOTIFY_STAKEHOLDERS,
        "priority": 5,
    },
)


# ── Validation ────────────────────────────────────────────────────────────────


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate(data: dict, *, partial: bool) -> dict:
    """Return the cleaned subset of ``data`` or raise ValidationError."""
    errors: dict[str, str] = {}
    cleaned = {k: data[k] for k in _EDITABLE_FIELDS if k in data}

    if not partial:
        for required in ("name", "trigger_type", "trigger_value", "action"):
            if cleaned.get(required) in (None, ""):
                errors[required] = f"{required} is required"

    if "name" in cleaned:
        name = (cleaned["name"] or "").strip()
        if not name:
            errors["name"] = "name is required"
        elif len(name) > 200:
            errors["name"] = "name must be at most 200 characters"
        cleaned["name"] = name

    if cleaned.get("trigger_type") is not None and cleaned["trigger_type"] not in TRIGGER_TYPES:
        errors["trigger_type"] = f"trigger_type must be one of {sorted(TRIGGER_TYPES)}"

    if "trigger_value" in cleaned and cleaned["trigger_value"] is not None:
        value = cleaned["trigger_value"]
        if not _is_int(value) or value < 1:
            errors["trigger_value"] = "trigger_value must be an integer >= 1"

    if cleaned.get("action") is not None and cleaned["action"] not in ESCALATION_ACTIONS:
        errors["action"] = f"action must be one of {sorted(ESCALATION_ACTIONS)}"

    if "priority" in cleaned:
        if not _is_int(cleaned["priority"]) or cleaned["priority"] < 0:
            errors["priority"] = "priority must be an integer >= 0"

    if "status" in cleaned and cleaned["status"] not in RULE_STATUSES:
        errors["status"] = f"status must be one of {sorted(RULE_STATUSES)}"

    if cleaned.get("project_id") is not None:
        if not _is_int(cleaned["project_id"]):
            errors["project_id"] = "project_id must be an integer"
        elif not db.session.get(Project, cleaned["project_id"]):
            errors["project_id"] = "project not found"

    if errors:
        raise ValidationError("Invalid escalation rule", details=errors)
    return cleaned


# ── Public API ────────────────────────────────────────────────────────────────


class EscalationRuleService:
    """Stateless service for escalation rule CRUD."""

    @staticmethod
    def list_rules(status=None, trigger_type=None, action=None, project_id=None,
                   include_global=True) -> list[EscalationRule]:
        """Rules sorted by priority, then creation order.

        ``project_id`` narrows to rules bound to that project, plus global
        rules unless ``include_global`` is False.
        """
        q = EscalationRule.query
        if status:
            q = q.filter(EscalationRule.status == status)
        if trigger_type:
            q = q.filter(EscalationRule.trigger_type == trigger_type)
        if action:
            q = q.filter(EscalationRule.action == action)
        if project_id is not None:
            if include_global:
                q = q.filter(
                    (EscalationRule.project_id == project_id) | (EscalationRule.project_id.is_(None))
                )
            else:
                q = q.filter(EscalationRule.project_id == project_id)
        return q.order_by(EscalationRule.priority.asc(), EscalationRule.id.asc()).all()

    @staticmethod
    def active_rules() -> list[EscalationRule]:
        return EscalationRuleService.list_rules(status="active")

    @staticmethod
    def get_rule(rule_id: int) -> EscalationRule:
        rule = db.session.get(EscalationRule, rule_id)
        if not rule:
            raise NotFoundError(resource="EscalationRule", resource_id=rule_id)
        return rule

    @staticmethod
    def create_rule(data: dict, created_by: int | None = None) -> EscalationRule:
        cleaned = _validate(data, partial=False)
        rule = EscalationRule(created_by=created_by, **cleaned)
        db.session.add(rule)
        db_commit_or_raise("save escalation rule")
        logger.info("Escalation rule created: %s", rule.name, extra={"rule_id": rule.id})
        return rule

    @staticmethod
    def update_rule(rule_id: int, data: dict) -> EscalationRule:
        """Partial update: only keys present in ``data`` change."""
        rule = EscalationRuleService.get_rule(rule_id)
        cleaned = _validate(data, partial=True)
        for key, value in cleaned.items():
            setattr(rule, key, value)
        db_commit_or_raise("save escalation rule")
        logger.info("Escalation rule updated: %s", rule.name, extra={"rule_id": rule.id})
        return rule

    @staticmethod
    def delete_rule(rule_id: int) -> None:
        """Delete a rule. Its logs keep their snapshot with ``rule_id`` nulled."""
        rule = EscalationRuleService.get_rule(rule_id)
        EscalationLog.query.filter_by(rule_id=rule_id).update(
            {"rule_id": None}, synchronize_session=False,
        )
        EscalationTriggerState.query.filter_by(rule_id=rule_id).delete(synchronize_session=False)
        db.session.delete(rule)
        db_commit_or_raise("save escalation rule")
        logger.info("Escalation rule deleted: %s", rule.name, extra={"rule_id": rule_id})

    @staticmethod
    def toggle_status(rule_id: int) -> EscalationRule:
        rule = EscalationRuleService.get_rule(rule_id)
        rule.status = "inactive" if rule.status == "active" else "active"
        db_commit_or_raise("save escalation rule")
        logger.info("Escalation rule %s is now %s", rule.name, rule.status,
                    extra={"rule_id": rule.id})
        return rule

    @staticmethod
    def seed_default_rules() -> list[EscalationRule]:
        """Install the default global rule set. No-op if any rule exists."""
        if EscalationRule.query.count() > 0:
            logger.info("Escalation rules already exist, skipping seed")
            return []
        created = [EscalationRule(status="active", **values) for values in DEFAULT_RULES]
        db.session.add_all(created)
        db_commit_or_raise("save escalation rule")
        logger.info("Seeded %d default escalation rules", len(created))
        return created
