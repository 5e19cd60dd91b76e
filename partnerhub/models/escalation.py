"""
Partner Hub
Escalation domain models.

Models:
    - EscalationRule: admin-configured trigger condition + notification action
    - EscalationLog: append-only audit / de-duplication ledger
    - EscalationTriggerState: last evaluated state per (rule, task), used to
      re-arm ``progress_below`` rules

De-duplication:
    ``EscalationLog.claim_key`` carries a UNIQUE constraint. A log row holds
    its occurrence key in ``claim_key`` while it is ``pending`` or
    ``executed``; a ``failed`` row sets it back to NULL. Inserting a pending
    row is therefore the atomic "check-then-insert" for an occurrence.
"""

from datetime import datetime, timezone

from partnerhub.models import db


# ── Constants ────────────────────────────────────────────────────────────────

TRIGGER_DAYS_AFTER_DUE = "days_after_due"
TRIGGER_DAYS_BEFORE_DUE = "days_before_due"
TRIGGER_PROGRESS_BELOW = "progress_below"
TRIGGER_TYPES = {TRIGGER_DAYS_AFTER_DUE, TRIGGER_DAYS_BEFORE_DUE, TRIGGER_PROGRESS_BELOW}
DATE_TRIGGER_TYPES = frozenset({TRIGGER_DAYS_AFTER_DUE, TRIGGER_DAYS_BEFORE_DUE})

ACTION_NOTIFY_OWNER = "notify_owner"
ACTION_NOTIFY_STAKEHOLDERS = "notify_stakeholders"
ACTION_ESCALATE_TO_MANAGER = "escalate_to_manager"
ESCALATION_ACTIONS = {ACTION_NOTIFY_OWNER, ACTION_NOTIFY_STAKEHOLDERS, ACTION_ESCALATE_TO_MANAGER}

RULE_STATUSES = {"active", "inactive"}

LOG_PENDING = "pending"
LOG_EXECUTED = "executed"
LOG_FAILED = "failed"
LOG_STATUSES = {LOG_PENDING, LOG_EXECUTED, LOG_FAILED}


class EscalationRule(db.Model):
    """
    Escalation rule.

    Evaluated read-only by the scheduler. ``project_id`` NULL means the rule
    applies to every project; otherwise only that project's tasks are
    evaluated. Lower ``priority`` is evaluated first.
    """

    __tablename__ = "escalation_rules"
    __table_args__ = (
        db.CheckConstraint("trigger_value >= 1", name="ck_escalation_rules_trigger_value"),
        db.Index("ix_escalation_rules_status_priority", "status", "priority"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    trigger_type = db.Column(db.String(30), nullable=False, default=TRIGGER_DAYS_AFTER_DUE)
    trigger_value = db.Column(db.Integer, nullable=False, default=1,
                              comment="Days, or percentage for progress_below")
    action = db.Column(db.String(30), nullable=False, default=ACTION_NOTIFY_OWNER)
    priority = db.Column(db.Integer, nullable=False, default=1, comment="Lower = applied first")
    status = db.Column(db.String(20), nullable=False, default="active")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self):
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "project_id": self.project_id,
            "trigger_type": self.trigger_type,
            "trigger_value": self.trigger_value,
            "action": self.action,
            "priority": self.priority,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<EscalationRule {self.id}: {self.name} [{self.trigger_type}>={self.trigger_value}]>"


class EscalationLog(db.Model):
    """
    Escalation audit entry.

    Snapshots the rule name/action at claim time so history survives rule
    deletion (``rule_id`` is nulled, the snapshot stays).
    """

    __tablename__ = "escalation_logs"
    __table_args__ = (
        db.UniqueConstraint("claim_key", name="uq_escalation_logs_claim_key"),
        db.Index("ix_escalation_logs_rule_task", "rule_id", "task_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rule_id = db.Column(
        db.Integer, db.ForeignKey("escalation_rules.id", ondelete="SET NULL"), nullable=True,
    )
    rule_name = db.Column(db.String(200), nullable=False, default="")
    trigger_type = db.Column(db.String(30), nullable=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    action = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=LOG_PENDING, index=True)

    occurrence_key = db.Column(db.String(200), nullable=False, index=True)
    claim_key = db.Column(db.String(200), nullable=True,
                          comment="Occurrence key while pending/executed, NULL once failed")

    action_detail = db.Column(db.Text, nullable=True)
    notified_users = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    tick_id = db.Column(db.String(64), nullable=True)

    executed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "trigger_type": self.trigger_type,
            "task_id": self.task_id,
            "project_id": self.project_id,
            "action": self.action,
            "status": self.status,
            "occurrence_key": self.occurrence_key,
            "action_detail": self.action_detail,
            "notified_users": self.notified_users or [],
            "error_message": self.error_message,
            "tick_id": self.tick_id,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EscalationLog {self.id}: {self.occurrence_key} [{self.status}]>"


class EscalationTriggerState(db.Model):
    """Last evaluated condition per (rule, task) for re-armable triggers."""

    __tablename__ = "escalation_trigger_states"
    __table_args__ = (
        db.UniqueConstraint("rule_id", "task_id", name="uq_trigger_state_rule_task"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rule_id = db.Column(
        db.Integer, db.ForeignKey("escalation_rules.id", ondelete="CASCADE"), nullable=False,
    )
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False,
    )
    last_matched = db.Column(db.Boolean, nullable=False, default=False)
    cycle = db.Column(db.Integer, nullable=False, default=0)
    evaluated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "rule_id": self.rule_id,
            "task_id": self.task_id,
            "last_matched": self.last_matched,
            "cycle": self.cycle,
            "evaluated_at": self.evaluated_at.isoformat() if self.evaluated_at else None,
        }
