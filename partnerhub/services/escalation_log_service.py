"""
Partner Hub
Escalation Log Service: audit and de-duplication ledger.

Claiming an occurrence:
    ``claim()`` inserts a ``pending`` row whose ``claim_key`` equals the
    occurrence key and commits. The UNIQUE constraint on ``claim_key`` makes
    the insert the atomic check-then-insert: a second writer (another tick,
    another process) gets an IntegrityError and skips. There is never a
    read-then-write on this path.

    ``mark_executed()`` keeps the claim; ``mark_failed()`` releases it by
    setting ``claim_key`` to NULL, so the failed row stays in history and a
    later tick may claim the occurrence again. Both only move a row out of
    ``pending``: once ``release_stale_claims()`` has failed a slow row, its
    late outcome is dropped so a re-claimed occurrence never ends up with two
    ``executed`` rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from partnerhub.core.exceptions import NotFoundError, PersistenceError
from partnerhub.models import db
from partnerhub.models.escalation import (
    LOG_EXECUTED,
    LOG_FAILED,
    LOG_PENDING,
    EscalationLog,
    EscalationRule,
)
from partnerhub.utils.helpers import db_commit_or_raise, paginate

logger = logging.getLogger(__name__)

_MAX_ERROR_LEN = 2000


class EscalationLogService:
    """Stateless service over the escalation log table."""

    # ── Claim lifecycle ───────────────────────────────────────────────────

    @staticmethod
    def claim(rule, task, occurrence_key: str, tick_id: str | None = None) -> EscalationLog | None:
        """Insert a pending row holding ``occurrence_key``.

        Returns the row, or None when a pending/executed row already holds
        the key (or the task vanished since it was read).
        """
        log = EscalationLog(
            rule_id=rule.id,
            rule_name=rule.name,
            trigger_type=rule.trigger_type,
            action=rule.action,
            task_id=task.id,
            project_id=task.project_id,
            occurrence_key=occurrence_key,
            claim_key=occurrence_key,
            status=LOG_PENDING,
            tick_id=tick_id,
        )
        db.session.add(log)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.debug("Occurrence already claimed: %s", occurrence_key,
                         extra={"occurrence_key": occurrence_key, "tick_id": tick_id})
            return None
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Claim failed for %s", occurrence_key)
            raise PersistenceError("Could not claim escalation occurrence") from exc
        return log

    @staticmethod
    def mark_executed(log_id: int, detail: str, notified_users=None) -> EscalationLog | None:
        """Record a successful dispatch on a still-pending row.

        Returns None when the row is no longer pending: its claim was released
        as abandoned while the dispatch ran, and another tick may already own
        the occurrence.
        """
        return EscalationLogService._finish(
            log_id,
            "mark escalation executed",
            status=LOG_EXECUTED,
            action_detail=detail,
            notified_users=list(notified_users or []),
            executed_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def mark_failed(log_id: int, error: str) -> EscalationLog | None:
        """Record a failed dispatch and release the occurrence claim.

        Returns None when the row is no longer pending.
        """
        return EscalationLogService._finish(
            log_id,
            "mark escalation failed",
            status=LOG_FAILED,
            claim_key=None,
            error_message=(error or "")[:_MAX_ERROR_LEN],
        )

    @staticmethod
    def _finish(log_id: int, action: str, **values) -> EscalationLog | None:
        result = db.session.execute(
            update(EscalationLog)
            .where(EscalationLog.id == log_id, EscalationLog.status == LOG_PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db_commit_or_raise(action)
        log = EscalationLogService.get_log(log_id)
        db.session.refresh(log)
        if result.rowcount != 1:
            logger.warning(
                "Escalation outcome superseded: log %s is already %s", log_id, log.status,
                extra={"occurrence_key": log.occurrence_key, "tick_id": log.tick_id},
            )
            return None
        return log

    def release_stale_claims(older_than: datetime) -> int:
        """Fail pending rows created before ``older_than``.

        A pending row older than the tick lease belongs to a tick that died
        mid-dispatch; without this its claim would block the occurrence forever.
        """
        count = (
            EscalationLog.query
            .filter(EscalationLog.status == LOG_PENDING, EscalationLog.created_at < older_than)
            .update(
                {
                    "status": LOG_FAILED,
                    "claim_key": None,
                    "error_message": "abandoned: tick ended before dispatch completed",
                },
                synchronize_session=False,
            )
        )
        db_commit_or_raise("release stale escalation claims")
        if count:
            logger.warning("Released %d abandoned escalation claims", count)
        return count

    # ── Queries ───────────────────────────────────────────────────────────

    @staticmethod
    def get_log(log_id: int) -> EscalationLog:
        log = db.session.get(EscalationLog, log_id)
        if not log:
            raise NotFoundError(resource="EscalationLog", resource_id=log_id)
        return log

    @staticmethod
    def list_logs(*, project_id=None, task_id=None, rule_id=None, action=None,
                  status=None, created_from=None, created_to=None,
                  limit=50, offset=0):
        """Filtered log listing, newest first. Returns ``(items, total)``."""
        q = EscalationLog.query
        if project_id is not None:
            q = q.filter(EscalationLog.project_id == project_id)
        if task_id is not None:
            q = q.filter(EscalationLog.task_id == task_id)
        if rule_id is not None:
            q = q.filter(EscalationLog.rule_id == rule_id)
        if action:
            q = q.filter(EscalationLog.action == action)
        if status:
            q = q.filter(EscalationLog.status == status)
        if created_from is not None:
            q = q.filter(EscalationLog.created_at >= created_from)
        if created_to is not None:
            q = q.filter(EscalationLog.created_at <= created_to)
        q = q.order_by(EscalationLog.created_at.desc(), EscalationLog.id.desc())
        return paginate(q, limit, offset)

    @staticmethod
    def history_for_project(project_id: int, limit: int = 50) -> list[EscalationLog]:
        return (
            EscalationLog.query.filter_by(project_id=project_id)
            .order_by(EscalationLog.created_at.desc(), EscalationLog.id.desc())
            .limit(limit)
            .all()
        )

    # ── Statistics ────────────────────────────────────────────────────────

    @staticmethod
    def statistics(now: datetime | None = None) -> dict:
        """Rule and log counters for the admin dashboard."""
        now = now or datetime.now(timezone.utc)
        by_status = db.session.query(EscalationLog.status, func.count(EscalationLog.id)) \
            .group_by(EscalationLog.status).all()
        by_action = db.session.query(EscalationLog.action, func.count(EscalationLog.id)) \
            .group_by(EscalationLog.action).all()
        return {
            "total_rules": EscalationRule.query.count(),
            "active_rules": EscalationRule.query.filter_by(status="active").count(),
            "total_logs": EscalationLog.query.count(),
            "logs_by_status": {status: count for status, count in by_status},
            "logs_by_action": {action: count for action, count in by_action},
            "recent_escalations": EscalationLog.query.filter(
                EscalationLog.created_at >= now - timedelta(hours=24)
            ).count(),
        }
