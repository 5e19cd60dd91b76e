"""
Partner Hub
Escalation Scheduler: one tick over all active rules × eligible tasks.

A tick has two phases:

    plan(now)      read-only. Loads active rules in priority order, the
                   eligible tasks for each rule, and the stored trigger
                   states, then runs the evaluator on every pair.
    execute(plan)  persists the new trigger states, then for every match
                   claims the occurrence (unique insert), dispatches, and
                   marks the log row executed or failed.

``run_tick()`` wraps both phases in the single-flight lease of the
``escalation_check`` job. Correctness does not depend on the lease: two
executes of the same plan race on the claim insert and exactly one wins.

Failure isolation:
    A DispatchError (or any unexpected error inside dispatch) is rolled back,
    recorded as ``failed`` on that pair's row, and the tick moves on. A store
    failure (PersistenceError) aborts the tick; re-running it is safe because
    occurrence keys make re-evaluation idempotent. A dispatch whose row was
    already failed by a later tick's ``release_stale_claims`` counts as
    ``skipped``: the occurrence belongs to whoever claimed it next.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from partnerhub.config import EscalationSettings
from partnerhub.core.exceptions import DispatchError, PersistenceError
from partnerhub.models import db
from partnerhub.models.escalation import TRIGGER_PROGRESS_BELOW, EscalationTriggerState
from partnerhub.services.action_dispatcher import ActionDispatcher
from partnerhub.services.entity_directory import TaskDirectory
from partnerhub.services.escalation_log_service import EscalationLogService
from partnerhub.services.escalation_rule_service import EscalationRuleService
from partnerhub.services.notification import get_transport
from partnerhub.services.scheduler_service import SchedulerService
from partnerhub.services.trigger_evaluator import RuleSnapshot, TriggerState, evaluate

logger = logging.getLogger(__name__)

JOB_NAME = "escalation_check"


@dataclass(frozen=True)
class PlannedMatch:
    rule: RuleSnapshot
    task: object
    occurrence_key: str


@dataclass
class TickPlan:
    now: datetime
    rules_evaluated: int = 0
    pairs_evaluated: int = 0
    matches: list[PlannedMatch] = field(default_factory=list)
    # (rule_id, task_id) -> new state, only where it differs from the stored one
    state_changes: dict = field(default_factory=dict)


@dataclass
class TickReport:
    tick_id: str
    rules_evaluated: int = 0
    pairs_evaluated: int = 0
    matched: int = 0
    executed: int = 0
    skipped: int = 0
    failed: int = 0
    lease_denied: bool = False

    def to_dict(self):
        return {
            "tick_id": self.tick_id,
            "rules_evaluated": self.rules_evaluated,
            "pairs_evaluated": self.pairs_evaluated,
            "matched": self.matched,
            "executed": self.executed,
            "skipped": self.skipped,
            "failed": self.failed,
            "lease_denied": self.lease_denied,
        }


def _new_tick_id() -> str:
    return uuid.uuid4().hex[:12]


class EscalationScheduler:
    """Evaluates rules against tasks and dispatches each occurrence once."""

    def __init__(self, dispatcher: ActionDispatcher, settings: EscalationSettings | None = None,
                 directory=TaskDirectory):
        self.dispatcher = dispatcher
        self.settings = settings or EscalationSettings()
        self.directory = directory

    # ── Phase 1: plan ─────────────────────────────────────────────────────

    def plan(self, now: datetime, project_id: int | None = None, task_id: int | None = None) -> TickPlan:
        """Evaluate every active rule, optionally narrowed to one project or task."""
        rules = [
            RuleSnapshot.of(r) for r in EscalationRuleService.active_rules()
            if project_id is None or r.project_id in (None, project_id)
        ]
        plan = TickPlan(now=now, rules_evaluated=len(rules))
        stored = self._load_states([r.id for r in rules if r.trigger_type == TRIGGER_PROGRESS_BELOW])
        task_cache: dict = {}

        for rule in rules:
            scope = rule.project_id if rule.project_id is not None else project_id
            cache_key = (rule.trigger_type, scope)
            if cache_key not in task_cache:
                task_cache[cache_key] = self.directory.eligible_tasks(
                    rule.trigger_type, scope, task_id=task_id,
                )

            for task in task_cache[cache_key]:
                plan.pairs_evaluated += 1
                previous = stored.get((rule.id, task.id))
                result = evaluate(rule, task, now, previous,
                                  rearm=self.settings.progress_below_rearm)
                if result.state is not None and result.state != previous:
                    plan.state_changes[(rule.id, task.id)] = result.state
                if result.matched:
                    plan.matches.append(PlannedMatch(rule, task, result.occurrence_key))

        return plan

    # ── Phase 2: execute ──────────────────────────────────────────────────

    def execute(self, plan: TickPlan, tick_id: str | None = None) -> TickReport:
        tick_id = tick_id or _new_tick_id()
        report = TickReport(
            tick_id=tick_id,
            rules_evaluated=plan.rules_evaluated,
            pairs_evaluated=plan.pairs_evaluated,
            matched=len(plan.matches),
        )
        self._persist_states(plan.state_changes, plan.now)

        for match in plan.matches:
            outcome = self._process(match, tick_id)
            setattr(report, outcome, getattr(report, outcome) + 1)

        logger.info(
            "Escalation tick %s: %d rules, %d pairs, %d matched, %d executed, %d skipped, %d failed",
            tick_id, report.rules_evaluated, report.pairs_evaluated, report.matched,
            report.executed, report.skipped, report.failed,
            extra={"tick_id": tick_id},
        )
        return report

    def _process(self, match: PlannedMatch, tick_id: str) -> str:
        rule, task, key = match.rule, match.task, match.occurrence_key
        extra = {"rule_id": rule.id, "task_id": task.id, "occurrence_key": key, "tick_id": tick_id}

        log = EscalationLogService.claim(rule, task, key, tick_id=tick_id)
        if log is None:
            return "skipped"
        log_id = log.id

        try:
            result = self.dispatcher.dispatch(rule, task)
        except DispatchError as exc:
            db.session.rollback()
            if EscalationLogService.mark_failed(log_id, str(exc)) is None:
                return "skipped"
            logger.warning("Escalation dispatch failed: %s", exc, extra=extra)
            return "failed"
        except SQLAlchemyError as exc:
            db.session.rollback()
            EscalationLogService.mark_failed(log_id, f"store error during dispatch: {exc}")
            raise PersistenceError("Store failure during escalation dispatch") from exc
        except Exception as exc:
            db.session.rollback()
            if EscalationLogService.mark_failed(log_id, f"{type(exc).__name__}: {exc}") is None:
                return "skipped"
            logger.exception("Unexpected error dispatching escalation", extra=extra)
            return "failed"

        if EscalationLogService.mark_executed(log_id, result.detail, result.notified_user_ids) is None:
            # Claim was released as abandoned mid-dispatch; another tick owns it now
            return "skipped"
        logger.info("Escalation executed: %s (%s)", rule.name, result.detail, extra=extra)
        return "executed"

    # ── Tick ──────────────────────────────────────────────────────────────

    def run_tick(self, now: datetime | None = None, project_id: int | None = None,
                 task_id: int | None = None) -> TickReport:
        """Plan and execute one tick under the single-flight lease.

        ``project_id`` / ``task_id`` narrow a manual check; the hourly job runs
        unscoped.
        """
        tick_id = _new_tick_id()
        wall_clock = datetime.now(timezone.utc)
        lease = self.settings.tick_lease_seconds

        if not SchedulerService.acquire_lease(JOB_NAME, tick_id, lease, now=wall_clock):
            logger.info("Escalation tick skipped: another tick is running", extra={"tick_id": tick_id})
            return TickReport(tick_id=tick_id, lease_denied=True)

        try:
            EscalationLogService.release_stale_claims(wall_clock - timedelta(seconds=lease))
            plan = self.plan(now or wall_clock, project_id=project_id, task_id=task_id)
            return self.execute(plan, tick_id)
        finally:
            self.dispatcher.close()
            SchedulerService.release_lease(JOB_NAME, tick_id)

    # ── Trigger state persistence ─────────────────────────────────────────

    @staticmethod
    def _load_states(rule_ids) -> dict:
        if not rule_ids:
            return {}
        rows = EscalationTriggerState.query.filter(EscalationTriggerState.rule_id.in_(rule_ids)).all()
        return {
            (row.rule_id, row.task_id): TriggerState(last_matched=row.last_matched, cycle=row.cycle)
            for row in rows
        }

    @staticmethod
    def _persist_states(changes: dict, now: datetime) -> None:
        if not changes:
            return
        for attempt in (1, 2):
            for (rule_id, task_id), state in changes.items():
                row = EscalationTriggerState.query.filter_by(rule_id=rule_id, task_id=task_id).first()
                if row is None:
                    row = EscalationTriggerState(rule_id=rule_id, task_id=task_id)
                    db.session.add(row)
                row.last_matched = state.last_matched
                row.cycle = state.cycle
                row.evaluated_at = now
            try:
                db.session.commit()
                return
            except IntegrityError as exc:
                # A concurrent tick inserted the same row; retry as an update
                db.session.rollback()
                if attempt == 2:
                    raise PersistenceError("Could not persist trigger state") from exc
            except SQLAlchemyError as exc:
                db.session.rollback()
                raise PersistenceError("Could not persist trigger state") from exc


def build_escalation_scheduler(transport=None, settings: EscalationSettings | None = None):
    """Scheduler wired from the current app's config and transport."""
    settings = settings or EscalationSettings.from_app(current_app)
    dispatcher = ActionDispatcher(
        transport or get_transport(),
        timeout_seconds=settings.dispatch_timeout_seconds,
    )
    return EscalationScheduler(dispatcher, settings)
