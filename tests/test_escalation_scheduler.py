"""
Partner Hub
Tests: escalation scheduler ticks.

Covers:
    1. End-to-end tick over seeded rules
    2. Idempotence: same day never re-fires, next day does
    3. Concurrent ticks (interleaved plan/execute, slow dispatch) dispatch once
    4. Single-flight lease
    5. Failure isolation and retry of released claims
    6. progress_below re-arm / fire-once
"""

from datetime import datetime, timedelta, timezone

import pytest

from partnerhub.config import EscalationSettings
from partnerhub.core.exceptions import PersistenceError
from partnerhub.models import db
from partnerhub.models.escalation import EscalationLog, EscalationTriggerState
from partnerhub.services.action_dispatcher import ActionDispatcher
from partnerhub.services.escalation_log_service import EscalationLogService
from partnerhub.services.escalation_rule_service import EscalationRuleService
from partnerhub.services.escalation_scheduler import (
    JOB_NAME,
    EscalationScheduler,
    build_escalation_scheduler,
)
from partnerhub.services.scheduler_service import SchedulerService

from conftest import FailingTransport, RecordingTransport

NOW = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def _scheduler(transport, **settings):
    return EscalationScheduler(ActionDispatcher(transport), EscalationSettings(**settings))


def _executed():
    return EscalationLog.query.filter_by(status="executed").all()


class TestTick:

    def test_seeded_rules_scenario(self, make_task, assignee, admin):
        EscalationRuleService.seed_default_rules()
        make_task(title="Overdue 5d", assignee=assignee, progress=80)
        transport = RecordingTransport()

        report = _scheduler(transport).run_tick(now=NOW)

        # 1d and 3d overdue rules match; 7d/14d do not; progress 80% is fine
        assert report.matched == 2
        assert report.executed == 2
        assert report.failed == 0
        details = sorted(log.action_detail for log in _executed())
        assert details == ["Notified 1 stakeholder(s)", "Notified task assignee"]
        assert {log.occurrence_key.rsplit(":", 1)[1] for log in _executed()} == {"5"}

    def test_same_day_does_not_refire(self, make_rule, make_task, assignee):
        make_rule()
        make_task(assignee=assignee)
        transport = RecordingTransport()
        scheduler = _scheduler(transport)

        first = scheduler.run_tick(now=NOW)
        second = scheduler.run_tick(now=NOW + timedelta(hours=3))

        assert (first.executed, second.executed, second.skipped) == (1, 0, 1)
        assert len(transport.sent) == 1

    def test_next_day_fires_again(self, make_rule, make_task, assignee):
        make_rule()
        make_task(assignee=assignee)
        scheduler = _scheduler(RecordingTransport())
        scheduler.run_tick(now=NOW)
        assert scheduler.run_tick(now=NOW + timedelta(days=1)).executed == 1
        assert len(_executed()) == 2

    def test_completed_and_undated_tasks_ignored(self, make_rule, make_task, assignee):
        make_rule()
        make_task(status="completed", assignee=assignee)
        make_task(due_date=None, assignee=assignee)
        report = _scheduler(RecordingTransport()).run_tick(now=NOW)
        assert report.pairs_evaluated == 0
        assert report.matched == 0

    def test_inactive_rules_not_evaluated(self, make_rule, make_task):
        make_rule(status="inactive")
        make_task()
        assert _scheduler(RecordingTransport()).run_tick(now=NOW).rules_evaluated == 0

    def test_project_bound_rule(self, make_rule, make_task, org, owner, assignee):
        from partnerhub.models.project import Project
        other = Project(organization_id=org.id, name="Other", owner_id=owner.id)
        db.session.add(other)
        db.session.commit()
        make_rule(project_id=other.id)
        make_task(assignee=assignee)
        make_task(title="Other task", assignee=assignee, project_id=other.id)

        report = _scheduler(RecordingTransport()).run_tick(now=NOW)
        assert report.executed == 1
        assert _executed()[0].project_id == other.id

    def test_check_scoped_to_project(self, make_rule, make_task, org, owner, assignee):
        from partnerhub.models.project import Project
        other = Project(organization_id=org.id, name="Other", owner_id=owner.id)
        db.session.add(other)
        db.session.commit()
        make_rule()
        make_rule(name="Other only", trigger_value=2, project_id=other.id)
        make_task(assignee=assignee)
        make_task(title="Other task", assignee=assignee, project_id=other.id)

        report = _scheduler(RecordingTransport()).run_tick(now=NOW, project_id=other.id)

        assert report.rules_evaluated == 2
        assert report.executed == 2
        assert {log.project_id for log in _executed()} == {other.id}

    def test_check_scoped_to_task(self, make_rule, make_task, assignee):
        make_rule()
        target = make_task(assignee=assignee)
        make_task(title="Untouched", assignee=assignee)

        report = _scheduler(RecordingTransport()).run_tick(now=NOW, task_id=target.id)

        assert report.pairs_evaluated == 1
        assert [log.task_id for log in _executed()] == [target.id]

    def test_rule_bound_elsewhere_skipped_by_project_scope(self, make_rule, make_task, project, org, owner):
        from partnerhub.models.project import Project
        other = Project(organization_id=org.id, name="Other", owner_id=owner.id)
        db.session.add(other)
        db.session.commit()
        make_rule(project_id=other.id)
        make_task()
        report = _scheduler(RecordingTransport()).run_tick(now=NOW, project_id=project.id)
        assert report.rules_evaluated == 0

    def test_no_recipients_logged_as_executed(self, make_rule, make_task):
        make_rule()
        make_task()
        _scheduler(RecordingTransport()).run_tick(now=NOW)
        assert _executed()[0].action_detail == "no recipients"


class TestConcurrency:

    def test_interleaved_ticks_dispatch_once(self, make_rule, make_task, assignee):
        make_rule(action="notify_owner")
        make_rule(action="notify_stakeholders", trigger_value=2)
        make_task(assignee=assignee)
        make_task(title="Second", assignee=assignee)
        transport_a, transport_b = RecordingTransport(), RecordingTransport()
        tick_a, tick_b = _scheduler(transport_a), _scheduler(transport_b)

        plan_a = tick_a.plan(NOW)
        plan_b = tick_b.plan(NOW)
        report_a = tick_a.execute(plan_a, "tick-a")
        report_b = tick_b.execute(plan_b, "tick-b")

        assert report_a.executed == 4
        assert report_b.executed == 0
        assert report_b.skipped == 4
        assert transport_b.sent == []
        keys = [log.occurrence_key for log in _executed()]
        assert len(keys) == len(set(keys)) == 4

    def test_lease_denied(self, make_rule, make_task, assignee):
        make_rule()
        make_task(assignee=assignee)
        assert SchedulerService.acquire_lease(JOB_NAME, "other-worker", 600)

        report = _scheduler(RecordingTransport()).run_tick(now=NOW)

        assert report.lease_denied is True
        assert EscalationLog.query.count() == 0
        SchedulerService.release_lease(JOB_NAME, "other-worker")

    def test_expired_lease_is_taken_over(self, make_rule, make_task, assignee):
        make_rule()
        make_task(assignee=assignee)
        long_ago = datetime.now(timezone.utc) - timedelta(hours=1)
        assert SchedulerService.acquire_lease(JOB_NAME, "dead-worker", 60, now=long_ago)

        report = _scheduler(RecordingTransport()).run_tick(now=NOW)
        assert not report.lease_denied
        assert report.executed == 1

    def test_slow_dispatch_taken_over_by_next_tick(self, make_rule, make_task, assignee):
        make_rule()
        make_task(assignee=assignee)
        tick_b = _scheduler(RecordingTransport())
        reports = {}

        class _SlowTransport(RecordingTransport):
            """Delivers only after a later tick has released and re-claimed the occurrence."""

            def send(self, recipients, subject, body, **kwargs):
                EscalationLogService.release_stale_claims(datetime.now(timezone.utc) + timedelta(hours=1))
                reports["b"] = tick_b.execute(tick_b.plan(NOW), "tick-b")
                super().send(recipients, subject, body, **kwargs)

        tick_a = _scheduler(_SlowTransport())
        report_a = tick_a.execute(tick_a.plan(NOW), "tick-a")

        assert reports["b"].executed == 1
        assert (report_a.executed, report_a.skipped) == (0, 1)
        rows = {log.tick_id: log.status for log in EscalationLog.query.all()}
        assert rows == {"tick-a": "failed", "tick-b": "executed"}
        assert len({log.occurrence_key for log in _executed()}) == len(_executed()) == 1

    def test_lease_released_after_tick(self, make_rule, make_task):
        _scheduler(RecordingTransport()).run_tick(now=NOW)
        assert SchedulerService.get_job_status(JOB_NAME)["lease_owner"] is None


class TestFailureIsolation:

    def test_failed_dispatch_does_not_abort_tick(self, make_rule, make_task, assignee):
        make_rule(name="Breaks")
        make_rule(name="Works", trigger_value=2)
        make_task(assignee=assignee)

        report = _scheduler(FailingTransport(fail_on="Breaks")).run_tick(now=NOW)

        assert (report.executed, report.failed) == (1, 1)
        failed = EscalationLog.query.filter_by(status="failed").one()
        assert failed.rule_name == "Breaks"
        assert failed.claim_key is None
        assert "smtp down" in failed.error_message

    def test_failed_occurrence_retried_next_tick(self, make_rule, make_task, assignee):
        make_rule()
        make_task(assignee=assignee)
        _scheduler(FailingTransport()).run_tick(now=NOW)

        retry = _scheduler(RecordingTransport()).run_tick(now=NOW + timedelta(minutes=5))

        assert retry.executed == 1
        statuses = sorted(log.status for log in EscalationLog.query.all())
        assert statuses == ["executed", "failed"]

    def test_unexpected_error_is_contained(self, make_rule, make_task, assignee):
        make_rule()
        make_task(assignee=assignee)
        report = _scheduler(FailingTransport(error=KeyError("boom"))).run_tick(now=NOW)
        assert report.failed == 1
        assert EscalationLog.query.one().status == "failed"

    def test_store_failure_aborts_tick(self, make_rule, make_task, assignee, monkeypatch):
        make_rule()
        make_task(assignee=assignee)

        def _broken(*args, **kwargs):
            raise PersistenceError("store down")

        monkeypatch.setattr(EscalationLogService, "claim", staticmethod(_broken))
        with pytest.raises(PersistenceError):
            _scheduler(RecordingTransport()).run_tick(now=NOW)
        # Lease is still released
        assert SchedulerService.get_job_status(JOB_NAME)["lease_owner"] is None

    def test_abandoned_claim_released_by_next_tick(self, make_rule, make_task, assignee):
        rule = make_rule()
        task = make_task(assignee=assignee)
        key = f"{rule.id}:{task.id}:days_after_due:5"
        db.session.add(EscalationLog(
            rule_id=rule.id, rule_name=rule.name, task_id=task.id, action=rule.action,
            status="pending", occurrence_key=key, claim_key=key,
            created_at=datetime.now(timezone.utc) - timedelta(hours=2),
        ))
        db.session.commit()

        report = _scheduler(RecordingTransport()).run_tick(now=NOW)
        assert report.executed == 1


class TestProgressBelow:

    def _set_progress(self, task, value):
        task.progress = value
        db.session.commit()

    def test_fires_once_while_below(self, make_rule, make_task, assignee):
        make_rule("progress_below", 50)
        make_task(assignee=assignee, progress=10, due_date=None)
        scheduler = _scheduler(RecordingTransport())
        assert scheduler.run_tick(now=NOW).executed == 1
        assert scheduler.run_tick(now=NOW + timedelta(days=3)).executed == 0

    def test_rearms_after_rise(self, make_rule, make_task, assignee):
        make_rule("progress_below", 50)
        task = make_task(assignee=assignee, progress=10)
        scheduler = _scheduler(RecordingTransport())

        scheduler.run_tick(now=NOW)
        self._set_progress(task, 70)
        assert scheduler.run_tick(now=NOW + timedelta(hours=1)).matched == 0
        self._set_progress(task, 30)
        assert scheduler.run_tick(now=NOW + timedelta(hours=2)).executed == 1

        keys = sorted(log.occurrence_key.rsplit(":", 1)[1] for log in _executed())
        assert keys == ["1", "2"]
        state = EscalationTriggerState.query.one()
        assert (state.last_matched, state.cycle) == (True, 2)

    def test_fire_once_when_rearm_disabled(self, make_rule, make_task, assignee):
        make_rule("progress_below", 50)
        task = make_task(assignee=assignee, progress=10)
        scheduler = _scheduler(RecordingTransport(), progress_below_rearm=False)

        scheduler.run_tick(now=NOW)
        self._set_progress(task, 70)
        scheduler.run_tick(now=NOW + timedelta(hours=1))
        self._set_progress(task, 30)
        assert scheduler.run_tick(now=NOW + timedelta(hours=2)).executed == 0
        assert len(_executed()) == 1


class TestWiring:

    def test_build_from_app_config(self, app, transport):
        previous = app.config["ESCALATION_DISPATCH_TIMEOUT_SECONDS"]
        app.config["ESCALATION_DISPATCH_TIMEOUT_SECONDS"] = 2.5
        try:
            scheduler = build_escalation_scheduler()
        finally:
            app.config["ESCALATION_DISPATCH_TIMEOUT_SECONDS"] = previous
        assert scheduler.dispatcher.transport is transport
        assert scheduler.dispatcher.timeout_seconds == 2.5
        assert scheduler.settings.progress_below_rearm is True

    def test_default_dispatch_timeout_is_bounded(self, app, transport):
        scheduler = build_escalation_scheduler()
        timeout = scheduler.dispatcher.timeout_seconds
        assert timeout is not None
        assert 0 < timeout < scheduler.settings.tick_lease_seconds

    def test_timeout_must_stay_below_lease(self):
        with pytest.raises(ValueError):
            EscalationSettings(dispatch_timeout_seconds=900, tick_lease_seconds=600)
