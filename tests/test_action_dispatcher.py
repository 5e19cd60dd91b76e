"""
Partner Hub
Tests: action dispatcher and platform transport.
"""

import time

import pytest

from partnerhub.core.exceptions import DispatchError
from partnerhub.models import db
from partnerhub.models.notification import Notification
from partnerhub.models.project import ProjectStakeholder
from partnerhub.models.scheduling import EmailLog
from partnerhub.services.action_dispatcher import (
    ACTION_HANDLERS,
    NO_RECIPIENTS,
    ActionDispatcher,
    build_message,
)
from partnerhub.services.entity_directory import TaskDirectory
from partnerhub.services.notification import PlatformTransport
from partnerhub.services.trigger_evaluator import RuleSnapshot

from conftest import FailingTransport, RecordingTransport


def _pair(make_rule, task, action, **kw):
    return RuleSnapshot.of(make_rule(action=action, **kw)), TaskDirectory.snapshot(task)


class TestHandlers:

    def test_lookup_table_is_closed(self):
        assert set(ACTION_HANDLERS) == {"notify_owner", "notify_stakeholders", "escalate_to_manager"}

    def test_notify_owner(self, make_rule, make_task, assignee):
        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_owner")
        transport = RecordingTransport()
        result = ActionDispatcher(transport).dispatch(rule, task)
        assert result.detail == "Notified task assignee"
        assert result.notified_user_ids == [assignee.id]
        assert transport.emails() == ["assignee@acme.test"]
        assert transport.sent[0]["subject"] == f"Escalation: {rule.name}"

    def test_notify_stakeholders_dedupes_assignee(self, make_rule, make_task, make_user, assignee, project):
        partner = make_user("partner@acme.test", role="partner")
        db.session.add_all([
            ProjectStakeholder(project_id=project.id, user_id=assignee.id),
            ProjectStakeholder(project_id=project.id, user_id=partner.id, tier=2),
        ])
        db.session.commit()
        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_stakeholders")
        transport = RecordingTransport()
        result = ActionDispatcher(transport).dispatch(rule, task)
        assert result.detail == "Notified 2 stakeholder(s)"
        assert sorted(transport.emails()) == ["assignee@acme.test", "partner@acme.test"]

    def test_escalate_to_manager(self, make_rule, make_task, admin, assignee):
        rule, task = _pair(make_rule, make_task(assignee=assignee), "escalate_to_manager")
        transport = RecordingTransport()
        result = ActionDispatcher(transport).dispatch(rule, task)
        assert result.detail == "Escalated to 1 manager(s)"
        call = transport.sent[0]
        assert call["severity"] == "error"
        assert call["subject"].startswith("[URGENT]")
        assert call["body"].startswith("[ESCALATION] ")
        assert transport.emails() == ["admin@acme.test"]

    def test_no_recipients_is_success(self, make_rule, make_task):
        rule, task = _pair(make_rule, make_task(), "notify_owner")
        transport = RecordingTransport()
        result = ActionDispatcher(transport).dispatch(rule, task)
        assert result.detail == NO_RECIPIENTS
        assert transport.sent == []

    def test_inactive_assignee_is_skipped(self, make_rule, make_task, make_user):
        gone = make_user("gone@acme.test", status="inactive")
        rule, task = _pair(make_rule, make_task(assignee=gone), "notify_owner")
        assert ActionDispatcher(RecordingTransport()).dispatch(rule, task).detail == NO_RECIPIENTS

    def test_message_body(self, make_rule, make_task):
        rule, task = _pair(make_rule, make_task(progress=40), "notify_owner")
        body = build_message(rule, task)
        assert "Pour foundations" in body
        assert "Due date: 2024-01-10" in body
        assert "Progress: 40%" in body


class TestFailures:

    def test_transport_dispatch_error_propagates(self, make_rule, make_task, assignee):
        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_owner")
        with pytest.raises(DispatchError):
            ActionDispatcher(FailingTransport()).dispatch(rule, task)

    def test_unexpected_transport_error_is_wrapped(self, make_rule, make_task, assignee):
        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_owner")
        transport = FailingTransport(error=ConnectionResetError("peer reset"))
        with pytest.raises(DispatchError, match="peer reset"):
            ActionDispatcher(transport).dispatch(rule, task)

    def test_timeout(self, make_rule, make_task, assignee):
        class SlowTransport(RecordingTransport):
            def send(self, *args, **kwargs):
                time.sleep(0.5)

        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_owner")
        dispatcher = ActionDispatcher(SlowTransport(), timeout_seconds=0.05)
        try:
            with pytest.raises(DispatchError, match="timed out"):
                dispatcher.dispatch(rule, task)
        finally:
            dispatcher.close()

    def test_within_timeout_succeeds(self, make_rule, make_task, assignee):
        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_owner")
        transport = RecordingTransport()
        dispatcher = ActionDispatcher(transport, timeout_seconds=5)
        try:
            assert dispatcher.dispatch(rule, task).detail == "Notified task assignee"
        finally:
            dispatcher.close()
        assert len(transport.sent) == 1


class TestPlatformTransport:

    def test_writes_notification_and_email_log(self, make_rule, make_task, assignee):
        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_owner")
        ActionDispatcher(PlatformTransport()).dispatch(rule, task)
        db.session.commit()

        notification = Notification.query.one()
        assert notification.user_id == assignee.id
        assert notification.entity_type == "task"
        assert notification.entity_id == task.id
        email = EmailLog.query.one()
        assert email.recipient_email == "assignee@acme.test"
        assert email.status == "sent"

    def test_email_failure_raises(self, make_rule, make_task, assignee, monkeypatch):
        from partnerhub.services import email_service

        def _boom(*args, **kwargs):
            raise OSError("connection refused")

        monkeypatch.setattr(email_service.EmailService, "is_configured", staticmethod(lambda: True))
        monkeypatch.setattr(email_service.EmailService, "_send_smtp", staticmethod(_boom))
        rule, task = _pair(make_rule, make_task(assignee=assignee), "notify_owner")
        with pytest.raises(DispatchError, match="Email delivery failed"):
            ActionDispatcher(PlatformTransport()).dispatch(rule, task)
