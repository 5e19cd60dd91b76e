"""
Shared pytest fixtures for the Partner Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - transport: RecordingTransport installed as the app's notification transport
    - org / owner / admin / assignee / project: a small pre-built world
    - make_user / make_task: factories
"""

from datetime import date

import pytest

from partnerhub import create_app
from partnerhub.core.exceptions import DispatchError
from partnerhub.models import db as _db


class RecordingTransport:
    """Notification transport that only remembers what it was asked to send."""

    def __init__(self):
        self.sent = []

    def send(self, recipients, subject, body, *, category="escalation",
             severity="warning", entity_type="task", entity_id=None):
        self.sent.append({
            "recipients": list(recipients),
            "subject": subject,
            "body": body,
            "category": category,
            "severity": severity,
            "entity_type": entity_type,
            "entity_id": entity_id,
        })

    def emails(self):
        return [r.email for call in self.sent for r in call["recipients"]]


class FailingTransport(RecordingTransport):
    """Raises for subjects containing ``fail_on`` (every send when None)."""

    def __init__(self, fail_on=None, error=None):
        super().__init__()
        self.fail_on = fail_on
        self.error = error or DispatchError("smtp down")
        self.attempts = 0

    def send(self, recipients, subject, body, **kwargs):
        self.attempts += 1
        if self.fail_on is None or self.fail_on in subject:
            raise self.error
        super().send(recipients, subject, body, **kwargs)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def transport(app):
    """Swap the platform transport for a recording one for this test."""
    previous = app.extensions.get("notification_transport")
    recorder = RecordingTransport()
    app.extensions["notification_transport"] = recorder
    yield recorder
    app.extensions["notification_transport"] = previous


# ── Domain factories ─────────────────────────────────────────────────────


@pytest.fixture()
def org():
    from partnerhub.models.auth import Organization
    o = Organization(name="Acme Partners", slug="acme")
    _db.session.add(o)
    _db.session.commit()
    return o


@pytest.fixture()
def make_user(org):
    from partnerhub.models.auth import User

    def _make(email, role="member", full_name=None, status="active", organization=None):
        u = User(
            organization_id=(organization or org).id,
            email=email,
            full_name=full_name,
            role=role,
            status=status,
        )
        _db.session.add(u)
        _db.session.commit()
        return u

    return _make


@pytest.fixture()
def owner(make_user):
    return make_user("owner@acme.test", full_name="Olivia Owner")


@pytest.fixture()
def admin(make_user):
    return make_user("admin@acme.test", role="admin", full_name="Ada Admin")


@pytest.fixture()
def assignee(make_user):
    return make_user("assignee@acme.test", full_name="Sam Assignee")


@pytest.fixture()
def project(org, owner):
    from partnerhub.models.project import Project
    p = Project(organization_id=org.id, name="Harbour Expansion", owner_id=owner.id)
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def make_task(project):
    from partnerhub.models.project import Task

    def _make(title="Pour foundations", due_date=date(2024, 1, 10), progress=0,
              status="in_progress", assignee=None, project_id=None):
        t = Task(
            project_id=project_id or project.id,
            title=title,
            due_date=due_date,
            progress=progress,
            status=status,
            assignee_id=assignee.id if assignee else None,
        )
        _db.session.add(t)
        _db.session.commit()
        return t

    return _make


@pytest.fixture()
def make_rule():
    from partnerhub.services.escalation_rule_service import EscalationRuleService

    def _make(trigger_type="days_after_due", trigger_value=1, action="notify_owner",
              priority=1, name=None, project_id=None, status="active"):
        data = {
            "name": name or f"{trigger_type} {trigger_value} {action}",
            "trigger_type": trigger_type,
            "trigger_value": trigger_value,
            "action": action,
            "priority": priority,
            "status": status,
        }
        if project_id is not None:
            data["project_id"] = project_id
        return EscalationRuleService.create_rule(data)

    return _make
