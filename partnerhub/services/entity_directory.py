"""
Partner Hub
Task/project read model for the escalation engine and report workflow.

Escalation code never touches ORM rows directly: it works on immutable
``TaskSnapshot`` values and resolves people to ``Recipient`` values here.
The single write (task progress after a report submission) goes through
``TaskDirectory.update_progress``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from partnerhub.models import db
from partnerhub.models.auth import User
from partnerhub.models.escalation import DATE_TRIGGER_TYPES
from partnerhub.models.project import Project, ProjectStakeholder, Task, TERMINAL_TASK_STATUSES
from partnerhub.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskSnapshot:
    """Point-in-time view of a task, as read at the start of a tick."""

    id: int
    project_id: int | None
    organization_id: int | None
    title: str
    status: str
    progress: int
    due_date: date | None
    assignee_id: int | None

    @property
    def is_completed(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES


@dataclass(frozen=True)
class Recipient:
    """Notification target. ``user_id`` is None for external partners."""

    user_id: int | None
    email: str | None
    name: str | None = None


def _recipient(user: User) -> Recipient:
    return Recipient(user_id=user.id, email=user.email, name=user.display_name)


def _unique(recipients):
    seen = set()
    result = []
    for r in recipients:
        key = r.user_id if r.user_id is not None else r.email
        if key in seen:
            continue
        seen.add(key)
        result.append(r)
    return result


class TaskDirectory:
    """Stateless read model over tasks, projects, stakeholders and admins."""

    # ── Snapshots ─────────────────────────────────────────────────────────

    @staticmethod
    def snapshot(task: Task, organization_id: int | None = None) -> TaskSnapshot:
        if organization_id is None and task.project_id is not None:
            project = db.session.get(Project, task.project_id)
            organization_id = project.organization_id if project else None
        return TaskSnapshot(
            id=task.id,
            project_id=task.project_id,
            organization_id=organization_id,
            title=task.title,
            status=task.status,
            progress=task.progress or 0,
            due_date=task.due_date,
            assignee_id=task.assignee_id,
        )

    @staticmethod
    def get_snapshot(task_id: int) -> TaskSnapshot:
        task = db.session.get(Task, task_id)
        if not task:
            raise NotFoundError(resource="Task", resource_id=task_id)
        return TaskDirectory.snapshot(task)

    @staticmethod
    def eligible_tasks(trigger_type: str, project_id: int | None = None,
                       task_id: int | None = None) -> list[TaskSnapshot]:
        """Open tasks a rule of ``trigger_type`` can match.

        Date triggers need a due date; ``progress_below`` takes every open task.
        """
        q = (
            db.session.query(Task, Project.organization_id)
            .outerjoin(Project, Task.project_id == Project.id)
            .filter(Task.status.notin_(TERMINAL_TASK_STATUSES))
        )
        if trigger_type in DATE_TRIGGER_TYPES:
            q = q.filter(Task.due_date.isnot(None))
        if project_id is not None:
            q = q.filter(Task.project_id == project_id)
        if task_id is not None:
            q = q.filter(Task.id == task_id)
        return [
            TaskDirectory.snapshot(task, organization_id=org_id)
            for task, org_id in q.order_by(Task.id).all()
        ]

    # ── Recipient resolution ──────────────────────────────────────────────

    @staticmethod
    def assignee(snapshot: TaskSnapshot) -> list[Recipient]:
        if snapshot.assignee_id is None:
            return []
        user = db.session.get(User, snapshot.assignee_id)
        if not user or user.status != "active":
            return []
        return [_recipient(user)]

    @staticmethod
    def stakeholders(snapshot: TaskSnapshot) -> list[Recipient]:
        """Assignee plus every registered stakeholder of the owning project."""
        recipients = list(TaskDirectory.assignee(snapshot))
        if snapshot.project_id is not None:
            users = (
                User.query.join(ProjectStakeholder, ProjectStakeholder.user_id == User.id)
                .filter(ProjectStakeholder.project_id == snapshot.project_id)
                .filter(User.status == "active")
                .order_by(User.id)
                .all()
            )
            recipients.extend(_recipient(u) for u in users)
        return _unique(recipients)

    @staticmethod
    def organization_admins(snapshot: TaskSnapshot) -> list[Recipient]:
        if snapshot.organization_id is None:
            return []
        users = (
            User.query.filter_by(organization_id=snapshot.organization_id, role="admin")
            .filter(User.status == "active")
            .order_by(User.id)
            .all()
        )
        return [_recipient(u) for u in users]

    @staticmethod
    def project_owner(task_id: int) -> Recipient | None:
        task = db.session.get(Task, task_id)
        if not task or task.project_id is None:
            return None
        project = db.session.get(Project, task.project_id)
        if not project or project.owner_id is None:
            return None
        owner = db.session.get(User, project.owner_id)
        return _recipient(owner) if owner else None

    @staticmethod
    def describe(task_id: int) -> dict:
        """Task title and project name for the public report form."""
        task = db.session.get(Task, task_id)
        if not task:
            return {"task_title": None, "project_name": None}
        project = db.session.get(Project, task.project_id) if task.project_id else None
        return {
            "task_title": task.title,
            "project_name": project.name if project else None,
            "due_date": task.due_date.isoformat() if task.due_date else None,
        }

    # ── Writes ────────────────────────────────────────────────────────────

    @staticmethod
    def update_progress(task_id: int, progress: int) -> Task:
        """Set a task's progress. Flushes; the caller commits."""
        task = db.session.get(Task, task_id)
        if not task:
            raise NotFoundError(resource="Task", resource_id=task_id)
        task.progress = progress
        db.session.flush()
        logger.info("Task progress updated to %d%%", progress, extra={"task_id": task_id})
        return task
