"""Project domain model: projects, their stakeholders and tasks."""

from datetime import datetime, timezone

from partnerhub.models import db

TASK_STATUSES = {"todo", "in_progress", "review", "completed", "cancelled"}
# Tasks in these states are never evaluated by escalation rules
TERMINAL_TASK_STATUSES = frozenset({"completed", "cancelled"})


class Project(db.Model):
    """Unit of partner collaboration owned by one organization."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="active")
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    owner = db.relationship("User", foreign_keys=[owner_id])
    tasks = db.relationship("Task", backref="project", lazy="dynamic")
    stakeholders = db.relationship(
        "ProjectStakeholder", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "status": self.status,
            "owner_id": self.owner_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class ProjectStakeholder(db.Model):
    """User registered as a stakeholder of a project."""

    __tablename__ = "project_stakeholders"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_stakeholder"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    tier = db.Column(db.Integer, default=1, comment="1 = direct partner, 2+ = upstream")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "tier": self.tier,
        }


class Task(db.Model):
    """Task with a due date and a progress percentage (0-100)."""

    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="todo")
    progress = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.Date, nullable=True, index=True)
    assignee_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignee = db.relationship("User", foreign_keys=[assignee_id])

    @property
    def is_completed(self):
        return self.status in TERMINAL_TASK_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "status": self.status,
            "progress": self.progress,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "assignee_id": self.assignee_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status} {self.progress}%]>"
