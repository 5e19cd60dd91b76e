"""
Partner Hub
Progress report model: token-gated external submission.

Lifecycle:
    issued (pending, is_submitted=False)
        → submitted (is_submitted=True)      one conditional write
        → reviewed | rejected                 internal reviewer
    issued → expired      computed from token_expires_at, no write
    issued → deactivated  deactivated_at set, token treated as expired
"""

from datetime import datetime, timezone

from partnerhub.models import db


REPORT_PENDING = "pending"
REPORT_SUBMITTED = "submitted"
REPORT_REVIEWED = "reviewed"
REPORT_REJECTED = "rejected"
REPORT_STATUSES = {REPORT_PENDING, REPORT_SUBMITTED, REPORT_REVIEWED, REPORT_REJECTED}
REVIEW_DECISIONS = {REPORT_REVIEWED, REPORT_REJECTED}


class ProgressReport(db.Model):
    """Progress report requested from an external partner for one task."""

    __tablename__ = "progress_reports"
    __table_args__ = (
        db.UniqueConstraint("report_token", name="uq_progress_reports_token"),
        db.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_progress_reports_progress"),
        db.Index("ix_progress_reports_unsubmitted_expiry", "is_submitted", "token_expires_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    reporter_name = db.Column(db.String(200), nullable=False)
    reporter_email = db.Column(db.String(255), nullable=False)
    progress = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=REPORT_PENDING)
    comment = db.Column(db.Text, nullable=True)
    attachment_urls = db.Column(db.JSON, nullable=True)

    report_token = db.Column(db.String(128), nullable=False)
    token_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_submitted = db.Column(db.Boolean, nullable=False, default=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewer_comment = db.Column(db.Text, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    task = db.relationship("Task")

    def to_dict(self, include_token=False):
        d = {
            "id": self.id,
            "task_id": self.task_id,
            "reporter_name": self.reporter_name,
            "reporter_email": self.reporter_email,
            "progress": self.progress,
            "status": self.status,
            "comment": self.comment,
            "attachment_urls": self.attachment_urls or [],
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "deactivated": self.deactivated_at is not None,
            "is_submitted": self.is_submitted,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "reviewer_id": self.reviewer_id,
            "reviewer_comment": self.reviewer_comment,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_token:
            d["report_token"] = self.report_token
        return d

    def __repr__(self):
        return f"<ProgressReport {self.id}: task={self.task_id} [{self.status}]>"
