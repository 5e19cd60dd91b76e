"""
Partner Hub
Report Token Service: issue, validate and retire partner report links.

A ProgressReport row is created together with its token. The token is the
only credential the external partner holds: ``{FRONTEND_URL}/progress-report/<token>``.

Validation order (read-only, never consumes the token):
    unknown token        → NotFoundError
    past expiry / deactivated → ExpiredError
    already submitted    → AlreadySubmittedError

State-changing operations that must not touch a submitted report
(regenerate, deactivate) use a conditional UPDATE guarded on
``is_submitted = false`` instead of a read-then-write.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import or_, update

from partnerhub.config import ReportTokenSettings
from partnerhub.core.exceptions import (
    AlreadySubmittedError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from partnerhub.models import db
from partnerhub.models.progress_report import REPORT_PENDING, ProgressReport
from partnerhub.services.entity_directory import Recipient, TaskDirectory
from partnerhub.utils.helpers import db_commit_or_raise, ensure_utc

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def generate_token() -> str:
    """Opaque, URL-safe, cryptographically random token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def _now(now):
    return ensure_utc(now) if now is not None else datetime.now(timezone.utc)


class ReportTokenService:
    """Token lifecycle for partner progress reports."""

    def __init__(self, settings: ReportTokenSettings | None = None, transport=None):
        self.settings = settings or ReportTokenSettings()
        self.transport = transport

    # ── Issue ─────────────────────────────────────────────────────────────

    def issue(self, task_id: int, reporter_email: str, reporter_name: str | None = None,
              now: datetime | None = None) -> ProgressReport:
        """Create a pending report with a fresh token."""
        now = _now(now)
        try:
            reporter_email = validate_email(reporter_email or "", check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid email: {exc}", details={"reporter_email": str(exc)}) from exc
        TaskDirectory.get_snapshot(task_id)

        report = ProgressReport(
            task_id=task_id,
            reporter_email=reporter_email,
            reporter_name=(reporter_name or "").strip() or reporter_email,
            progress=0,
            status=REPORT_PENDING,
            report_token=generate_token(),
            token_expires_at=now + timedelta(hours=self.settings.validity_hours),
            is_submitted=False,
        )
        db.session.add(report)
        db_commit_or_raise("issue report token")
        logger.info("Report token issued", extra={"report_id": report.id, "task_id": task_id})
        return report

    def request_report(self, task_id: int, reporter_email: str, reporter_name: str | None = None,
                       now: datetime | None = None) -> ProgressReport:
        """Issue a token and email the partner the report link.

        A failed email is logged; the report stays issued and can be resent
        with ``regenerate`` or shared manually via ``report_url``.
        """
        report = self.issue(task_id, reporter_email, reporter_name, now=now)
        if self.transport is None:
            return report

        info = TaskDirectory.describe(task_id)
        url = self.report_url(report)
        expires = ensure_utc(report.token_expires_at)
        body = (
            f"Hello {report.reporter_name},\n\n"
            f"Please report your progress on \"{info['task_title']}\""
            f" ({info['project_name'] or 'Unknown project'}).\n\n"
            f"Report form: {url}\n"
            f"This link expires at {expires:%Y-%m-%d %H:%M} UTC and can be used once."
        )
        try:
            self.transport.send(
                [Recipient(user_id=None, email=report.reporter_email, name=report.reporter_name)],
                f"[Progress report request] {info['task_title']}",
                body,
                category="report",
                severity="info",
                entity_type="progress_report",
                entity_id=report.id,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Report request email failed", extra={"report_id": report.id})
        return report

    def regenerate(self, report_id: int, now: datetime | None = None) -> ProgressReport:
        """Replace the token and reset the expiry. Only before submission."""
        now = _now(now)
        report = self.get_report(report_id)
        result = db.session.execute(
            update(ProgressReport)
            .where(ProgressReport.id == report.id, ProgressReport.is_submitted.is_(False))
            .values(
                report_token=generate_token(),
                token_expires_at=now + timedelta(hours=self.settings.validity_hours),
                deactivated_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise AlreadySubmittedError("Cannot regenerate the link of a submitted report")
        db_commit_or_raise("regenerate report token")
        db.session.refresh(report)
        logger.info("Report token regenerated", extra={"report_id": report.id})
        return report

    def deactivate(self, report_id: int, now: datetime | None = None) -> ProgressReport:
        """Make the token unusable immediately. Idempotent before submission."""
        now = _now(now)
        report = self.get_report(report_id)
        result = db.session.execute(
            update(ProgressReport)
            .where(
                ProgressReport.id == report.id,
                ProgressReport.is_submitted.is_(False),
                ProgressReport.deactivated_at.is_(None),
            )
            .values(deactivated_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db_commit_or_raise("deactivate report token")
        db.session.refresh(report)
        if result.rowcount != 1 and report.is_submitted:
            raise AlreadySubmittedError("Cannot deactivate a submitted report")
        logger.info("Report token deactivated", extra={"report_id": report.id})
        return report

    # ── Validate ──────────────────────────────────────────────────────────

    def validate(self, token: str, now: datetime | None = None) -> ProgressReport:
        """Return the report for a usable token. Read-only."""
        now = _now(now)
        report = ProgressReport.query.filter_by(report_token=token).first() if token else None
        if report is None:
            raise NotFoundError(resource="ProgressReport token")
        if report.deactivated_at is not None:
            raise ExpiredError("Report link has been deactivated")
        if now > ensure_utc(report.token_expires_at):
            raise ExpiredError()
        if report.is_submitted:
            raise AlreadySubmittedError()
        return report

    def get_form_data(self, token: str, now: datetime | None = None) -> dict:
        """Public view of a usable token: report, task title, project name."""
        report = self.validate(token, now)
        data = report.to_dict()
        data.update(TaskDirectory.describe(report.task_id))
        return data

    def report_url(self, report: ProgressReport) -> str:
        return f"{self.settings.frontend_url}/progress-report/{report.report_token}"

    # ── Queries ───────────────────────────────────────────────────────────

    @staticmethod
    def get_report(report_id: int) -> ProgressReport:
        report = db.session.get(ProgressReport, report_id)
        if not report:
            raise NotFoundError(resource="ProgressReport", resource_id=report_id)
        return report

    @staticmethod
    def list_for_task(task_id: int, include_unsubmitted: bool = False) -> list[ProgressReport]:
        q = ProgressReport.query.filter_by(task_id=task_id)
        if not include_unsubmitted:
            q = q.filter(ProgressReport.is_submitted.is_(True))
        return q.order_by(ProgressReport.created_at.desc(), ProgressReport.id.desc()).all()

    # ── Cleanup ───────────────────────────────────────────────────────────

    @staticmethod
    def cleanup_expired(now: datetime | None = None) -> int:
        """Delete unsubmitted reports that expired or were deactivated."""
        now = _now(now)
        count = (
            ProgressReport.query
            .filter(ProgressReport.is_submitted.is_(False))
            .filter(or_(ProgressReport.token_expires_at < now, ProgressReport.deactivated_at.isnot(None)))
            .delete(synchronize_session=False)
        )
        db_commit_or_raise("clean up expired report tokens")
        if count:
            logger.info("Cleaned up %d expired report tokens", count)
        return count
