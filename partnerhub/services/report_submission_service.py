"""
Partner Hub
Report Submission Service: the one-shot partner submission.

State machine (per report):
    ISSUED ──submit──▶ SUBMITTED          only forward transition
    ISSUED ──time────▶ EXPIRED            computed, no write
    ISSUED ──deactivate▶ DEACTIVATED      explicit

The transition is a single conditional UPDATE guarded on
``is_submitted = false`` (and on the token still being live). ``rowcount``
decides the winner between concurrent submissions; the loser re-validates
and gets the matching error. The owning task's progress is written in the
same transaction. The project-owner notification runs after commit and its
failure never undoes the submission.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import urlparse

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from partnerhub.core.exceptions import AlreadySubmittedError, PersistenceError, ValidationError
from partnerhub.models import db
from partnerhub.models.progress_report import REPORT_SUBMITTED, ProgressReport
from partnerhub.services.entity_directory import TaskDirectory
from partnerhub.services.report_token_service import ReportTokenService
from partnerhub.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000
MAX_ATTACHMENTS = 20
MAX_NAME_LENGTH = 200


def validate_payload(payload) -> dict:
    """Check a submission body; returns progress/comment/attachment_urls/reporter_name."""
    if not isinstance(payload, dict):
        raise ValidationError("Submission body must be an object")
    errors = {}

    progress = payload.get("progress")
    if isinstance(progress, bool) or not isinstance(progress, int):
        errors["progress"] = "progress must be an integer between 0 and 100"
    elif not 0 <= progress <= 100:
        errors["progress"] = "progress must be an integer between 0 and 100"

    comment = payload.get("comment")
    if comment is not None:
        if not isinstance(comment, str):
            errors["comment"] = "comment must be a string"
        elif len(comment) > MAX_COMMENT_LENGTH:
            errors["comment"] = f"comment must be at most {MAX_COMMENT_LENGTH} characters"
        else:
            comment = comment.strip() or None

    name = payload.get("reporter_name")
    if name is not None:
        if not isinstance(name, str) or len(name.strip()) > MAX_NAME_LENGTH:
            errors["reporter_name"] = f"reporter_name must be a string of at most {MAX_NAME_LENGTH} characters"
        else:
            name = name.strip() or None

    urls = payload.get("attachment_urls")
    if urls is not None:
        if not isinstance(urls, list) or len(urls) > MAX_ATTACHMENTS:
            errors["attachment_urls"] = f"attachment_urls must be a list of at most {MAX_ATTACHMENTS} URLs"
        elif not all(isinstance(u, str) and urlparse(u).scheme in ("http", "https") and urlparse(u).netloc
                     for u in urls):
            errors["attachment_urls"] = "attachment_urls must contain http(s) URLs"

    if errors:
        raise ValidationError("Invalid progress report", details=errors)
    return {
        "progress": progress,
        "comment": comment,
        "attachment_urls": urls or None,
        "reporter_name": name,
    }


class ReportSubmissionService:
    """Accepts exactly one submission per report token."""

    def __init__(self, token_service: ReportTokenService, transport=None):
        self.tokens = token_service
        self.transport = transport

    def submit(self, token: str, payload, now: datetime | None = None) -> ProgressReport:
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        report = self.tokens.validate(token, now)
        report_id, task_id = report.id, report.task_id
        data = validate_payload(payload)
        values = {
            "progress": data["progress"],
            "comment": data["comment"],
            "attachment_urls": data["attachment_urls"],
            "is_submitted": True,
            "status": REPORT_SUBMITTED,
            "submitted_at": now,
            "updated_at": now,
        }
        # The partner may correct the name the link was issued under
        if data["reporter_name"]:
            values["reporter_name"] = data["reporter_name"]

        try:
            result = db.session.execute(
                update(ProgressReport)
                .where(
                    ProgressReport.id == report_id,
                    ProgressReport.is_submitted.is_(False),
                    ProgressReport.deactivated_at.is_(None),
                    ProgressReport.token_expires_at >= now,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.session.rollback()
                # Lost the race (or the token died meanwhile): report why
                self.tokens.validate(token, now)
                raise AlreadySubmittedError()

            TaskDirectory.update_progress(task_id, data["progress"])
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Progress report submission failed", extra={"report_id": report_id})
            raise PersistenceError("Could not store progress report") from exc

        report = db.session.get(ProgressReport, report_id)
        db.session.refresh(report)
        logger.info("Progress report submitted (%d%%)", report.progress,
                    extra={"report_id": report_id, "task_id": task_id})
        self._notify_owner(report)
        return report

    def _notify_owner(self, report: ProgressReport) -> None:
        """Tell the project owner a report arrived. Failures are only logged."""
        if self.transport is None:
            return
        owner = TaskDirectory.project_owner(report.task_id)
        if owner is None:
            logger.warning("No project owner to notify", extra={"report_id": report.id})
            return

        info = TaskDirectory.describe(report.task_id)
        body = (
            f"{report.reporter_name} reported progress on \"{info['task_title']}\""
            f" ({info['project_name'] or 'Unknown project'}).\n\n"
            f"Progress: {report.progress}%"
        )
        if report.comment:
            body += f"\nComment: {report.comment}"
        try:
            self.transport.send(
                [owner],
                f"[Progress report received] {info['task_title']} - {report.progress}%",
                body,
                category="report",
                severity="info",
                entity_type="progress_report",
                entity_id=report.id,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Project owner notification failed", extra={"report_id": report.id})
