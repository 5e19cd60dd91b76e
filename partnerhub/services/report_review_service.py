"""
Partner Hub
Report Review Service: internal review of submitted progress reports.

Single-shot by default: once ``reviewed_at`` is set a second review raises
AlreadyReviewedError. ``REPORT_REVIEW_REVISABLE`` lifts that guard and lets
a later review overwrite the decision. Either way the write is one
conditional UPDATE, so review fields can only be set on a submitted report.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update

from partnerhub.config import ReportTokenSettings
from partnerhub.core.exceptions import (
    AlreadyReviewedError,
    NotYetSubmittedError,
    ValidationError,
)
from partnerhub.models import db
from partnerhub.models.auth import User
from partnerhub.models.progress_report import REVIEW_DECISIONS, ProgressReport
from partnerhub.services.report_token_service import ReportTokenService
from partnerhub.utils.helpers import db_commit_or_raise, ensure_utc

logger = logging.getLogger(__name__)


class ReportReviewService:

    def __init__(self, settings: ReportTokenSettings | None = None):
        self.settings = settings or ReportTokenSettings()

    def review(self, report_id: int, decision: str, reviewer_id: int,
               comment: str | None = None, now: datetime | None = None) -> ProgressReport:
        if decision not in REVIEW_DECISIONS:
            raise ValidationError(
                f"decision must be one of {sorted(REVIEW_DECISIONS)}",
                details={"decision": decision},
            )
        if not db.session.get(User, reviewer_id):
            raise ValidationError("Unknown reviewer", details={"reviewer_id": reviewer_id})
        now = ensure_utc(now) if now is not None else datetime.now(timezone.utc)

        report = ReportTokenService.get_report(report_id)
        if not report.is_submitted:
            raise NotYetSubmittedError("Cannot review an unsubmitted report")

        stmt = (
            update(ProgressReport)
            .where(ProgressReport.id == report_id, ProgressReport.is_submitted.is_(True))
            .values(
                status=decision,
                reviewer_id=reviewer_id,
                reviewer_comment=comment,
                reviewed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if not self.settings.review_revisable:
            stmt = stmt.where(ProgressReport.reviewed_at.is_(None))

        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            raise AlreadyReviewedError()
        db_commit_or_raise("review progress report")

        db.session.refresh(report)
        logger.info("Progress report %s by user %s", decision, reviewer_id,
                    extra={"report_id": report_id})
        return report
