"""
Partner Hub
Scheduled Jobs.

Concrete job implementations run by SchedulerService.

Jobs:
    - escalation_check: one escalation tick over all active rules
    - expired_report_cleanup: deletes unsubmitted, dead report tokens
"""

from __future__ import annotations

import logging
from typing import Any

from partnerhub.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("escalation_check")
def run_escalation_check(app) -> dict[str, Any]:
    """Evaluate escalation rules against open tasks and dispatch new occurrences."""
    from partnerhub.services.escalation_scheduler import build_escalation_scheduler

    report = build_escalation_scheduler().run_tick()
    return report.to_dict()


@register_job("expired_report_cleanup")
def cleanup_expired_reports(app) -> dict[str, Any]:
    """Delete progress report links that expired or were deactivated unused."""
    from partnerhub.services.report_token_service import ReportTokenService

    deleted = ReportTokenService.cleanup_expired()
    logger.info("Expired report cleanup removed %d rows", deleted, extra={"job_name": "expired_report_cleanup"})
    return {"deleted": deleted}
