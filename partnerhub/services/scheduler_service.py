"""
Partner Hub
Scheduler Service.

Lightweight job registry. An external trigger (cron, a worker process, or
the admin API) runs a job by name; every run is recorded on its
``ScheduledJob`` row.

Architecture:
    - Jobs are plain functions registered via ``@register_job(name)``
    - Jobs are stored in the ScheduledJob model for persistence
    - ``acquire_lease`` / ``release_lease`` make a job single-flight across
      processes with a conditional UPDATE on the job row
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from flask import Flask
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from partnerhub.models import db
from partnerhub.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("escalation_check")
        def run_escalation_check(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, execution and run leases.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Ensure all registered jobs have a corresponding DB record."""
        created = []
        for name, fn in _job_registry.items():
            if not ScheduledJob.query.filter_by(job_name=name).first():
                job = ScheduledJob(
                    job_name=name,
                    description=(fn.__doc__ or f"Scheduled job: {name}").strip(),
                    schedule_type="cron",
                    schedule_config=_get_default_schedule(name),
                    status="active",
                    is_enabled=True,
                )
                db.session.add(job)
                created.append(job)
        if created:
            db.session.commit()
            logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            with cls._app.app_context():
                job_record = _get_or_create(job_name)
                job_record.record_run(
                    status=status,
                    duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else {"output": str(result)},
                    error=error,
                )
                db.session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        """Get status of a specific job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        return job_record.to_dict() if job_record else None

    # ── Single-flight lease ───────────────────────────────────────────────

    @classmethod
    def acquire_lease(cls, job_name: str, owner: str, ttl_seconds: int,
                      now: datetime | None = None) -> bool:
        """Take the run lease for ``job_name`` if it is free or expired.

        One conditional UPDATE; ``rowcount`` tells whether this caller won.
        """
        now = now or datetime.now(timezone.utc)
        _get_or_create(job_name)
        db.session.commit()

        result = db.session.execute(
            update(ScheduledJob)
            .where(ScheduledJob.job_name == job_name)
            .where(or_(ScheduledJob.lease_owner.is_(None), ScheduledJob.lease_expires_at < now))
            .values(lease_owner=owner, lease_expires_at=now + timedelta(seconds=ttl_seconds))
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        acquired = result.rowcount == 1
        if not acquired:
            logger.info("Lease for %s is held by another run", job_name, extra={"job_name": job_name})
        return acquired

    @classmethod
    def release_lease(cls, job_name: str, owner: str) -> None:
        try:
            db.session.rollback()
            db.session.execute(
                update(ScheduledJob)
                .where(ScheduledJob.job_name == job_name, ScheduledJob.lease_owner == owner)
                .values(lease_owner=None, lease_expires_at=None)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Failed to release lease for %s; it expires on its own", job_name)


def _get_or_create(job_name: str) -> ScheduledJob:
    job = ScheduledJob.query.filter_by(job_name=job_name).first()
    if job:
        return job
    fn = _job_registry.get(job_name)
    job = ScheduledJob(
        job_name=job_name,
        description=((fn.__doc__ if fn else None) or f"Scheduled job: {job_name}").strip(),
        schedule_config=_get_default_schedule(job_name),
        run_count=0,
        error_count=0,
    )
    db.session.add(job)
    try:
        db.session.flush()
    except IntegrityError:
        # Created concurrently by another process
        db.session.rollback()
        job = ScheduledJob.query.filter_by(job_name=job_name).one()
    return job


def _get_default_schedule(job_name: str) -> dict:
    """Return default schedule config for known job types."""
    defaults = {
        "escalation_check": {"hour": "*", "minute": "0", "description": "Hourly"},
        "expired_report_cleanup": {"hour": "2", "minute": "0",
                                   "description": "Daily at 02:00"},
    }
    return defaults.get(job_name, {"hour": "0", "minute": "0",
                                    "description": "Daily at midnight"})
