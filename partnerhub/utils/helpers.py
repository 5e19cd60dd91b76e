"""Shared utility functions.

ensure_utc:   SQLite hands back naive datetimes; treat them as UTC
parse_datetime_input: raises ValueError on bad input, for query filters
pagination_args / paginate: limit/offset handling for list endpoints
db_commit_or_raise: commit, turning SQLAlchemyError into PersistenceError
"""
import logging
from datetime import datetime, timezone

from flask import request
from sqlalchemy.exc import SQLAlchemyError

from partnerhub.core.exceptions import PersistenceError
from partnerhub.models import db

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def ensure_utc(value):
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime_input(value):
    """Parse an ISO date or datetime string into an aware UTC datetime.

    Raises ValueError on bad input; blueprints turn that into a 400.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value)))
    except ValueError as exc:
        raise ValueError("Invalid datetime format. Use ISO 8601.") from exc


def pagination_args():
    """Read ``limit``/``offset`` query args, clamped to sane bounds."""
    limit = request.args.get("limit", DEFAULT_PAGE_SIZE, type=int)
    offset = request.args.get("offset", 0, type=int)
    limit = max(1, min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
    offset = max(0, offset or 0)
    return limit, offset


def paginate(query, limit, offset):
    """Return ``(items, total)`` for a SQLAlchemy query."""
    total = query.count()
    items = query.offset(offset).limit(limit).all()
    return items, total


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_raise(action: str):
    """Commit the current session, wrapping store failures as PersistenceError.

    Usage::

        db_commit_or_raise("save escalation rule")
    """
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error while trying to %s", action)
        raise PersistenceError(f"Could not {action}") from exc
