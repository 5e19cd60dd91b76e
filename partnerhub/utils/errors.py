"""Standardised API error responses.

Usage
-----
    from partnerhub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Escalation rule not found")
    return api_error(E.VALIDATION_REQUIRED, "reporter_email is required")

Blueprints call ``register_error_handlers(bp)`` once to map the service
exception hierarchy onto these responses.
"""

from __future__ import annotations

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from partnerhub.core.exceptions import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Token lifecycle – HTTP 410
    TOKEN_EXPIRED = "ERR_TOKEN_EXPIRED"

    # Conflict / state – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500 / 503
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.TOKEN_EXPIRED: 410,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Map service-layer exceptions to HTTP responses for one blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(exc):
        logger.info("Not found: %s", exc)
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(exc):
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)

    @bp.errorhandler(ExpiredError)
    def _handle_expired(exc):
        return api_error(E.TOKEN_EXPIRED, str(exc))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(exc):
        return api_error(E.CONFLICT_STATE, str(exc))

    @bp.errorhandler(PersistenceError)
    def _handle_persistence(exc):
        logger.error("Persistence failure: %s", exc)
        return api_error(E.DATABASE, "Storage temporarily unavailable")

    @bp.errorhandler(Exception)
    def _handle_unexpected(exc):
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("Unhandled error in %s: %s", bp.name, exc)
        return api_error(E.INTERNAL, "Internal server error")
