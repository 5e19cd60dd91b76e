"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from partnerhub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="EscalationRule", resource_id=42)
    raise ValidationError("trigger_value must be >= 1", details={"trigger_value": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Used for unknown rules, reports and report tokens alike. A token that
    matches nothing is reported without echoing the token.

    Args:
        resource: Human-readable model/entity name (e.g. "EscalationRule").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a resource.

    Maps to HTTP 409.
    """

    def __init__(self, message: str, resource: str | None = None) -> None:
        self.resource = resource
        super().__init__(message)


class ExpiredError(Exception):
    """Raised when a report token is past its expiry or was deactivated.

    Maps to HTTP 410.
    """

    def __init__(self, message: str = "Report link has expired") -> None:
        super().__init__(message)


class AlreadySubmittedError(ConflictError):
    """Raised when a report token has already been used for a submission."""

    def __init__(self, message: str = "Progress report has already been submitted") -> None:
        super().__init__(message, resource="ProgressReport")


class NotYetSubmittedError(ConflictError):
    """Raised when a review is attempted on a report that was never submitted."""

    def __init__(self, message: str = "Progress report has not been submitted yet") -> None:
        super().__init__(message, resource="ProgressReport")


class AlreadyReviewedError(ConflictError):
    """Raised on a second review while reviews are single-shot."""

    def __init__(self, message: str = "Progress report has already been reviewed") -> None:
        super().__init__(message, resource="ProgressReport")


class DispatchError(Exception):
    """Raised when the notification transport fails for one dispatch.

    Recorded on the escalation log row as ``failed``; the tick continues.
    """


class PersistenceError(Exception):
    """Raised when the store is unavailable or a write fails unexpectedly.

    Maps to HTTP 503. Safe to retry a whole tick: occurrence keys make
    re-evaluation idempotent.
    """
