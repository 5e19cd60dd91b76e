"""
Partner Hub
Notification Service.

Central service for creating in-app notifications, plus the
notification transport used by escalation dispatch and the report workflow.

Transport contract:
    send(recipients, subject, body) -> None, raises DispatchError on failure

``PlatformTransport`` writes one in-app Notification per internal recipient
and an email (via EmailService) per recipient with an address. It only adds
and flushes rows; the caller owns the transaction.
"""

from __future__ import annotations

import logging

from flask import current_app

from partnerhub.core.exceptions import DispatchError
from partnerhub.models import db
from partnerhub.models.notification import Notification
from partnerhub.services.email_service import EmailService

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               user_id=None, recipient_email=None, entity_type="", entity_id=None,
               commit=True):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (committed unless ``commit=False``).
        """
        notif = Notification(
            user_id=user_id,
            recipient_email=recipient_email,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return notif


# ═══════════════════════════════════════════════════════════════════════════
#  Transports
# ═══════════════════════════════════════════════════════════════════════════

class NotificationTransport:
    """Delivery channel consumed by the dispatcher and the report workflow."""

    def send(self, recipients, subject, body, *, category="escalation",
             severity="warning", entity_type="task", entity_id=None):
        raise NotImplementedError


class PlatformTransport(NotificationTransport):
    """In-app notifications plus email, recorded in the current session."""

    def __init__(self, send_email=True):
        self.send_email = send_email

    def send(self, recipients, subject, body, *, category="escalation",
             severity="warning", entity_type="task", entity_id=None):
        failed = []
        for r in recipients:
            if r.user_id is not None:
                NotificationService.create(
                    title=subject,
                    message=body,
                    category=category,
                    severity=severity,
                    user_id=r.user_id,
                    recipient_email=r.email,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    commit=False,
                )
            if self.send_email and r.email:
                log = EmailService.send(
                    to_email=r.email,
                    to_name=r.name,
                    subject=subject,
                    body=body,
                    category=category,
                    entity_type=entity_type,
                    entity_id=entity_id,
                )
                if log.status == "failed":
                    failed.append(f"{r.email}: {log.error_message}")
        if failed:
            raise DispatchError("Email delivery failed for " + "; ".join(failed))


def get_transport() -> NotificationTransport:
    """Return the transport registered on the current app."""
    transport = current_app.extensions.get("notification_transport")
    if transport is None:
        transport = PlatformTransport()
        current_app.extensions["notification_transport"] = transport
    return transport
