"""
Partner Hub
Email Service.

Provides email sending for escalation notices and partner report requests.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - MAIL_* config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

from partnerhub.models import db
from partnerhub.models.scheduling import EmailLog

logger = logging.getLogger(__name__)


class EmailService:
    """
    Email sending service.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        body: str,
        category: str = "system",
        entity_type: str | None = None,
        entity_id: int | None = None,
    ) -> EmailLog:
        """
        Send a plain-text email and log it.

        The EmailLog row is added and flushed, not committed; the caller owns
        the transaction. A failed SMTP send is recorded on the row with
        status='failed' rather than raised.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            category=category,
            status="queued",
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            # Dev/test mode: log only
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject, body=body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return log

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None, subject: str, body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(body, "plain", "utf-8"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)
