"""
Partner Hub
Action Dispatcher: escalation action → notification fan-out.

Each action is one handler class that resolves recipients and builds the
message; ``ACTION_HANDLERS`` is the closed lookup table. Handlers never send
anything themselves; the dispatcher calls the transport once per dispatch.

Result:
    ``dispatch()`` returns a ``DispatchResult`` (detail + notified user ids)
    or raises ``DispatchError``. An empty recipient set is a success with
    detail "no recipients": the rule condition genuinely held.

Timeout:
    With ``timeout_seconds`` set, the transport call runs on a worker thread
    inside its own app context and is abandoned after the timeout, which
    surfaces as a DispatchError so one stuck send cannot stall the tick.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field

from flask import current_app

from partnerhub.core.exceptions import DispatchError
from partnerhub.models import db
from partnerhub.models.escalation import (
    ACTION_ESCALATE_TO_MANAGER,
    ACTION_NOTIFY_OWNER,
    ACTION_NOTIFY_STAKEHOLDERS,
)
from partnerhub.services.entity_directory import TaskDirectory

logger = logging.getLogger(__name__)

NO_RECIPIENTS = "no recipients"


@dataclass(frozen=True)
class DispatchResult:
    detail: str
    recipients: list = field(default_factory=list)

    @property
    def notified_user_ids(self) -> list[int]:
        return [r.user_id for r in self.recipients if r.user_id is not None]


def build_message(rule, task, escalation: bool = False) -> str:
    """Plain-text notification body for one rule/task match."""
    prefix = "[ESCALATION] " if escalation else ""
    due = f"Due date: {task.due_date.isoformat()}" if task.due_date else "No due date"
    return (
        f"{prefix}Task \"{task.title}\" needs attention.\n\n"
        f"Rule: {rule.name}\n"
        f"{due}\n"
        f"Progress: {task.progress}%\n"
        f"Status: {task.status}"
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Action handlers
# ═══════════════════════════════════════════════════════════════════════════

class ActionHandler:
    """One escalation action: who gets notified, and with what."""

    action: str = ""
    severity = "warning"
    escalation = False

    def resolve(self, directory, task):
        raise NotImplementedError

    def subject(self, rule, task) -> str:
        return f"Escalation: {rule.name}"

    def detail(self, recipients) -> str:
        raise NotImplementedError


class NotifyOwnerHandler(ActionHandler):
    action = ACTION_NOTIFY_OWNER

    def resolve(self, directory, task):
        return directory.assignee(task)

    def detail(self, recipients):
        return "Notified task assignee"


class NotifyStakeholdersHandler(ActionHandler):
    action = ACTION_NOTIFY_STAKEHOLDERS

    def resolve(self, directory, task):
        return directory.stakeholders(task)

    def detail(self, recipients):
        return f"Notified {len(recipients)} stakeholder(s)"


class EscalateToManagerHandler(ActionHandler):
    action = ACTION_ESCALATE_TO_MANAGER
    severity = "error"
    escalation = True

    def resolve(self, directory, task):
        return directory.organization_admins(task)

    def subject(self, rule, task):
        return f"[URGENT] Escalation: {rule.name}"

    def detail(self, recipients):
        return f"Escalated to {len(recipients)} manager(s)"


ACTION_HANDLERS: dict[str, ActionHandler] = {
    handler.action: handler
    for handler in (NotifyOwnerHandler(), NotifyStakeholdersHandler(), EscalateToManagerHandler())
}


# ═══════════════════════════════════════════════════════════════════════════
#  Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class ActionDispatcher:
    """Resolve recipients for a matched rule and invoke the transport."""

    def __init__(self, transport, directory=TaskDirectory, timeout_seconds: float | None = None):
        self.transport = transport
        self.directory = directory
        self.timeout_seconds = timeout_seconds
        self._executor: ThreadPoolExecutor | None = None

    def dispatch(self, rule, task) -> DispatchResult:
        handler = ACTION_HANDLERS.get(rule.action)
        if handler is None:
            raise DispatchError(f"Unknown escalation action: {rule.action!r}")

        recipients = handler.resolve(self.directory, task)
        if not recipients:
            return DispatchResult(detail=NO_RECIPIENTS, recipients=[])

        self._send(
            recipients,
            handler.subject(rule, task),
            build_message(rule, task, escalation=handler.escalation),
            severity=handler.severity,
            entity_id=task.id,
        )
        return DispatchResult(detail=handler.detail(recipients), recipients=list(recipients))

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    # ── Transport call ────────────────────────────────────────────────────

    def _send(self, recipients, subject, body, **kwargs):
        if self.timeout_seconds is None:
            self._call_transport(recipients, subject, body, **kwargs)
            return

        app = current_app._get_current_object()

        def _run():
            with app.app_context():
                try:
                    self._call_transport(recipients, subject, body, **kwargs)
                    db.session.commit()
                except Exception:
                    db.session.rollback()
                    raise

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="escalation-dispatch")
        future = self._executor.submit(_run)
        try:
            future.result(timeout=self.timeout_seconds)
        except FuturesTimeout as exc:
            future.cancel()
            raise DispatchError(f"Dispatch timed out after {self.timeout_seconds}s") from exc

    def _call_transport(self, recipients, subject, body, **kwargs):
        try:
            self.transport.send(recipients, subject, body, **kwargs)
        except DispatchError:
            raise
        except Exception as exc:
            raise DispatchError(f"Notification transport failed: {exc}") from exc
