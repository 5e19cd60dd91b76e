"""
Partner Hub
Escalation Blueprint.

Endpoints (admin surface):
    GET    /api/v1/escalation/rules                 list (status, trigger_type, action, project_id)
    POST   /api/v1/escalation/rules                 create
    GET    /api/v1/escalation/rules/<id>            detail
    PATCH  /api/v1/escalation/rules/<id>            partial update
    DELETE /api/v1/escalation/rules/<id>            delete
    POST   /api/v1/escalation/rules/<id>/toggle     active <-> inactive
    GET    /api/v1/escalation/logs                  paginated audit log
    GET    /api/v1/escalation/projects/<id>/history per-project history
    POST   /api/v1/escalation/tick                  run one tick now (optional project_id / task_id)
    GET    /api/v1/escalation/statistics            rule and log counters
    GET    /api/v1/escalation/jobs                  scheduled job status
"""

import logging

from flask import Blueprint, jsonify, request

from partnerhub.services.escalation_log_service import EscalationLogService
from partnerhub.services.escalation_rule_service import EscalationRuleService
from partnerhub.services.escalation_scheduler import build_escalation_scheduler
from partnerhub.services.scheduler_service import SchedulerService
from partnerhub.utils.errors import E, api_error, register_error_handlers
from partnerhub.utils.helpers import pagination_args, parse_datetime_input

logger = logging.getLogger(__name__)

escalation_bp = Blueprint("escalation", __name__, url_prefix="/api/v1/escalation")
register_error_handlers(escalation_bp)


def _json_body():
    """Parsed JSON object body, or None when the body is missing or malformed."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ═════════════════════════════════════════════════════════════════════════
# Rules
# ═════════════════════════════════════════════════════════════════════════

@escalation_bp.route("/rules", methods=["GET"])
def list_rules():
    rules = EscalationRuleService.list_rules(
        status=request.args.get("status"),
        trigger_type=request.args.get("trigger_type"),
        action=request.args.get("action"),
        project_id=request.args.get("project_id", type=int),
        include_global=request.args.get("include_global", "true").lower() != "false",
    )
    return jsonify({"items": [r.to_dict() for r in rules], "total": len(rules)}), 200


@escalation_bp.route("/rules", methods=["POST"])
def create_rule():
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    rule = EscalationRuleService.create_rule(data, created_by=data.get("created_by"))
    return jsonify(rule.to_dict()), 201


@escalation_bp.route("/rules/<int:rule_id>", methods=["GET"])
def get_rule(rule_id):
    return jsonify(EscalationRuleService.get_rule(rule_id).to_dict()), 200


@escalation_bp.route("/rules/<int:rule_id>", methods=["PATCH"])
def update_rule(rule_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    rule = EscalationRuleService.update_rule(rule_id, data)
    return jsonify(rule.to_dict()), 200


@escalation_bp.route("/rules/<int:rule_id>", methods=["DELETE"])
def delete_rule(rule_id):
    EscalationRuleService.delete_rule(rule_id)
    return jsonify({"deleted": True, "id": rule_id}), 200


@escalation_bp.route("/rules/<int:rule_id>/toggle", methods=["POST"])
def toggle_rule(rule_id):
    rule = EscalationRuleService.toggle_status(rule_id)
    return jsonify(rule.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Logs
# ═════════════════════════════════════════════════════════════════════════

@escalation_bp.route("/logs", methods=["GET"])
def list_logs():
    try:
        created_from = parse_datetime_input(request.args.get("from"))
        created_to = parse_datetime_input(request.args.get("to"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    limit, offset = pagination_args()
    items, total = EscalationLogService.list_logs(
        project_id=request.args.get("project_id", type=int),
        task_id=request.args.get("task_id", type=int),
        rule_id=request.args.get("rule_id", type=int),
        action=request.args.get("action"),
        status=request.args.get("status"),
        created_from=created_from,
        created_to=created_to,
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [log.to_dict() for log in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@escalation_bp.route("/projects/<int:project_id>/history", methods=["GET"])
def project_history(project_id):
    limit, _ = pagination_args()
    logs = EscalationLogService.history_for_project(project_id, limit=limit)
    return jsonify({"project_id": project_id, "items": [log.to_dict() for log in logs]}), 200


# ═════════════════════════════════════════════════════════════════════════
# Jobs
# ═════════════════════════════════════════════════════════════════════════

def _optional_id(data, key):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return value


@escalation_bp.route("/tick", methods=["POST"])
def run_tick():
    """Run an escalation check now.

    An empty body runs the ``escalation_check`` job. ``project_id`` and/or
    ``task_id`` narrow the check to that project or task.
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    try:
        project_id = _optional_id(data, "project_id")
        task_id = _optional_id(data, "task_id")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    if project_id is None and task_id is None:
        result = SchedulerService.run_job("escalation_check")
        status = 200 if result["status"] == "success" else 500
        if status != 200:
            logger.error("Manual escalation tick failed: %s", result.get("error"))
        return jsonify(result), status

    report = build_escalation_scheduler().run_tick(project_id=project_id, task_id=task_id)
    return jsonify({
        "status": "success",
        "scope": {"project_id": project_id, "task_id": task_id},
        "result": report.to_dict(),
    }), 200


@escalation_bp.route("/statistics", methods=["GET"])
def statistics():
    return jsonify(EscalationLogService.statistics()), 200


@escalation_bp.route("/jobs", methods=["GET"])
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()}), 200
