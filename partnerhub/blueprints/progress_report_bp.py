"""
Partner Hub
Progress Report Blueprints.

Public (token is the only credential, rate-limited):
    GET  /api/v1/progress-reports/form/<token>
    POST /api/v1/progress-reports/submit/<token>

Internal:
    POST /api/v1/tasks/<task_id>/progress-reports         request a report
    GET  /api/v1/tasks/<task_id>/progress-reports         list for task
    GET  /api/v1/progress-reports/<id>                    detail
    POST /api/v1/progress-reports/<id>/regenerate         new token + expiry
    POST /api/v1/progress-reports/<id>/deactivate         retire token
    POST /api/v1/progress-reports/<id>/review             approve / reject
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from partnerhub.config import ReportTokenSettings
from partnerhub.services.notification import get_transport
from partnerhub.services.report_review_service import ReportReviewService
from partnerhub.services.report_submission_service import ReportSubmissionService
from partnerhub.services.report_token_service import ReportTokenService
from partnerhub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

progress_report_public_bp = Blueprint(
    "progress_report_public", __name__, url_prefix="/api/v1/progress-reports",
)
progress_report_bp = Blueprint("progress_report", __name__, url_prefix="/api/v1")
register_error_handlers(progress_report_public_bp)
register_error_handlers(progress_report_bp)


def _token_service() -> ReportTokenService:
    return ReportTokenService(ReportTokenSettings.from_app(current_app), transport=get_transport())


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ═════════════════════════════════════════════════════════════════════════
# Public
# ═════════════════════════════════════════════════════════════════════════

@progress_report_public_bp.route("/form/<token>", methods=["GET"])
def get_form(token):
    return jsonify(_token_service().get_form_data(token)), 200


@progress_report_public_bp.route("/submit/<token>", methods=["POST"])
def submit(token):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    tokens = _token_service()
    report = ReportSubmissionService(tokens, transport=tokens.transport).submit(token, data)
    return jsonify(report.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Internal
# ═════════════════════════════════════════════════════════════════════════

@progress_report_bp.route("/tasks/<int:task_id>/progress-reports", methods=["POST"])
def request_report(task_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not data.get("reporter_email"):
        return api_error(E.VALIDATION_REQUIRED, "reporter_email is required")

    tokens = _token_service()
    report = tokens.request_report(task_id, data["reporter_email"], data.get("reporter_name"))
    body = report.to_dict(include_token=True)
    body["report_url"] = tokens.report_url(report)
    return jsonify(body), 201


@progress_report_bp.route("/tasks/<int:task_id>/progress-reports", methods=["GET"])
def list_for_task(task_id):
    include_unsubmitted = request.args.get("include_unsubmitted", "false").lower() == "true"
    reports = ReportTokenService.list_for_task(task_id, include_unsubmitted=include_unsubmitted)
    return jsonify({"items": [r.to_dict() for r in reports], "total": len(reports)}), 200


@progress_report_bp.route("/progress-reports/<int:report_id>", methods=["GET"])
def get_report(report_id):
    return jsonify(ReportTokenService.get_report(report_id).to_dict()), 200


@progress_report_bp.route("/progress-reports/<int:report_id>/regenerate", methods=["POST"])
def regenerate(report_id):
    tokens = _token_service()
    report = tokens.regenerate(report_id)
    body = report.to_dict(include_token=True)
    body["report_url"] = tokens.report_url(report)
    return jsonify(body), 200


@progress_report_bp.route("/progress-reports/<int:report_id>/deactivate", methods=["POST"])
def deactivate(report_id):
    report = _token_service().deactivate(report_id)
    return jsonify(report.to_dict()), 200


@progress_report_bp.route("/progress-reports/<int:report_id>/review", methods=["POST"])
def review(report_id):
    data = _json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    for field in ("decision", "reviewer_id"):
        if data.get(field) in (None, ""):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")

    service = ReportReviewService(ReportTokenSettings.from_app(current_app))
    report = service.review(report_id, data["decision"], data["reviewer_id"], data.get("comment"))
    return jsonify(report.to_dict()), 200
