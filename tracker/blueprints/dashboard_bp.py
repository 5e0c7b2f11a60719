"""
Workflow dashboard blueprint.

Read-only views over the history ledger for the caller's organization.
"""

from flask import Blueprint, jsonify

from tracker.blueprints import parse_limit, register_error_handlers
from tracker.middleware.jwt_auth import current_actor
from tracker.services import workflow_analytics as svc
from tracker.services.access_gate import check_operation
from tracker.services.integrity_observability import evaluate_integrity_alerts

dashboard_bp = register_error_handlers(Blueprint("dashboard", __name__, url_prefix="/api/v1/dashboard"))


@dashboard_bp.route("/bottlenecks", methods=["GET"])
def bottlenecks():
    """Items waiting longest at their current position."""
    limit = parse_limit(svc.DEFAULT_BOTTLENECK_LIMIT, max_limit=100)
    return jsonify({"items": svc.get_bottlenecks(current_actor().organization_id, limit=limit)}), 200


@dashboard_bp.route("/workflow-overview", methods=["GET"])
def workflow_overview():
    """Item counts per position."""
    return jsonify({"positions": svc.get_workflow_overview(current_actor().organization_id)}), 200


@dashboard_bp.route("/dwell-stats", methods=["GET"])
def dwell_stats():
    return jsonify({"positions": svc.get_stage_dwell_stats(current_actor().organization_id)}), 200


@dashboard_bp.route("/ledger-integrity", methods=["GET"])
def ledger_integrity():
    """Owner-only ledger consistency report plus in-process alert state."""
    actor = current_actor()
    check_operation(actor.role, "view_integrity")
    report = svc.check_ledger_integrity(actor.organization_id)
    report["alerts"] = evaluate_integrity_alerts(organization_id=actor.organization_id)
    return jsonify(report), 200
