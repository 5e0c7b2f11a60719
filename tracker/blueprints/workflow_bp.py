"""
Workflow configuration blueprint — stages and sub-stages.

Endpoints:
    GET    /api/v1/workflow/stages                        — structure, in order
    POST   /api/v1/workflow/stages                        — append stage (Owner)
    PATCH  /api/v1/workflow/stages/<stage_id>             — rename (Owner)
    DELETE /api/v1/workflow/stages/<stage_id>             — delete unoccupied (Owner)
    POST   /api/v1/workflow/stages/<stage_id>/sub-stages  — append sub-stage (Owner)
    PATCH  /api/v1/workflow/sub-stages/<sub_stage_id>     — rename (Owner)
    DELETE /api/v1/workflow/sub-stages/<sub_stage_id>     — delete unoccupied (Owner)
"""

from flask import Blueprint, jsonify, request

from tracker.blueprints import register_error_handlers
from tracker.middleware.jwt_auth import current_actor
from tracker.services import workflow_config_service as svc

workflow_bp = register_error_handlers(Blueprint("workflow", __name__, url_prefix="/api/v1/workflow"))


@workflow_bp.route("/stages", methods=["GET"])
def list_stages():
    actor = current_actor()
    return jsonify({"stages": svc.list_structure(actor.organization_id)}), 200


@workflow_bp.route("/stages", methods=["POST"])
def create_stage():
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    stage = svc.create_stage(actor.organization_id, data.get("name"), role=actor.role)
    return jsonify(stage.to_dict()), 201


@workflow_bp.route("/stages/<stage_id>", methods=["PATCH"])
def rename_stage(stage_id: str):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    stage = svc.rename_stage(actor.organization_id, stage_id, data.get("name"), role=actor.role)
    return jsonify(stage.to_dict()), 200


@workflow_bp.route("/stages/<stage_id>", methods=["DELETE"])
def delete_stage(stage_id: str):
    actor = current_actor()
    svc.delete_stage(actor.organization_id, stage_id, role=actor.role)
    return jsonify({"message": "Stage deleted", "id": stage_id}), 200


@workflow_bp.route("/stages/<stage_id>/sub-stages", methods=["POST"])
def create_sub_stage(stage_id: str):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    sub = svc.create_sub_stage(actor.organization_id, stage_id, data.get("name"), role=actor.role)
    return jsonify(sub.to_dict()), 201


@workflow_bp.route("/sub-stages/<sub_stage_id>", methods=["PATCH"])
def rename_sub_stage(sub_stage_id: str):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    sub = svc.rename_sub_stage(actor.organization_id, sub_stage_id, data.get("name"), role=actor.role)
    return jsonify(sub.to_dict()), 200


@workflow_bp.route("/sub-stages/<sub_stage_id>", methods=["DELETE"])
def delete_sub_stage(sub_stage_id: str):
    actor = current_actor()
    svc.delete_sub_stage(actor.organization_id, sub_stage_id, role=actor.role)
    return jsonify({"message": "Sub-stage deleted", "id": sub_stage_id}), 200
