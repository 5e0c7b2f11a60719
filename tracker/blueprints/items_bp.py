"""
Item movement blueprint — thin HTTP adapter over the transition executor.

Endpoints:
    POST /api/v1/items/move/forward
         Body: { "item_ids": [...], "target_stage_id"?: ..., "target_sub_stage_id"?: ... }
    POST /api/v1/items/move/rework
         Body: { "item_ids": [...], "rework_reason": "..." }
    POST /api/v1/items/move
         Body: { "item_ids": [...], "operation": "forward|forward_to|rework",
                 "target_stage_id"?: ..., "rework_reason"?: ... }
    GET  /api/v1/items/<item_id>/history
    GET  /api/v1/items/<item_id>/forward-targets
    GET  /api/v1/items/<item_id>/rework-targets

Batch responses:
    200 all items moved, 207 some moved, 500 none moved. Authorization
    (403), input (400) and workflow configuration (422) errors are reported
    once for the whole batch.

Layer contract:
    - Blueprint: parse input, take identity from g, call service, shape JSON.
    - NO db.session calls here — all writes owned by the executor.
"""

import logging

from flask import Blueprint, jsonify, request

from tracker.blueprints import register_error_handlers
from tracker.middleware.jwt_auth import current_actor
from tracker.services import workflow_analytics
from tracker.services.transition_executor import OPERATIONS, build_operation, move_items
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

items_bp = register_error_handlers(Blueprint("items", __name__, url_prefix="/api/v1/items"))


def _batch_response(item_ids, operation):
    result = move_items(item_ids, operation, current_actor())
    body = result.to_dict()
    if result.status == "failed":
        logger.warning("Batch move failed for all %d items", result.total)
        body["error"] = "No items could be moved."
        body["code"] = E.BATCH_FAILED
    return jsonify(body), result.http_status


def _item_ids(data: dict):
    item_ids = data.get("item_ids")
    if not isinstance(item_ids, list) or not item_ids:
        return None, api_error(E.VALIDATION_REQUIRED, "At least one item ID is required.",
                               details={"item_ids": "must be a non-empty list"})
    return item_ids, None


def _optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value)


# ── Moves ────────────────────────────────────────────────────────────────────


@items_bp.route("/move/forward", methods=["POST"])
def move_forward():
    """Advance items one position, or to an explicit later stage."""
    data = request.get_json(silent=True) or {}
    item_ids, err = _item_ids(data)
    if err:
        return err

    operation = build_operation(
        "forward",
        target_stage_id=_optional_str(data, "target_stage_id"),
        target_sub_stage_id=_optional_str(data, "target_sub_stage_id"),
    )
    return _batch_response(item_ids, operation)


@items_bp.route("/move/rework", methods=["POST"])
def move_rework():
    """Send items one position back, recording the rework reason."""
    data = request.get_json(silent=True) or {}
    item_ids, err = _item_ids(data)
    if err:
        return err

    reason = data.get("rework_reason")
    if not isinstance(reason, str) or not reason.strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'rework_reason' is required.",
                         details={"rework_reason": "required"})

    return _batch_response(item_ids, build_operation("rework", rework_reason=reason))


@items_bp.route("/move", methods=["POST"])
def move():
    """Generic entry point taking the operation name in the body."""
    data = request.get_json(silent=True) or {}
    item_ids, err = _item_ids(data)
    if err:
        return err

    operation_name = data.get("operation")
    if isinstance(operation_name, str):
        operation_name = operation_name.strip()
    if operation_name not in OPERATIONS:
        return api_error(E.VALIDATION_INVALID, f"Invalid operation {operation_name!r}.",
                         details={"valid_operations": list(OPERATIONS)})

    operation = build_operation(
        operation_name,
        target_stage_id=_optional_str(data, "target_stage_id"),
        target_sub_stage_id=_optional_str(data, "target_sub_stage_id"),
        rework_reason=data.get("rework_reason") if isinstance(data.get("rework_reason"), str) else None,
    )
    return _batch_response(item_ids, operation)


# ── Read ─────────────────────────────────────────────────────────────────────


@items_bp.route("/<item_id>/history", methods=["GET"])
def item_history(item_id: str):
    actor = current_actor()
    entries = workflow_analytics.get_item_history(actor.organization_id, item_id)
    return jsonify({"item_id": item_id, "history": entries})


@items_bp.route("/<item_id>/forward-targets", methods=["GET"])
def forward_targets(item_id: str):
    actor = current_actor()
    return jsonify(workflow_analytics.list_forward_targets(actor.organization_id, item_id))


@items_bp.route("/<item_id>/rework-targets", methods=["GET"])
def rework_targets(item_id: str):
    actor = current_actor()
    return jsonify(workflow_analytics.list_rework_targets(actor.organization_id, item_id))
