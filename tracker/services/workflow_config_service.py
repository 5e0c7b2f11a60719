"""
Workflow configuration service — stages and sub-stages of one organization.

Owners add, rename and delete stages/sub-stages. Reordering is not
supported: new rows always append after the current maximum
sequence_order. Deletion is refused while any item occupies the row, and
a sub-stage cannot be added to a stage where items currently rest at the
bare stage (that would leave them at a non-occupiable position).

All writes commit here; blueprints never touch db.session.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from tracker.core.exceptions import ConflictError, ValidationError
from tracker.models import db
from tracker.models.workflow import Item, WorkflowStage, WorkflowSubStage
from tracker.services.access_gate import check_operation
from tracker.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200


def _clean_name(name) -> str:
    name = (name or "").strip() if isinstance(name, str) else ""
    if not name:
        raise ValidationError("Name cannot be empty.", details={"name": "required"})
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Name must be at most {MAX_NAME_LENGTH} characters.",
            details={"name": f"max {MAX_NAME_LENGTH}"},
        )
    return name


def _commit_or_conflict(message: str) -> None:
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("%s: %s", message, exc.orig)
        raise ConflictError(message) from exc


def _occupancy(organization_id: str, *criteria) -> int:
    return db.session.execute(
        select(func.count(Item.id)).where(Item.organization_id == organization_id, *criteria)
    ).scalar_one()


# ── Read ─────────────────────────────────────────────────────────────────────


def list_structure(organization_id: str) -> list[dict]:
    """Stages with nested sub-stages in workflow order. Empty is allowed."""
    stages = db.session.execute(
        select(WorkflowStage)
        .where(WorkflowStage.organization_id == organization_id)
        .order_by(WorkflowStage.sequence_order)
    ).scalars().all()
    return [s.to_dict() for s in stages]


# ── Stages ───────────────────────────────────────────────────────────────────


def create_stage(organization_id: str, name: str, *, role: str | None) -> WorkflowStage:
    check_operation(role, "configure_workflow")
    name = _clean_name(name)

    max_order = db.session.execute(
        select(func.max(WorkflowStage.sequence_order))
        .where(WorkflowStage.organization_id == organization_id)
    ).scalar_one_or_none()

    stage = WorkflowStage(
        organization_id=organization_id,
        name=name,
        sequence_order=0 if max_order is None else max_order + 1,
    )
    db.session.add(stage)
    _commit_or_conflict("A stage with this sequence order already exists")
    logger.info("Created stage %s (%s) seq=%d org=%s", stage.id, name, stage.sequence_order, organization_id)
    return stage


def rename_stage(organization_id: str, stage_id: str, name: str, *, role: str | None) -> WorkflowStage:
    check_operation(role, "configure_workflow")
    stage = get_scoped(WorkflowStage, stage_id, organization_id=organization_id)
    stage.name = _clean_name(name)
    db.session.commit()
    return stage


def delete_stage(organization_id: str, stage_id: str, *, role: str | None) -> None:
    """Delete a stage and its sub-stages.

    Raises:
        ConflictError: an item occupies the stage or one of its sub-stages.
    """
    check_operation(role, "configure_workflow")
    stage = get_scoped(WorkflowStage, stage_id, organization_id=organization_id)

    occupied = _occupancy(organization_id, Item.current_stage_id == stage.id)
    if occupied:
        raise ConflictError(
            f"Stage '{stage.name}' is occupied by {occupied} item(s) and cannot be deleted",
            details={"occupied_items": occupied},
        )

    db.session.delete(stage)
    _commit_or_conflict(f"Stage '{stage.name}' is still referenced and cannot be deleted")
    logger.info("Deleted stage %s org=%s", stage_id, organization_id)


# ── Sub-stages ───────────────────────────────────────────────────────────────


def create_sub_stage(
    organization_id: str,
    stage_id: str,
    name: str,
    *,
    role: str | None,
) -> WorkflowSubStage:
    """Append a sub-stage to ``stage_id``.

    Raises:
        ConflictError: items currently rest at the bare stage.
    """
    check_operation(role, "configure_workflow")
    stage = get_scoped(WorkflowStage, stage_id, organization_id=organization_id)
    name = _clean_name(name)

    resting = _occupancy(
        organization_id,
        Item.current_stage_id == stage.id,
        Item.current_sub_stage_id.is_(None),
    )
    if resting:
        raise ConflictError(
            f"{resting} item(s) rest directly at stage '{stage.name}'; "
            "move them before dividing the stage into sub-stages",
            details={"occupied_items": resting},
        )

    max_order = db.session.execute(
        select(func.max(WorkflowSubStage.sequence_order))
        .where(WorkflowSubStage.stage_id == stage.id)
    ).scalar_one_or_none()

    sub = WorkflowSubStage(
        organization_id=organization_id,
        stage_id=stage.id,
        name=name,
        sequence_order=0 if max_order is None else max_order + 1,
    )
    db.session.add(sub)
    _commit_or_conflict("A sub-stage with this sequence order already exists")
    logger.info("Created sub-stage %s (%s) in stage %s", sub.id, name, stage.id)
    return sub


def rename_sub_stage(organization_id: str, sub_stage_id: str, name: str, *, role: str | None) -> WorkflowSubStage:
    check_operation(role, "configure_workflow")
    sub = get_scoped(WorkflowSubStage, sub_stage_id, organization_id=organization_id)
    sub.name = _clean_name(name)
    db.session.commit()
    return sub


def delete_sub_stage(organization_id: str, sub_stage_id: str, *, role: str | None) -> None:
    """Delete an unoccupied sub-stage.

    Raises:
        ConflictError: an item occupies the sub-stage.
    """
    check_operation(role, "configure_workflow")
    sub = get_scoped(WorkflowSubStage, sub_stage_id, organization_id=organization_id)

    occupied = _occupancy(organization_id, Item.current_sub_stage_id == sub.id)
    if occupied:
        raise ConflictError(
            f"Sub-stage '{sub.name}' is occupied by {occupied} item(s) and cannot be deleted",
            details={"occupied_items": occupied},
        )

    db.session.delete(sub)
    _commit_or_conflict(f"Sub-stage '{sub.name}' is still referenced and cannot be deleted")
    logger.info("Deleted sub-stage %s org=%s", sub_stage_id, organization_id)
