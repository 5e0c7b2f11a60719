"""
Organization-scoped query helpers.

Every get-by-id in the engine MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass organization isolation.

Usage:
    # Scope by organization_id (OrganizationModel subclasses)
    item = get_scoped(Item, item_id, organization_id=org_id)

    # Lock the row for a read-modify-write inside the current transaction
    item = get_scoped(Item, item_id, organization_id=org_id, for_update=True)

    # Scope a sub-stage to its parent stage as well
    sub = get_scoped(WorkflowSubStage, sub_id, organization_id=org_id, stage_id=stage_id)

    # When None is an acceptable outcome
    stage = get_scoped_or_none(WorkflowStage, stage_id, organization_id=org_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately rather than silently
    allowing unscoped access.
"""

import logging

from sqlalchemy import select

from tracker.core.exceptions import NotFoundError
from tracker.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: str,
    *,
    organization_id: str | None = None,
    stage_id: str | None = None,
    order_id: str | None = None,
    for_update: bool = False,
):
    """Fetch a single entity by PK with mandatory scope filter.

    At least one scope parameter MUST be provided and EVERY provided scope
    MUST correspond to a column on the model.

    Cross-organization access is indistinguishable from a missing record:
    both raise NotFoundError.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        organization_id: Scope by organization_id column.
        stage_id: Scope by stage_id column (sub-stages, history rows).
        order_id: Scope by order_id column (items).
        for_update: Emit SELECT ... FOR UPDATE (no-op on SQLite).

    Raises:
        ValueError: No scope given, or a scope names a missing column.
        NotFoundError: Entity absent OR outside the given scope.
    """
    provided_scopes = {
        "organization_id": organization_id,
        "stage_id": stage_id,
        "order_id": order_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(organization_id, stage_id, or order_id). "
            "Unscoped lookups are forbidden — they bypass organization isolation."
        )

    missing_fields = sorted(f for f in provided_scopes if not hasattr(model, f))
    if missing_fields:
        raise ValueError(
            f"{model.__name__} id={pk}: scope field(s) {missing_fields} "
            f"do not exist as columns on {model.__name__}. "
            "Refusing to perform a partially scoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            provided_scopes,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def get_scoped_or_none(
    model,
    pk: str,
    *,
    organization_id: str | None = None,
    stage_id: str | None = None,
    order_id: str | None = None,
):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still enforces the scope requirement (ValueError), because silent
    unscoped lookups are never acceptable regardless of return style.
    """
    try:
        return get_scoped(
            model,
            pk,
            organization_id=organization_id,
            stage_id=stage_id,
            order_id=order_id,
        )
    except NotFoundError:
        return None
