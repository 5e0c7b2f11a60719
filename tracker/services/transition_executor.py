"""
Transition executor — moves a batch of items through the workflow.

Per item:
    Loaded → Resolved → HistoryClosed → PositionUpdated → HistoryOpened → Succeeded
    with Failed(reason) reachable from every step.

Guarantees:
  - Authorization and the workflow graph are checked once per batch, before
    any item is read. AuthorizationError / ConfigurationError / bad input
    abort the whole batch and propagate to the caller.
  - Every item runs in its own database transaction: the history close,
    the position update and the history open commit together or not at
    all. Items are processed sequentially in request order; a failed item
    is rolled back and never aborts its siblings.
  - The item row is read with SELECT ... FOR UPDATE (when enabled) and the
    position update is a compare-and-swap on the position that was read,
    so two concurrent batches cannot both advance the same item from the
    same position.
  - The graph snapshot is reused for the whole batch. Concurrent
    configuration edits are not observed until the next batch.

Batch outcome:
    BatchResult.status is "succeeded" (all), "partial" (some) or "failed"
    (none), mirrored by http_status 200 / 207 / 500.

Usage:
    from tracker.services.transition_executor import Actor, Forward, move_items

    result = move_items(["item-1", "item-2"], Forward(), Actor(user_id, role, org_id))
    if result.status == "partial":
        ...
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, ClassVar

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from tracker.core.exceptions import (
    LedgerInconsistencyError,
    NoValidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from tracker.models import db
from tracker.models.base import _utcnow
from tracker.models.workflow import Item, Position
from tracker.services.access_gate import check_operation
from tracker.services.helpers.scoped_queries import get_scoped
from tracker.services.history_ledger import HistoryLedger
from tracker.services.integrity_observability import record_integrity_event
from tracker.services.transition_resolver import Terminal, resolve_forward, resolve_previous
from tracker.services.workflow_graph import WorkflowGraph, load_workflow_graph

logger = logging.getLogger(__name__)

MIN_REWORK_REASON_LENGTH = 3
DEFAULT_MAX_BATCH_SIZE = 500

BATCH_SUCCEEDED = "succeeded"
BATCH_PARTIAL = "partial"
BATCH_FAILED = "failed"

_BATCH_HTTP_STATUS = {
    BATCH_SUCCEEDED: 200,
    BATCH_PARTIAL: 207,
    BATCH_FAILED: 500,
}


# ── Request types ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Actor:
    """Identity tuple supplied by the upstream identity provider."""

    user_id: str | None
    role: str | None
    organization_id: str


@dataclass(frozen=True)
class Forward:
    kind: ClassVar[str] = "forward"


@dataclass(frozen=True)
class ForwardTo:
    target: Position
    kind: ClassVar[str] = "forward_to"


@dataclass(frozen=True)
class Rework:
    reason: str
    kind: ClassVar[str] = "rework"


OPERATIONS = ("forward", "forward_to", "rework")


def build_operation(
    operation: str,
    *,
    target_stage_id: str | None = None,
    target_sub_stage_id: str | None = None,
    rework_reason: str | None = None,
):
    """Translate the wire-level operation name into an operation object.

    Raises:
        ValidationError: unknown operation or missing/invalid parameters.
    """
    if operation == "forward":
        if target_stage_id:
            return ForwardTo(Position(target_stage_id, target_sub_stage_id or None))
        return Forward()
    if operation == "forward_to":
        if not target_stage_id:
            raise ValidationError(
                "target_stage_id is required for forward_to",
                details={"target_stage_id": "required"},
            )
        return ForwardTo(Position(target_stage_id, target_sub_stage_id or None))
    if operation == "rework":
        return Rework(rework_reason or "")
    raise ValidationError(
        f"Unknown operation '{operation}'",
        details={"operation": f"must be one of {', '.join(OPERATIONS)}"},
    )


# ── Result types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ItemSuccess:
    item_id: str
    from_position: Position
    to_position: Position
    history_entry_id: str

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "from_position": self.from_position.to_dict(),
            "to_position": self.to_position.to_dict(),
            "history_entry_id": self.history_entry_id,
        }


@dataclass(frozen=True)
class ItemFailure:
    item_id: str
    reason: str
    detail: str

    def to_dict(self) -> dict:
        return {"item_id": self.item_id, "reason": self.reason, "detail": self.detail}


@dataclass
class BatchResult:
    operation: str
    succeeded: list[ItemSuccess] = field(default_factory=list)
    failed: list[ItemFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def status(self) -> str:
        if not self.failed:
            return BATCH_SUCCEEDED
        if self.succeeded:
            return BATCH_PARTIAL
        return BATCH_FAILED

    @property
    def http_status(self) -> int:
        return _BATCH_HTTP_STATUS[self.status]

    def to_dict(self) -> dict:
        d = {
            "operation": self.operation,
            "status": self.status,
            "message": (
                f"Processed {self.total} items. "
                f"Success: {len(self.succeeded)}, Failures: {len(self.failed)}."
            ),
            "succeeded": [s.to_dict() for s in self.succeeded],
        }
        if self.failed:
            d["failed"] = [f.to_dict() for f in self.failed]
        return d


# ── Executor ─────────────────────────────────────────────────────────────────


class TransitionExecutor:
    """Stateless orchestrator over an injected session."""

    def __init__(
        self,
        session=None,
        *,
        ledger: HistoryLedger | None = None,
        clock: Callable[[], datetime] = _utcnow,
        lock_items: bool = True,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
    ):
        self.session = session or db.session
        self.ledger = ledger or HistoryLedger(self.session)
        self.clock = clock
        self.lock_items = lock_items
        self.max_batch_size = max_batch_size

    # ── Public API ───────────────────────────────────────────────────────

    def execute(self, item_ids, operation, actor: Actor) -> BatchResult:
        """Apply ``operation`` to every item in ``item_ids``.

        Raises (whole batch, nothing touched):
            ValidationError: malformed item list or operation parameters.
            AuthorizationError: ``actor.role`` may not perform the operation.
            ConfigurationError: the organization's workflow is unusable.
        """
        item_ids = self._validate_item_ids(item_ids)
        self._validate_operation(operation)
        check_operation(actor.role, operation.kind)

        graph = load_workflow_graph(actor.organization_id)

        result = BatchResult(operation=operation.kind)
        for item_id in item_ids:
            outcome = self._process_item(item_id, operation, actor, graph)
            if isinstance(outcome, ItemSuccess):
                result.succeeded.append(outcome)
            else:
                result.failed.append(outcome)

        logger.info(
            "Batch %s by user=%s org=%s: %d succeeded, %d failed (%s)",
            operation.kind, actor.user_id, actor.organization_id,
            len(result.succeeded), len(result.failed), result.status,
            extra={
                "organization_id": actor.organization_id,
                "operation": operation.kind,
                "batch_status": result.status,
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
            },
        )
        return result

    # ── Validation ───────────────────────────────────────────────────────

    def _validate_item_ids(self, item_ids) -> list[str]:
        if not isinstance(item_ids, (list, tuple)) or not item_ids:
            raise ValidationError(
                "At least one item ID is required.",
                details={"item_ids": "must be a non-empty list"},
            )
        if not all(isinstance(i, str) and i.strip() for i in item_ids):
            raise ValidationError(
                "Item IDs must be non-empty strings.",
                details={"item_ids": "invalid entry"},
            )
        if len(item_ids) > self.max_batch_size:
            raise ValidationError(
                f"A batch may contain at most {self.max_batch_size} items.",
                details={"item_ids": f"max {self.max_batch_size}"},
            )

        # Duplicates would advance an item twice; keep the first occurrence
        unique = list(dict.fromkeys(i.strip() for i in item_ids))
        if len(unique) != len(item_ids):
            logger.debug("Dropped %d duplicate item ids from batch", len(item_ids) - len(unique))
        return unique

    def _validate_operation(self, operation) -> None:
        if isinstance(operation, Rework):
            reason = (operation.reason or "").strip()
            if len(reason) < MIN_REWORK_REASON_LENGTH:
                raise ValidationError(
                    f"Rework reason must be at least {MIN_REWORK_REASON_LENGTH} characters long.",
                    details={"rework_reason": f"min length {MIN_REWORK_REASON_LENGTH}"},
                )
        elif not isinstance(operation, (Forward, ForwardTo)):
            raise ValidationError(f"Unsupported operation {operation!r}")

    # ── Per-item unit ────────────────────────────────────────────────────

    def _process_item(self, item_id: str, operation, actor: Actor, graph: WorkflowGraph):
        org_id = actor.organization_id
        try:
            item = get_scoped(Item, item_id, organization_id=org_id, for_update=self.lock_items)
            from_position = item.position

            to_position = self._resolve(from_position, operation, graph)

            timestamp = self.clock()
            rework_reason = operation.reason.strip() if isinstance(operation, Rework) else None

            self.ledger.close_current(item_id, from_position, timestamp)
            self._update_position(item_id, org_id, from_position, to_position, timestamp)
            entry = self.ledger.open_entry(
                item_id,
                to_position,
                actor.user_id,
                timestamp,
                organization_id=org_id,
                rework_reason=rework_reason,
            )
            entry_id = entry.id
            self.session.commit()

        except NotFoundError as exc:
            self.session.rollback()
            return self._fail(item_id, exc.reason, "Item not found or cannot be accessed.")

        except NoValidTransitionError as exc:
            self.session.rollback()
            return self._fail(item_id, exc.reason, str(exc))

        except LedgerInconsistencyError as exc:
            self.session.rollback()
            record_integrity_event(
                event_type="ledger_inconsistency",
                reason=str(exc),
                organization_id=org_id,
                item_id=item_id,
                details={"open_entry_ids": exc.open_entry_ids},
            )
            return self._fail(item_id, exc.reason, str(exc))

        except PersistenceError as exc:
            self.session.rollback()
            return self._fail(item_id, exc.reason, str(exc))

        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                "Transition of item %s failed in the database", item_id,
                exc_info=True, extra={"item_id": item_id, "operation": operation.kind},
            )
            return self._fail(
                item_id, PersistenceError.reason,
                f"Failed to persist transition: {exc.__class__.__name__}",
            )

        logger.debug(
            "Item %s moved %s -> %s", item_id, from_position, to_position,
            extra={"item_id": item_id, "operation": operation.kind},
        )
        return ItemSuccess(item_id, from_position, to_position, entry_id)

    def _resolve(self, current: Position, operation, graph: WorkflowGraph) -> Position:
        if isinstance(operation, Rework):
            resolved = resolve_previous(current, graph)
        elif isinstance(operation, ForwardTo):
            resolved = resolve_forward(current, operation.target, graph)
        else:
            resolved = resolve_forward(current, None, graph)

        if isinstance(resolved, Terminal):
            raise NoValidTransitionError(resolved.message)
        return resolved

    def _update_position(
        self,
        item_id: str,
        organization_id: str,
        from_position: Position,
        to_position: Position,
        timestamp: datetime,
    ) -> None:
        """Compare-and-swap the item's position.

        Raises:
            PersistenceError: the row no longer holds ``from_position``.
        """
        if from_position.sub_stage_id is None:
            sub_stage_matches = Item.current_sub_stage_id.is_(None)
        else:
            sub_stage_matches = Item.current_sub_stage_id == from_position.sub_stage_id

        result = self.session.execute(
            update(Item)
            .where(
                Item.id == item_id,
                Item.organization_id == organization_id,
                Item.current_stage_id == from_position.stage_id,
                sub_stage_matches,
            )
            .values(
                current_stage_id=to_position.stage_id,
                current_sub_stage_id=to_position.sub_stage_id,
                updated_at=timestamp,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            record_integrity_event(
                event_type="concurrent_position_update",
                reason=f"Item {item_id} left {from_position} before the update committed",
                severity="warning",
                organization_id=organization_id,
                item_id=item_id,
            )
            raise PersistenceError(
                f"Item {item_id} was modified concurrently; its position is no longer {from_position}"
            )

    @staticmethod
    def _fail(item_id: str, reason: str, detail: str) -> ItemFailure:
        logger.warning(
            "Transition failed for item %s: [%s] %s", item_id, reason, detail,
            extra={"item_id": item_id, "reason": reason},
        )
        return ItemFailure(item_id, reason, detail)


def move_items(item_ids, operation, actor: Actor) -> BatchResult:
    """Run a batch with settings from the current Flask app config."""
    executor = TransitionExecutor(
        lock_items=current_app.config.get("WORKFLOW_LOCK_ITEMS", True),
        max_batch_size=current_app.config.get("WORKFLOW_MAX_BATCH_SIZE", DEFAULT_MAX_BATCH_SIZE),
    )
    return executor.execute(item_ids, operation, actor)
