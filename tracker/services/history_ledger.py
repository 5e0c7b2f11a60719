"""
History ledger — the append-only dwell-time log behind every transition.

Each ItemHistory row is one interval an item spent at one position. The
ledger only ever does two things: close the currently-open row (set
``exited_at``) and open a new one. Closed rows are never modified.

Invariants:
  - At most one open row (exited_at IS NULL) per item.
  - The open row mirrors the item's current position.
  - Rows ordered by entered_at are contiguous: each exited_at equals the
    next row's entered_at.

Violations are reported as LedgerInconsistencyError and never repaired
here; they point to an earlier atomicity failure.

Transaction control:
    The ledger uses ``flush`` only. The caller owns commit/rollback so the
    history writes and the item position update land in one transaction.

Usage:
    ledger = HistoryLedger()
    entry = ledger.advance(item_id, from_pos, to_pos, user_id, now,
                           organization_id=org_id)
    db.session.commit()
"""

import logging
from datetime import datetime

from sqlalchemy import select

from tracker.core.exceptions import LedgerInconsistencyError
from tracker.models import db
from tracker.models.workflow import ItemHistory, Position

logger = logging.getLogger(__name__)


class HistoryLedger:
    """Stateless ledger over an injected SQLAlchemy session."""

    def __init__(self, session=None):
        self.session = session or db.session

    def open_entries(self, item_id: str) -> list[ItemHistory]:
        return list(
            self.session.execute(
                select(ItemHistory)
                .where(ItemHistory.item_id == item_id, ItemHistory.exited_at.is_(None))
                .order_by(ItemHistory.entered_at)
            ).scalars()
        )

    def current_entry(self, item_id: str) -> ItemHistory | None:
        """Return the item's single open entry, or None for a first entry.

        Raises:
            LedgerInconsistencyError: more than one open entry exists.
        """
        entries = self.open_entries(item_id)
        if len(entries) > 1:
            raise LedgerInconsistencyError(
                item_id,
                f"Item {item_id} has {len(entries)} open history entries; expected at most one",
                open_entry_ids=[e.id for e in entries],
            )
        return entries[0] if entries else None

    def close_current(
        self,
        item_id: str,
        from_position: Position | None,
        timestamp: datetime,
    ) -> ItemHistory | None:
        """Set exited_at on the open entry. Returns it, or None if the item
        has no history yet.

        Raises:
            LedgerInconsistencyError: several open entries, or the open entry
                disagrees with ``from_position``.
        """
        entry = self.current_entry(item_id)
        if entry is None:
            return None

        if from_position is not None and entry.position != from_position:
            raise LedgerInconsistencyError(
                item_id,
                f"Open history entry for item {item_id} is at {entry.position} "
                f"but the item is at {from_position}",
                open_entry_ids=[entry.id],
            )

        entry.exited_at = timestamp
        self.session.flush()
        return entry

    def open_entry(
        self,
        item_id: str,
        to_position: Position,
        acting_user: str | None,
        timestamp: datetime,
        *,
        organization_id: str,
        rework_reason: str | None = None,
    ) -> ItemHistory:
        """Insert the open entry for the item's new position."""
        entry = ItemHistory(
            organization_id=organization_id,
            item_id=item_id,
            stage_id=to_position.stage_id,
            sub_stage_id=to_position.sub_stage_id,
            entered_at=timestamp,
            exited_at=None,
            rework_reason=rework_reason,
            user_id=acting_user,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def advance(
        self,
        item_id: str,
        from_position: Position | None,
        to_position: Position,
        acting_user: str | None,
        timestamp: datetime,
        rework_reason: str | None = None,
        *,
        organization_id: str,
    ) -> ItemHistory:
        """Close the open entry (if any) and open one at ``to_position``.

        ``rework_reason`` is stored only for rework moves; pass None for
        forward moves.
        """
        closed = self.close_current(item_id, from_position, timestamp)
        entry = self.open_entry(
            item_id,
            to_position,
            acting_user,
            timestamp,
            organization_id=organization_id,
            rework_reason=rework_reason,
        )
        logger.debug(
            "Ledger advance item=%s %s -> %s (closed=%s)",
            item_id, from_position, to_position, closed.id if closed else None,
        )
        return entry

    def entries_for(self, item_id: str) -> list[ItemHistory]:
        """All entries for an item in timeline order."""
        return list(
            self.session.execute(
                select(ItemHistory)
                .where(ItemHistory.item_id == item_id)
                .order_by(ItemHistory.entered_at, ItemHistory.exited_at.is_(None))
            ).scalars()
        )
