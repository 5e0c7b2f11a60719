"""
HistoryLedger tests — close/open semantics and corruption detection.

The ledger only flushes; each test commits or rolls back explicitly.
"""

from datetime import timedelta

import pytest

from tracker.core.exceptions import LedgerInconsistencyError
from tracker.models import db
from tracker.models.base import _utcnow, as_utc
from tracker.models.workflow import ItemHistory
from tracker.services.history_ledger import HistoryLedger


@pytest.fixture
def ledger():
    return HistoryLedger()


class TestAdvance:
    def test_first_entry_needs_no_close(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["A"], with_history=False)
        now = _utcnow()

        entry = ledger.advance(item_id, None, standard_workflow["A"], "u-1", now,
                               organization_id=organization)
        db.session.commit()

        entries = ledger.entries_for(item_id)
        assert [e.id for e in entries] == [entry.id]
        assert entries[0].is_open
        assert entries[0].user_id == "u-1"

    def test_closes_previous_and_opens_new(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["A"])
        now = _utcnow()

        ledger.advance(item_id, standard_workflow["A"], standard_workflow["B/B1"], "u-1", now,
                       organization_id=organization)
        db.session.commit()

        first, second = ledger.entries_for(item_id)
        assert first.position == standard_workflow["A"]
        assert as_utc(first.exited_at) == now
        assert second.position == standard_workflow["B/B1"]
        assert as_utc(second.entered_at) == now
        assert second.is_open
        assert second.rework_reason is None

    def test_timeline_is_contiguous(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["A"])
        t0 = _utcnow()
        steps = [
            (standard_workflow["A"], standard_workflow["B/B1"]),
            (standard_workflow["B/B1"], standard_workflow["B/B2"]),
            (standard_workflow["B/B2"], standard_workflow["C"]),
        ]
        for minutes, (src, dst) in enumerate(steps, start=1):
            ledger.advance(item_id, src, dst, "u-1", t0 + timedelta(minutes=minutes),
                           organization_id=organization)
        db.session.commit()

        entries = ledger.entries_for(item_id)
        assert len(entries) == 4
        for earlier, later in zip(entries, entries[1:]):
            assert as_utc(earlier.exited_at) == as_utc(later.entered_at)
        assert [e.is_open for e in entries] == [False, False, False, True]

    def test_rework_reason_is_stored_on_new_entry(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["B/B2"])

        entry = ledger.advance(item_id, standard_workflow["B/B2"], standard_workflow["B/B1"], "owner",
                               _utcnow(), rework_reason="Seam came loose",
                               organization_id=organization)
        db.session.commit()

        assert db.session.get(ItemHistory, entry.id).rework_reason == "Seam came loose"


class TestCorruption:
    def _add_open_entry(self, organization, item_id, position):
        db.session.add(ItemHistory(
            organization_id=organization, item_id=item_id,
            stage_id=position.stage_id, sub_stage_id=position.sub_stage_id,
            entered_at=_utcnow(),
        ))
        db.session.commit()

    def test_two_open_entries_raise(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["A"])
        self._add_open_entry(organization, item_id, standard_workflow["A"])

        with pytest.raises(LedgerInconsistencyError) as exc_info:
            ledger.close_current(item_id, standard_workflow["A"], _utcnow())

        assert exc_info.value.item_id == item_id
        assert len(exc_info.value.open_entry_ids) == 2

    def test_open_entry_at_other_position_raises(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["A"])

        with pytest.raises(LedgerInconsistencyError, match="but the item is at"):
            ledger.close_current(item_id, standard_workflow["C"], _utcnow())

    def test_corruption_is_never_repaired(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["A"])
        self._add_open_entry(organization, item_id, standard_workflow["A"])

        with pytest.raises(LedgerInconsistencyError):
            ledger.advance(item_id, standard_workflow["A"], standard_workflow["B/B1"], "u-1",
                           _utcnow(), organization_id=organization)
        db.session.rollback()

        assert len(ledger.open_entries(item_id)) == 2
        assert len(ledger.entries_for(item_id)) == 2

    def test_current_entry_none_without_history(self, organization, standard_workflow, make_item, ledger):
        item_id = make_item(organization, standard_workflow["A"], with_history=False)
        assert ledger.current_entry(item_id) is None
        assert ledger.close_current(item_id, standard_workflow["A"], _utcnow()) is None
