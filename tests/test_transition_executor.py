"""
TransitionExecutor tests — batch semantics, atomicity, integrity alerts.

Test blocks:
  1. Forward / forward-to-target
  2. Rework
  3. Partial and total failure
  4. Batch-level errors (authorization, validation, configuration)
  5. Atomicity: rollback on persistence failure, compare-and-swap
  6. Ledger inconsistency alerting
"""

from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from tracker.core.exceptions import AuthorizationError, ConfigurationError, ValidationError
from tracker.models import db
from tracker.models.base import _utcnow, as_utc
from tracker.models.workflow import Item, ItemHistory, Position
from tracker.services import transition_executor as executor_module
from tracker.services.helpers.scoped_queries import get_scoped
from tracker.services.history_ledger import HistoryLedger
from tracker.services.integrity_observability import evaluate_integrity_alerts, get_recent_integrity_events
from tracker.services.transition_executor import (
    Actor,
    Forward,
    ForwardTo,
    Rework,
    TransitionExecutor,
    build_operation,
    move_items,
)

@pytest.fixture
def now():
    return _utcnow()


@pytest.fixture
def executor(now):
    return TransitionExecutor(clock=lambda: now)


@pytest.fixture
def owner(organization):
    return Actor(user_id="owner-1", role="Owner", organization_id=organization)


@pytest.fixture
def worker(organization):
    return Actor(user_id="worker-1", role="Worker", organization_id=organization)


def _position(item_id):
    return db.session.get(Item, item_id).position


def _history(item_id):
    return HistoryLedger().entries_for(item_id)


# ── 1. Forward ──────────────────────────────────────────────────────────


class TestForward:
    def test_all_items_advance_one_position(self, organization, standard_workflow, make_item, executor, worker):
        ids = [make_item(organization, standard_workflow["A"]) for _ in range(3)]

        result = executor.execute(ids, Forward(), worker)

        assert result.status == "succeeded"
        assert result.http_status == 200
        assert [s.item_id for s in result.succeeded] == ids
        for item_id in ids:
            assert _position(item_id) == standard_workflow["B/B1"]

    def test_history_is_closed_and_opened_at_the_same_instant(
        self, organization, standard_workflow, make_item, executor, worker, now,
    ):
        item_id = make_item(organization, standard_workflow["B/B1"])

        result = executor.execute([item_id], Forward(), worker)

        old, new = _history(item_id)
        assert as_utc(old.exited_at) == now
        assert as_utc(new.entered_at) == now
        assert new.position == standard_workflow["B/B2"]
        assert new.user_id == "worker-1"
        assert new.rework_reason is None
        assert result.succeeded[0].history_entry_id == new.id

    def test_success_reports_both_positions(self, organization, standard_workflow, make_item, executor, worker):
        item_id = make_item(organization, standard_workflow["B/B2"])

        success = executor.execute([item_id], Forward(), worker).succeeded[0]

        assert success.from_position == standard_workflow["B/B2"]
        assert success.to_position == standard_workflow["C"]

    def test_forward_to_bare_stage_enters_first_sub_stage(
        self, organization, standard_workflow, make_item, executor, worker,
    ):
        item_id = make_item(organization, standard_workflow["A"])
        target = Position(standard_workflow.stages["B"])

        result = executor.execute([item_id], ForwardTo(target), worker)

        assert result.status == "succeeded"
        assert _position(item_id) == standard_workflow["B/B1"]

    def test_forward_to_skips_stages(self, organization, standard_workflow, make_item, executor, worker):
        item_id = make_item(organization, standard_workflow["A"])

        executor.execute([item_id], ForwardTo(standard_workflow["C"]), worker)

        assert _position(item_id) == standard_workflow["C"]
        assert len(_history(item_id)) == 2

    def test_item_without_history_gets_its_first_entry(
        self, organization, standard_workflow, make_item, executor, worker,
    ):
        item_id = make_item(organization, standard_workflow["A"], with_history=False)

        executor.execute([item_id], Forward(), worker)

        entries = _history(item_id)
        assert len(entries) == 1
        assert entries[0].position == standard_workflow["B/B1"]
        assert entries[0].is_open

    def test_duplicate_ids_move_once(self, organization, standard_workflow, make_item, executor, worker):
        item_id = make_item(organization, standard_workflow["A"])

        result = executor.execute([item_id, item_id], Forward(), worker)

        assert result.total == 1
        assert _position(item_id) == standard_workflow["B/B1"]


# ── 2. Rework ───────────────────────────────────────────────────────────


class TestRework:
    def test_moves_one_step_back_and_stores_reason(
        self, organization, standard_workflow, make_item, executor, owner,
    ):
        item_id = make_item(organization, standard_workflow["C"])

        result = executor.execute([item_id], Rework("  Stitching uneven  "), owner)

        assert result.status == "succeeded"
        assert _position(item_id) == standard_workflow["B/B2"]
        assert _history(item_id)[-1].rework_reason == "Stitching uneven"

    def test_first_sub_stage_goes_back_to_previous_stage(
        self, organization, standard_workflow, make_item, executor, owner,
    ):
        item_id = make_item(organization, standard_workflow["B/B1"])

        executor.execute([item_id], Rework("wrong fabric"), owner)

        assert _position(item_id) == standard_workflow["A"]

    def test_rework_at_first_position_fails_per_item(
        self, organization, standard_workflow, make_item, executor, owner,
    ):
        item_id = make_item(organization, standard_workflow["A"])

        result = executor.execute([item_id], Rework("no good"), owner)

        assert result.status == "failed"
        assert result.failed[0].reason == "no_valid_transition"
        assert "first position" in result.failed[0].detail

    def test_worker_cannot_rework(self, organization, standard_workflow, make_item, executor, worker):
        item_id = make_item(organization, standard_workflow["C"])

        with pytest.raises(AuthorizationError):
            executor.execute([item_id], Rework("not allowed"), worker)

        assert _position(item_id) == standard_workflow["C"]
        assert len(_history(item_id)) == 1

    @pytest.mark.parametrize("reason", ["", "  ", "ab", " a  "])
    def test_short_reason_is_rejected(self, organization, standard_workflow, make_item, executor, owner, reason):
        item_id = make_item(organization, standard_workflow["C"])

        with pytest.raises(ValidationError, match="at least 3 characters"):
            executor.execute([item_id], Rework(reason), owner)


# ── 3. Partial and total failure ────────────────────────────────────────


class TestBatchOutcome:
    def test_partial_batch_reports_both_lists(
        self, organization, other_organization, standard_workflow, build_workflow,
        make_item, executor, worker,
    ):
        movable = make_item(organization, standard_workflow["A"])
        at_end = make_item(organization, standard_workflow["C"])
        foreign_wf = build_workflow(other_organization, [("X", [])])
        foreign = make_item(other_organization, foreign_wf["X"])
        original_entry_id = _history(at_end)[0].id

        result = executor.execute([movable, "missing-id", at_end, foreign], Forward(), worker)

        assert result.status == "partial"
        assert result.http_status == 207
        assert [s.item_id for s in result.succeeded] == [movable]
        assert {f.item_id: f.reason for f in result.failed} == {
            "missing-id": "not_found",
            at_end: "no_valid_transition",
            foreign: "not_found",
        }
        assert _position(at_end) == standard_workflow["C"]
        at_end_history = _history(at_end)
        assert len(at_end_history) == 1
        assert at_end_history[0].id == original_entry_id
        assert at_end_history[0].exited_at is None

    def test_failed_items_do_not_affect_siblings_in_order(
        self, organization, standard_workflow, make_item, executor, worker,
    ):
        first = make_item(organization, standard_workflow["A"])
        blocked = make_item(organization, standard_workflow["C"])
        last = make_item(organization, standard_workflow["B/B1"])

        result = executor.execute([first, blocked, last], Forward(), worker)

        assert [s.item_id for s in result.succeeded] == [first, last]
        assert _position(last) == standard_workflow["B/B2"]

    def test_all_failed(self, organization, standard_workflow, make_item, executor, worker):
        at_end = make_item(organization, standard_workflow["C"])

        result = executor.execute([at_end, "nope"], Forward(), worker)

        assert result.status == "failed"
        assert result.http_status == 500
        assert result.succeeded == []

    def test_item_at_bare_divided_stage_fails(self, organization, standard_workflow, make_item, executor, worker):
        item_id = make_item(organization, Position(standard_workflow.stages["B"]))

        result = executor.execute([item_id], Forward(), worker)

        assert result.failed[0].reason == "no_valid_transition"

    def test_invalid_target_fails_per_item(self, organization, standard_workflow, make_item, executor, worker):
        ahead = make_item(organization, standard_workflow["C"])
        behind = make_item(organization, standard_workflow["A"])

        result = executor.execute([ahead, behind], ForwardTo(standard_workflow["B/B2"]), worker)

        assert [s.item_id for s in result.succeeded] == [behind]
        assert result.failed[0].item_id == ahead
        assert result.failed[0].reason == "no_valid_transition"

    def test_to_dict_shape(self, organization, standard_workflow, make_item, executor, worker):
        ok = make_item(organization, standard_workflow["A"])

        body = executor.execute([ok, "missing"], Forward(), worker).to_dict()

        assert body["status"] == "partial"
        assert body["message"] == "Processed 2 items. Success: 1, Failures: 1."
        assert body["succeeded"][0]["to_position"] == standard_workflow["B/B1"].to_dict()
        assert body["failed"] == [{
            "item_id": "missing",
            "reason": "not_found",
            "detail": "Item not found or cannot be accessed.",
        }]

    def test_to_dict_omits_empty_failures(self, organization, standard_workflow, make_item, executor, worker):
        ok = make_item(organization, standard_workflow["A"])
        assert "failed" not in executor.execute([ok], Forward(), worker).to_dict()


# ── 4. Batch-level errors ───────────────────────────────────────────────


class TestBatchLevelErrors:
    def test_authorization_checked_before_any_item_is_read(
        self, organization, standard_workflow, make_item, executor,
    ):
        stranger = Actor(user_id="x", role="Viewer", organization_id=organization)
        item_id = make_item(organization, standard_workflow["A"])

        with patch.object(executor_module, "get_scoped") as scoped, \
                patch.object(executor_module, "load_workflow_graph") as graph:
            with pytest.raises(AuthorizationError):
                executor.execute([item_id], Forward(), stranger)

        scoped.assert_not_called()
        graph.assert_not_called()

    def test_empty_workflow_is_a_configuration_error(self, organization, executor, worker):
        with pytest.raises(ConfigurationError):
            executor.execute(["any"], Forward(), worker)

    @pytest.mark.parametrize("item_ids", [[], None, "item-1", [""], [123]])
    def test_malformed_item_ids(self, organization, standard_workflow, executor, worker, item_ids):
        with pytest.raises(ValidationError):
            executor.execute(item_ids, Forward(), worker)

    def test_batch_size_limit(self, organization, standard_workflow, worker):
        small = TransitionExecutor(max_batch_size=2)
        with pytest.raises(ValidationError, match="at most 2 items"):
            small.execute(["a", "b", "c"], Forward(), worker)

    def test_unsupported_operation(self, organization, standard_workflow, executor, worker):
        with pytest.raises(ValidationError, match="Unsupported operation"):
            executor.execute(["a"], object(), worker)


# ── 5. Atomicity ────────────────────────────────────────────────────────


class TestAtomicity:
    def test_persistence_failure_rolls_back_the_whole_item(
        self, organization, standard_workflow, make_item, executor, worker,
    ):
        item_id = make_item(organization, standard_workflow["A"])
        boom = OperationalError("INSERT INTO item_history", {}, Exception("disk I/O error"))

        with patch.object(HistoryLedger, "open_entry", side_effect=boom):
            result = executor.execute([item_id], Forward(), worker)

        assert result.status == "failed"
        assert result.failed[0].reason == "persistence_error"
        assert _position(item_id) == standard_workflow["A"]
        entries = _history(item_id)
        assert len(entries) == 1
        assert entries[0].is_open

    def test_rollback_of_one_item_keeps_earlier_commits(
        self, organization, standard_workflow, make_item, executor, worker,
    ):
        first = make_item(organization, standard_workflow["A"])
        second = make_item(organization, standard_workflow["A"])
        boom = OperationalError("INSERT INTO item_history", {}, Exception("lost connection"))
        real_open_entry = HistoryLedger.open_entry
        calls = {"n": 0}

        def flaky_open_entry(self, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise boom
            return real_open_entry(self, *args, **kwargs)

        with patch.object(HistoryLedger, "open_entry", flaky_open_entry):
            result = executor.execute([first, second], Forward(), worker)

        assert result.status == "partial"
        assert _position(first) == standard_workflow["B/B1"]
        assert _position(second) == standard_workflow["A"]

    def test_concurrent_move_is_detected_by_compare_and_swap(
        self, organization, standard_workflow, make_item, executor, worker,
    ):
        item_id = make_item(organization, standard_workflow["A"])
        moved_elsewhere = standard_workflow["C"]

        def racing_get_scoped(model, pk, **kwargs):
            row = get_scoped(model, pk, **kwargs)
            # Another writer moves the item after it was read
            db.session.execute(
                update(Item)
                .where(Item.id == pk)
                .values(current_stage_id=moved_elsewhere.stage_id, current_sub_stage_id=None)
                .execution_options(synchronize_session=False)
            )
            return row

        with patch.object(executor_module, "get_scoped", racing_get_scoped):
            result = executor.execute([item_id], Forward(), worker)

        assert result.failed[0].reason == "persistence_error"
        assert "modified concurrently" in result.failed[0].detail
        events = get_recent_integrity_events(event_type="concurrent_position_update")
        assert [e["item_id"] for e in events] == [item_id]
        # The racing update shared the rolled-back transaction
        assert _position(item_id) == standard_workflow["A"]
        assert len(_history(item_id)) == 1


# ── 6. Ledger inconsistency ─────────────────────────────────────────────


class TestLedgerInconsistency:
    def _corrupt(self, organization, item_id, position):
        db.session.add(ItemHistory(
            organization_id=organization, item_id=item_id,
            stage_id=position.stage_id, sub_stage_id=position.sub_stage_id,
            entered_at=_utcnow(),
        ))
        db.session.commit()

    def test_reported_per_item_and_alerted(self, organization, standard_workflow, make_item, executor, worker):
        healthy = make_item(organization, standard_workflow["A"])
        corrupt = make_item(organization, standard_workflow["A"])
        self._corrupt(organization, corrupt, standard_workflow["A"])

        result = executor.execute([corrupt, healthy], Forward(), worker)

        assert result.status == "partial"
        assert result.failed[0].item_id == corrupt
        assert result.failed[0].reason == "ledger_inconsistency"
        assert _position(corrupt) == standard_workflow["A"]

        events = get_recent_integrity_events(event_type="ledger_inconsistency")
        assert len(events) == 1
        assert events[0]["item_id"] == corrupt
        assert len(events[0]["details"]["open_entry_ids"]) == 2

        alerts = evaluate_integrity_alerts()["alerts"]
        assert [a["code"] for a in alerts] == ["INT-LEDGER-001"]

        scoped = evaluate_integrity_alerts(organization_id=organization)["alerts"]
        assert [a["code"] for a in scoped] == ["INT-LEDGER-001"]
        assert evaluate_integrity_alerts(organization_id="another-org")["alerts"] == []
        assert get_recent_integrity_events(organization_id="another-org") == []

    def test_position_mismatch_is_inconsistent(self, organization, standard_workflow, make_item, executor, worker):
        item_id = make_item(organization, standard_workflow["A"], with_history=False)
        self._corrupt(organization, item_id, standard_workflow["C"])

        result = executor.execute([item_id], Forward(), worker)

        assert result.failed[0].reason == "ledger_inconsistency"
        assert len(_history(item_id)) == 1


# ── build_operation / move_items ────────────────────────────────────────


class TestBuildOperation:
    def test_forward_without_target(self):
        assert build_operation("forward") == Forward()

    def test_forward_with_target_becomes_forward_to(self):
        assert build_operation("forward", target_stage_id="s", target_sub_stage_id="ss") == \
            ForwardTo(Position("s", "ss"))

    def test_forward_to_requires_target(self):
        with pytest.raises(ValidationError, match="target_stage_id is required"):
            build_operation("forward_to")

    def test_rework_carries_reason(self):
        assert build_operation("rework", rework_reason="torn") == Rework("torn")

    def test_unknown_operation(self):
        with pytest.raises(ValidationError, match="Unknown operation"):
            build_operation("teleport")


def test_move_items_uses_app_config(app, organization, standard_workflow, make_item, worker):
    item_id = make_item(organization, standard_workflow["A"])
    app.config["WORKFLOW_MAX_BATCH_SIZE"] = 1
    try:
        with pytest.raises(ValidationError):
            move_items([item_id, "other"], Forward(), worker)
        assert move_items([item_id], Forward(), worker).status == "succeeded"
    finally:
        app.config["WORKFLOW_MAX_BATCH_SIZE"] = 500
