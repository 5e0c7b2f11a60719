"""
Workflow analytics — read-only views over the history ledger.

Functions:
    get_item_history        timeline of one item with dwell times
    get_bottlenecks         items that have been sitting longest at their position
    get_workflow_overview   item counts per position in workflow order
    get_stage_dwell_stats   per-position dwell statistics and rework counts
    list_forward_targets    positions an item may jump forward to
    list_rework_targets     the (single) position rework would send it to
    check_ledger_integrity  items whose ledger breaks the one-open-entry rule
    check_all_ledgers       check_ledger_integrity across every organization

Dwell time is computed in Python rather than SQL so the same code runs on
SQLite (tests) and PostgreSQL.
"""

import logging
from collections import defaultdict
from datetime import datetime

from sqlalchemy import select

from tracker.core.exceptions import ConfigurationError
from tracker.models import db
from tracker.models.base import _utcnow, as_utc, isoformat
from tracker.models.organization import Organization
from tracker.models.workflow import Item, ItemHistory, Order, Position, WorkflowStage, WorkflowSubStage
from tracker.services.helpers.scoped_queries import get_scoped
from tracker.services.transition_resolver import Terminal, forward_targets, resolve_previous
from tracker.services.workflow_graph import WorkflowGraph, load_workflow_graph

logger = logging.getLogger(__name__)

DEFAULT_BOTTLENECK_LIMIT = 10


def _dwell_seconds(entered_at: datetime, exited_at: datetime | None, now: datetime) -> float:
    end = as_utc(exited_at) if exited_at is not None else now
    return max((end - as_utc(entered_at)).total_seconds(), 0.0)


def _name_maps(organization_id: str) -> tuple[dict, dict]:
    stages = dict(db.session.execute(
        select(WorkflowStage.id, WorkflowStage.name)
        .where(WorkflowStage.organization_id == organization_id)
    ).all())
    subs = dict(db.session.execute(
        select(WorkflowSubStage.id, WorkflowSubStage.name)
        .where(WorkflowSubStage.organization_id == organization_id)
    ).all())
    return stages, subs


def _display_graph(organization_id: str) -> WorkflowGraph | None:
    """Graph for read-only views; an empty workflow is not an error here."""
    try:
        return load_workflow_graph(organization_id)
    except ConfigurationError:
        has_stages = db.session.execute(
            select(WorkflowStage.id).where(WorkflowStage.organization_id == organization_id).limit(1)
        ).first()
        if has_stages:
            raise
        return None


# ── Item timeline ────────────────────────────────────────────────────────────


def get_item_history(organization_id: str, item_id: str, *, now: datetime | None = None) -> list[dict]:
    """The item's history, oldest first, with names and dwell_seconds.

    Raises:
        NotFoundError: item missing or outside the organization.
    """
    get_scoped(Item, item_id, organization_id=organization_id)
    now = now or _utcnow()
    stage_names, sub_names = _name_maps(organization_id)

    entries = db.session.execute(
        select(ItemHistory)
        .where(ItemHistory.item_id == item_id, ItemHistory.organization_id == organization_id)
        .order_by(ItemHistory.entered_at, ItemHistory.exited_at.is_(None))
    ).scalars().all()

    rows = []
    for e in entries:
        d = e.to_dict()
        d["stage_name"] = stage_names.get(e.stage_id)
        d["sub_stage_name"] = sub_names.get(e.sub_stage_id)
        d["dwell_seconds"] = round(_dwell_seconds(e.entered_at, e.exited_at, now), 3)
        d["is_current"] = e.exited_at is None
        rows.append(d)
    return rows


# ── Dashboards ───────────────────────────────────────────────────────────────


def get_bottlenecks(
    organization_id: str,
    *,
    limit: int = DEFAULT_BOTTLENECK_LIMIT,
    now: datetime | None = None,
) -> list[dict]:
    """Items ranked by time spent at their current position, longest first."""
    now = now or _utcnow()
    stage_names, sub_names = _name_maps(organization_id)

    rows = db.session.execute(
        select(ItemHistory, Order.order_number)
        .join(Item, Item.id == ItemHistory.item_id)
        .join(Order, Order.id == Item.order_id)
        .where(
            ItemHistory.organization_id == organization_id,
            ItemHistory.exited_at.is_(None),
        )
        .order_by(ItemHistory.entered_at)
        .limit(limit)
    ).all()

    return [
        {
            "item_id": entry.item_id,
            "order_number": order_number,
            "stage_id": entry.stage_id,
            "sub_stage_id": entry.sub_stage_id,
            "stage_name": stage_names.get(entry.stage_id),
            "sub_stage_name": sub_names.get(entry.sub_stage_id),
            "entered_at": isoformat(entry.entered_at),
            "dwell_seconds": round(_dwell_seconds(entry.entered_at, None, now), 3),
        }
        for entry, order_number in rows
    ]


def get_workflow_overview(organization_id: str) -> list[dict]:
    """Item counts for every position of the workflow, in graph order."""
    graph = _display_graph(organization_id)
    if graph is None:
        return []

    counts: dict[Position, int] = defaultdict(int)
    for stage_id, sub_stage_id in db.session.execute(
        select(Item.current_stage_id, Item.current_sub_stage_id)
        .where(Item.organization_id == organization_id)
    ).all():
        counts[Position(stage_id, sub_stage_id)] += 1

    return [{**node.to_dict(), "item_count": counts.get(node.position, 0)} for node in graph]


def get_stage_dwell_stats(organization_id: str, *, now: datetime | None = None) -> list[dict]:
    """Per-position dwell statistics, in graph order.

    Closed entries feed avg/max dwell; open entries are counted separately
    as items currently waiting. ``rework_entries`` counts arrivals caused by
    rework.
    """
    graph = _display_graph(organization_id)
    if graph is None:
        return []
    now = now or _utcnow()

    closed: dict[Position, list[float]] = defaultdict(list)
    waiting: dict[Position, int] = defaultdict(int)
    reworked: dict[Position, int] = defaultdict(int)

    for e in db.session.execute(
        select(ItemHistory).where(ItemHistory.organization_id == organization_id)
    ).scalars():
        pos = e.position
        if e.exited_at is None:
            waiting[pos] += 1
        else:
            closed[pos].append(_dwell_seconds(e.entered_at, e.exited_at, now))
        if e.rework_reason:
            reworked[pos] += 1

    stats = []
    for node in graph:
        samples = closed.get(node.position, [])
        stats.append({
            **node.to_dict(),
            "completed_visits": len(samples),
            "avg_dwell_seconds": round(sum(samples) / len(samples), 3) if samples else None,
            "max_dwell_seconds": round(max(samples), 3) if samples else None,
            "currently_waiting": waiting.get(node.position, 0),
            "rework_entries": reworked.get(node.position, 0),
        })
    return stats


# ── Target discovery ─────────────────────────────────────────────────────────


def list_forward_targets(organization_id: str, item_id: str) -> list[dict]:
    """Every position strictly after the item's current one."""
    item = get_scoped(Item, item_id, organization_id=organization_id)
    graph = load_workflow_graph(organization_id)
    return [node.to_dict() for node in forward_targets(item.position, graph)]


def list_rework_targets(organization_id: str, item_id: str) -> list[dict]:
    """The one-step-back destination, or [] at the start of the workflow."""
    item = get_scoped(Item, item_id, organization_id=organization_id)
    graph = load_workflow_graph(organization_id)
    previous = resolve_previous(item.position, graph)
    if isinstance(previous, Terminal):
        return []
    return [graph.node_for(previous).to_dict()]


# ── Integrity ────────────────────────────────────────────────────────────────


def check_ledger_integrity(organization_id: str) -> dict:
    """Report items whose history ledger is inconsistent. Never repairs.

    Problems:
        no_open_entry        item has history but none of it is open
        multiple_open        more than one open entry
        position_mismatch    open entry disagrees with the item's position
    """
    open_by_item: dict[str, list[ItemHistory]] = defaultdict(list)
    for e in db.session.execute(
        select(ItemHistory).where(
            ItemHistory.organization_id == organization_id,
            ItemHistory.exited_at.is_(None),
        )
    ).scalars():
        open_by_item[e.item_id].append(e)

    items_with_history = set(db.session.execute(
        select(ItemHistory.item_id)
        .where(ItemHistory.organization_id == organization_id)
        .distinct()
    ).scalars())

    items = db.session.execute(
        select(Item).where(Item.organization_id == organization_id)
    ).scalars().all()

    problems = []
    for item in items:
        open_entries = open_by_item.get(item.id, [])
        if len(open_entries) > 1:
            problems.append({
                "item_id": item.id,
                "problem": "multiple_open",
                "open_entry_ids": [e.id for e in open_entries],
            })
        elif not open_entries:
            if item.id in items_with_history:
                problems.append({"item_id": item.id, "problem": "no_open_entry", "open_entry_ids": []})
        elif open_entries[0].position != item.position:
            problems.append({
                "item_id": item.id,
                "problem": "position_mismatch",
                "open_entry_ids": [open_entries[0].id],
                "item_position": item.position.to_dict(),
                "entry_position": open_entries[0].position.to_dict(),
            })

    if problems:
        logger.warning(
            "Ledger integrity check org=%s: %d problem(s) across %d items",
            organization_id, len(problems), len(items),
            extra={"organization_id": organization_id, "event_type": "ledger_integrity_check"},
        )

    return {
        "organization_id": organization_id,
        "items_checked": len(items),
        "consistent": not problems,
        "problems": problems,
    }


def check_all_ledgers() -> dict:
    """Run check_ledger_integrity for every organization."""
    organization_ids = db.session.execute(
        select(Organization.id).order_by(Organization.created_at)
    ).scalars().all()
    reports = [check_ledger_integrity(org_id) for org_id in organization_ids]
    return {
        "organizations_checked": len(reports),
        "consistent": all(r["consistent"] for r in reports),
        "reports": reports,
    }
