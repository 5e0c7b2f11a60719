#!/usr/bin/env python3
"""
Order Tracker — Demo Workflow Seed.

Creates one organization with a small garment workflow and a handful of
items resting at the first position:

    Intake → Production (Cutting, Sewing, Finishing) → Quality Check → Shipping

Prints bearer tokens for an Owner and a Worker so the API can be tried
straight away.

Usage:
    python scripts/seed_demo_workflow.py
    python scripts/seed_demo_workflow.py --items 25
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tracker import create_app
from tracker.models import db
from tracker.models.base import _utcnow
from tracker.models.organization import Organization
from tracker.models.workflow import Item, Order, WorkflowStage, WorkflowSubStage
from tracker.services.access_gate import ROLE_OWNER, ROLE_WORKER
from tracker.services.history_ledger import HistoryLedger
from tracker.services.jwt_service import generate_access_token

WORKFLOW = [
    ("Intake", []),
    ("Production", ["Cutting", "Sewing", "Finishing"]),
    ("Quality Check", []),
    ("Shipping", []),
]


def seed_workflow(org):
    stages = []
    for seq, (name, subs) in enumerate(WORKFLOW):
        stage = WorkflowStage(organization_id=org.id, name=name, sequence_order=seq)
        db.session.add(stage)
        db.session.flush()
        for sub_seq, sub_name in enumerate(subs):
            db.session.add(WorkflowSubStage(
                organization_id=org.id, stage_id=stage.id,
                name=sub_name, sequence_order=sub_seq,
            ))
        stages.append(stage)
    db.session.flush()
    return stages


def seed_items(org, first_stage, count):
    ledger = HistoryLedger(db.session)
    order = Order(organization_id=org.id, order_number="DEMO-0001", customer_name="Demo Customer")
    db.session.add(order)
    db.session.flush()

    now = _utcnow()
    for _ in range(count):
        item = Item(organization_id=org.id, order_id=order.id, current_stage_id=first_stage.id)
        db.session.add(item)
        db.session.flush()
        ledger.open_entry(item.id, item.position, None, now, organization_id=org.id)
    return order


def main():
    parser = argparse.ArgumentParser(description="Seed a demo workflow")
    parser.add_argument("--items", type=int, default=10)
    args = parser.parse_args()

    app = create_app(os.getenv("APP_ENV", "development"))
    with app.app_context():
        org = Organization(name="Demo Garments", slug=f"demo-{_utcnow():%Y%m%d%H%M%S}")
        db.session.add(org)
        db.session.flush()

        stages = seed_workflow(org)
        order = seed_items(org, stages[0], args.items)
        db.session.commit()

        print(f"Organization: {org.id} ({org.slug})")
        print(f"Order:        {order.order_number} with {args.items} items at '{stages[0].name}'")
        print(f"Owner token:  {generate_access_token('demo-owner', org.id, ROLE_OWNER)}")
        print(f"Worker token: {generate_access_token('demo-worker', org.id, ROLE_WORKER)}")


if __name__ == "__main__":
    main()
