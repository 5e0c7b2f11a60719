#!/usr/bin/env python3
"""
History ledger integrity check.

Validates, per organization, that:
  1. Every item with history has exactly one open entry (exited_at IS NULL)
  2. The open entry's position matches the item's current position
  3. The workflow graph loads (unique sequence orders, at least one stage)

Never repairs anything; exits 1 when a problem is found.

Usage:
    python scripts/check_ledger_integrity.py
    python scripts/check_ledger_integrity.py --organization <id>
"""

import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(message)s")
logger = logging.getLogger("ledger_integrity_check")


def main():
    parser = argparse.ArgumentParser(description="Check item history ledgers")
    parser.add_argument("--organization", help="Only check this organization id")
    parser.add_argument("--env", default=os.getenv("APP_ENV", "development"))
    args = parser.parse_args()

    from tracker import create_app
    from tracker.core.exceptions import ConfigurationError
    from tracker.models import db
    from tracker.models.organization import Organization
    from tracker.services.workflow_analytics import check_ledger_integrity
    from tracker.services.workflow_graph import load_workflow_graph

    app = create_app(args.env)

    with app.app_context():
        logger.info("=" * 60)
        logger.info("History Ledger Integrity Check")
        logger.info("=" * 60)

        query = db.select(Organization).order_by(Organization.created_at)
        if args.organization:
            query = query.where(Organization.id == args.organization)
        organizations = db.session.execute(query).scalars().all()

        errors = 0
        for org in organizations:
            logger.info("\n[%s] %s", org.slug, org.id)

            try:
                graph = load_workflow_graph(org.id)
                logger.info("  ✅ workflow graph: %d positions", len(graph))
            except ConfigurationError as exc:
                logger.warning("  ⚠️  workflow graph unusable: %s", exc)

            report = check_ledger_integrity(org.id)
            if report["consistent"]:
                logger.info("  ✅ %d items, ledger consistent", report["items_checked"])
                continue

            for problem in report["problems"]:
                errors += 1
                logger.error(
                    "  ❌ item %s: %s (open entries: %s)",
                    problem["item_id"], problem["problem"],
                    ", ".join(problem["open_entry_ids"]) or "none",
                )

        logger.info("\n" + "=" * 60)
        logger.info("Organizations checked: %d  Problems: %d", len(organizations), errors)
        return 1 if errors else 0


if __name__ == "__main__":
    sys.exit(main())
