#!/usr/bin/env python3
"""
Stripe Catalog Sync

Pushes the local plan catalog to Stripe: creates or adopts a product per paid
plan and makes sure each one points at an active monthly price matching its
amount. Safe to run repeatedly, e.g. from cron or a CI deploy step.

Usage:
    python -m scripts.sync_stripe_plans [--plan pro] [--dry-run] [--force] [--json]

--dry-run only reads from Stripe and prints the planned changes.
--force re-checks every existing price ref and replaces the ones that no longer
match the catalog amount; matching prices are kept, so it never duplicates.

Exit status is 1 when any plan failed to sync.
"""

import argparse
import json
import logging
import sys

from app.core.config import settings
from app.core.database import SessionLocal
from app.services import subscription_service
from app.services.plan_sync_service import PlanCatalogSynchronizer
from app.services.stripe_gateway import StripeGateway


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Sync subscription plans to Stripe",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m scripts.sync_stripe_plans
  python -m scripts.sync_stripe_plans --plan pro --json
  python -m scripts.sync_stripe_plans --dry-run --force
        """
    )
    parser.add_argument(
        "--plan", "-p",
        action="append",
        dest="plans",
        default=None,
        help="Plan id to sync (repeatable). Defaults to every active plan."
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the sync report as JSON"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview changes without making them"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Re-check existing prices and replace any that no longer match"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(name)s: %(message)s")

    if not settings.STRIPE_SECRET_KEY:
        print("STRIPE_SECRET_KEY is not set", file=sys.stderr)
        sys.exit(2)

    db = SessionLocal()
    try:
        plans = None
        if args.plans:
            plans = []
            for plan_id in args.plans:
                plan = subscription_service.get_plan(db, plan_id)
                if plan is None:
                    print(f"Unknown plan: {plan_id}", file=sys.stderr)
                    sys.exit(2)
                plans.append(plan)

        report = PlanCatalogSynchronizer(db, StripeGateway.from_settings()).synchronize(
            plans, resync_price=args.force, dry_run=args.dry_run
        )
    finally:
        db.close()

    if args.json:
        print(json.dumps(report.model_dump(), indent=2))
    else:
        print(report.message)
        for result in report.results:
            line = f"  {result.plan_id:<16} {result.status:<8}"
            if result.stripe_price_id:
                line += f" {result.stripe_price_id}"
            if result.error:
                line += f" {result.error}"
            print(line)
            for action in result.actions:
                print(f"    - {action}")

    sys.exit(1 if report.errors else 0)


if __name__ == "__main__":
    main()
