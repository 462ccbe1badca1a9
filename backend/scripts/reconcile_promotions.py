#!/usr/bin/env python3
"""
Promotion Reconciliation Script

Closes out stale-semester projects, memberships and group references for
promoted students, then settles old groups. Safe to run as often as needed;
a second run with nothing new to fix changes nothing.

Usage:
    python scripts/reconcile_promotions.py                         # Students in sem >= 6
    python scripts/reconcile_promotions.py --min-semester 4 --degree M.Tech
    python scripts/reconcile_promotions.py --promote-from 3 --degree M.Tech   # Advance, then reconcile
"""

import asyncio
import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def main(args: argparse.Namespace) -> int:
    from spms.core.config import settings
    from spms.core.database import close_db
    from spms.schemas.promotion import CohortFilter
    from spms.services.promotion_reconciler import PromotionReconciler
    from spms.services.semester_promotion import run_promotion_pipeline

    try:
        if args.promote_from is not None:
            if not args.degree:
                print("[Reconcile] ERROR: --promote-from needs --degree")
                return 2
            promotion, report = await run_promotion_pipeline(args.degree, args.promote_from)
            print(f"[Reconcile] Promoted {promotion.students_promoted} students "
                  f"({promotion.degree_program.value} sem {promotion.from_semester} -> {promotion.to_semester})")
        else:
            cohort = CohortFilter(
                min_semester=args.min_semester or settings.RECONCILE_MIN_SEMESTER,
                degree_program=args.degree,
            )
            report = await PromotionReconciler().run_promotion_reconciliation(cohort)
    finally:
        await close_db()

    print(json.dumps(report.model_dump(mode="json"), indent=2))
    return 1 if report.errors else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the promotion reconciliation pass")
    parser.add_argument("--min-semester", type=int, default=None,
                        help="Reconcile students whose current semester is at least this")
    parser.add_argument("--degree", choices=["B.Tech", "M.Tech"], default=None,
                        help="Restrict to one degree program")
    parser.add_argument("--promote-from", type=int, default=None,
                        help="Advance this semester's cohort first (requires --degree)")
    sys.exit(asyncio.run(main(parser.parse_args())))
