import argparse
import asyncio
from pathlib import Path
import sys

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import select

from database import async_session_maker
from database.models import Affiliate
from services.stats import StatsAggregator

"""
Repair tool: recompute affiliate totals from referrals, visits and withdrawals.

Usage examples:
  # Dry run: report affiliates whose stored totals have drifted
    python scripts/recompute_stats.py

  # Apply for a single affiliate
    python scripts/recompute_stats.py --affiliate 42 --apply

Notes:
- Each affiliate is recomputed in its own transaction under its row lock.
- Use --dry-run (default) to preview changes safely.
"""


def parse_args():
    p = argparse.ArgumentParser(description="Recompute affiliate totals")
    p.add_argument("--affiliate", type=int, help="Only this affiliate ID")
    p.add_argument("--apply", action="store_true", help="Apply changes (omit for dry run)")
    return p.parse_args()


async def main():
    args = parse_args()

    async with async_session_maker() as session:
        ids_q = select(Affiliate.id).order_by(Affiliate.id)
        if args.affiliate:
            ids_q = ids_q.where(Affiliate.id == args.affiliate)
        affiliate_ids = (await session.execute(ids_q)).scalars().all()

    if not affiliate_ids:
        print("No affiliates found for filter")
        return

    drifted = 0
    for affiliate_id in affiliate_ids:
        async with async_session_maker() as session:
            stored = (await session.execute(
                select(Affiliate.total_earnings, Affiliate.total_referrals, Affiliate.total_visits)
                .where(Affiliate.id == affiliate_id)
            )).one()

            affiliate = await StatsAggregator(session).recompute(affiliate_id)
            fresh = (affiliate.total_earnings, affiliate.total_referrals, affiliate.total_visits)

            if tuple(stored) != fresh:
                drifted += 1
                print(
                    f"Affiliate {affiliate_id} ({affiliate.affiliate_code}): "
                    f"earnings {stored[0]} -> {fresh[0]}, "
                    f"referrals {stored[1]} -> {fresh[1]}, "
                    f"visits {stored[2]} -> {fresh[2]}"
                )

            if args.apply:
                await session.commit()
            else:
                await session.rollback()

    print(f"Checked {len(affiliate_ids)} affiliate(s), {drifted} drifted.")
    if drifted and not args.apply:
        print("Dry run only. Re-run with --apply to write changes.")


if __name__ == "__main__":
    asyncio.run(main())
