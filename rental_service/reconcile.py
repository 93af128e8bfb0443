"""
Recompute every guarantor points record from its booking amount and push
the differences into the guarantors' balances.

    python -m rental_service.reconcile
"""
import asyncio
import logging

from .config import LOG_LEVEL
from .db import SessionLocal, engine
from .ledger import reconcile_points

logger = logging.getLogger("rental_service.reconcile")


async def run():
    try:
        async with SessionLocal() as db:
            report = await reconcile_points(db)
    finally:
        await engine.dispose()

    for change in report.balance_changes:
        logger.info(
            f"[rental-service] guarantor {change.guarantor_id}: "
            f"{change.old_balance} -> {change.new_balance} ({change.delta})"
        )
    return report


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    report = asyncio.run(run())
    print(f"updated={report.updated} skipped={report.skipped} users_adjusted={report.users_adjusted}")


if __name__ == "__main__":
    main()
