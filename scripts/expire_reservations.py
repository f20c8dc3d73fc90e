"""Cancel unpaid pending orders older than RESERVATION_TTL_MINUTES and return their stock.

Meant to be run from cron or a scheduled job.

Usage:
    python scripts/expire_reservations.py [--ttl-minutes N]
"""

import argparse
import asyncio
import logging
from typing import Optional

from storefront.core.db import get_session_factory
from storefront.services.order_lifecycle import OrderLifecycle

logger = logging.getLogger("storefront.scripts.expire_reservations")


async def main(ttl_minutes: Optional[int]) -> None:
    async with get_session_factory()() as session:
        orders = await OrderLifecycle.expire_stale_reservations(session, ttl_minutes=ttl_minutes)
    for order in orders:
        logger.info("Expired %s (tenant %s)", order.order_number, order.tenant_id)
    print(f"✅ Expired {len(orders)} reservation(s)")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--ttl-minutes", type=int, default=None)
    args = parser.parse_args()
    asyncio.run(main(args.ttl_minutes))
