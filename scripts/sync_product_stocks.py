"""Recompute stock of every product that has variants.

Usage:
    python scripts/sync_product_stocks.py [--tenant-id UUID]
"""

import argparse
import asyncio
import logging
import uuid
from typing import Optional

from storefront.core.db import get_session_factory
from storefront.services.catalog_service import CatalogService

logger = logging.getLogger("storefront.scripts.sync_product_stocks")


async def main(tenant_id: Optional[uuid.UUID]) -> None:
    async with get_session_factory()() as session:
        count = await CatalogService.sync_all_product_stocks(session, tenant_id)
    logger.info("Synced %s product(s)", count)
    print(f"✅ Synced stock for {count} product(s)")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--tenant-id", type=uuid.UUID, default=None)
    args = parser.parse_args()
    asyncio.run(main(args.tenant_id))
