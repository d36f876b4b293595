#!/usr/bin/env python
"""Script to sync the provider's catalog into provider_products.

This script:
1. Reads the provider credential from api_configurations
2. Lists every game catalogue item and voucher product from the provider
3. Upserts them into provider_products keyed by provider_product_ref

The resolver reads provider_products first, so run this after the provider
adds games or denominations.

Usage:
    python scripts/sync_provider_catalog.py [--dry-run]

Requirements:
    - SUPABASE_URL and SUPABASE_SECRET_KEY environment variables must be set
    - An enabled api_configurations row for the provider with its API key
"""

import argparse
import asyncio
import logging
import sys
from collections import Counter
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.config import get_settings
from src.core.provider import ProviderTransportError, create_provider_client
from src.services.catalog_service import CatalogService, CredentialService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def sync_catalog(dry_run: bool = False) -> int:
    """Pull the provider catalog and upsert it.

    Args:
        dry_run: List entries without writing them.

    Returns:
        int: Process exit code.
    """
    settings = get_settings()
    credential = await CredentialService().get_credential(settings.provider_name)
    if credential is None or not credential.is_usable:
        logger.error("Provider %s is not configured or disabled", settings.provider_name)
        return 1

    client = create_provider_client(credential)

    try:
        account = await client.get_balance()
        logger.info("Provider account balance: %s", account.get("balance", "unknown"))
    except ProviderTransportError as e:
        logger.warning("Could not fetch provider balance: %s", str(e))

    try:
        entries = await client.list_catalog()
    except ProviderTransportError as e:
        logger.error("Failed to list provider catalog: %s", str(e))
        return 1

    counts = Counter(entry.product_type for entry in entries)
    logger.info(
        "Fetched %d entries (%d recharge, %d voucher)",
        len(entries),
        counts["recharge"],
        counts["voucher"],
    )

    if dry_run:
        for entry in entries:
            logger.info("  %s  %s / %s  %.2f", entry.provider_product_ref, entry.game_name, entry.product_name, entry.price)
        return 0

    written = await CatalogService().upsert_provider_products(entries)
    logger.info("Upserted %d provider products", written)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync the provider catalog into provider_products")
    parser.add_argument("--dry-run", action="store_true", help="List entries without writing them")
    args = parser.parse_args()
    sys.exit(asyncio.run(sync_catalog(dry_run=args.dry_run)))


if __name__ == "__main__":
    main()
