#!/usr/bin/env python
"""
GS1 Verification Refresh
========================
Expires product verifications older than the configured age and re-runs
GDSN enrichment for EXPIRED and FAILED products.

Usage:
    python scripts/run_enrichment_refresh.py
    python scripts/run_enrichment_refresh.py --limit 500 --max-age-days 180
    python scripts/run_enrichment_refresh.py --product-id <uuid>
"""

import sys
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from authority.enrichment import GdsnError
from authority.logging_config import log_section, setup_logging
from authority.services import build_repository, build_services
from authority.settings import load_config

load_dotenv()


def main():
    """Main entry point for the verification refresh."""
    parser = argparse.ArgumentParser(description='Refresh stale GS1 verifications')
    parser.add_argument(
        '--config',
        default='config/db_config.yml',
        help='Path to database configuration file (default: config/db_config.yml)'
    )
    parser.add_argument('--limit', type=int, default=100, help='Maximum products to re-enrich (default: 100)')
    parser.add_argument(
        '--max-age-days',
        type=int,
        default=None,
        help='Expire verifications older than this (default: enrichment.refresh_after_days)'
    )
    parser.add_argument('--product-id', default=None, help='Enrich a single product and exit')
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging verbosity level (default: INFO)'
    )
    args = parser.parse_args()

    if args.limit < 1:
        print("Error: --limit must be positive")
        return 1

    setup_logging(log_level=args.log_level)
    logger = logging.getLogger(__name__)
    log_section(logger, "Product Authority - GS1 Verification Refresh")

    services = None
    try:
        repository, db_manager = build_repository(None, args.config)
        services = build_services(load_config(), repository=repository)
        services.db_manager = db_manager

        if args.product_id:
            result = services.enrichment.enrich_product(args.product_id, raise_on_error=True)
            logger.info(f"Product {args.product_id}: {result.status.value} (enriched={result.enriched})")
            if result.error:
                logger.warning(f"  {result.error}")
            return 0 if result.enriched else 1

        refreshed = services.enrichment.refresh_stale_verifications(args.limit, args.max_age_days)
        logger.info(f"✓ Refreshed {refreshed} verifications")
        return 0

    except GdsnError as e:
        logger.error(f"✗ Data pool error ({e.code}): {e.message}")
        return 1

    except Exception as e:
        logger.error(f"✗ Verification refresh failed: {e}", exc_info=True)
        return 1

    finally:
        if services is not None:
            services.close()


if __name__ == '__main__':
    sys.exit(main())
