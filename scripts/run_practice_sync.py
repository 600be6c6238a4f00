#!/usr/bin/env python
"""
Practice Supplier Feed Sync
===========================
Syncs a supplier feed file into one practice-supplier catalog: finds or
creates the canonical product for each row (by GTIN, then exact name) and
upserts the practice's catalog entry. New GTIN products are queued for
GS1 enrichment.

Usage:
    python scripts/run_practice_sync.py --practice-supplier-id PS-42 --file feed.csv
    python scripts/run_practice_sync.py --practice-supplier-id PS-42 --file feed.csv --integration-type API
"""

import sys
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from authority.logging_config import log_section, setup_logging
from authority.models import IntegrationType
from authority.normalization import load_rows_from_file
from authority.services import build_repository, build_services
from authority.settings import load_config

load_dotenv()


def main():
    """Main entry point for the practice feed sync."""
    parser = argparse.ArgumentParser(description='Sync a supplier feed into a practice-supplier catalog')
    parser.add_argument('--practice-supplier-id', required=True, help='Practice supplier id')
    parser.add_argument('--file', required=True, help='CSV or Excel feed file')
    parser.add_argument(
        '--integration-type',
        choices=[t.value for t in IntegrationType],
        default=IntegrationType.MANUAL.value,
        help='Source format of the feed rows (default: MANUAL)'
    )
    parser.add_argument(
        '--config',
        default='config/db_config.yml',
        help='Path to database configuration file (default: config/db_config.yml)'
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging verbosity level (default: INFO)'
    )
    args = parser.parse_args()

    file_path = Path(args.file)
    if not file_path.exists():
        print(f"Error: file not found: {args.file}")
        return 1

    setup_logging(log_level=args.log_level)
    logger = logging.getLogger(__name__)
    log_section(logger, f"Practice feed sync: {args.practice_supplier_id}")

    services = None
    try:
        repository, db_manager = build_repository(None, args.config)
        services = build_services(load_config(), repository=repository)
        services.db_manager = db_manager

        rows = load_rows_from_file(file_path)
        result = services.practice_sync.batch_process_supplier_feeds(
            args.practice_supplier_id,
            rows,
            IntegrationType(args.integration_type),
        )

        logger.info(f"  Rows:     {result.total_rows:,}")
        logger.info(f"  New:      {result.imported:,}")
        logger.info(f"  Updated:  {result.updated:,}")
        logger.info(f"  Failed:   {result.failed:,}")
        for error in result.errors[:20]:
            logger.warning(f"  row {error['index'] + 1} ({error['supplier_sku'] or error['gtin'] or '-'}): {error['message']}")

        if result.success:
            logger.info("✓ Feed sync completed")
            return 0
        logger.warning("Feed sync completed with errors")
        return 1

    except Exception as e:
        logger.error(f"✗ Feed sync failed: {e}", exc_info=True)
        return 1

    finally:
        # Waits for queued enrichment to drain
        if services is not None:
            services.close()


if __name__ == '__main__':
    sys.exit(main())
