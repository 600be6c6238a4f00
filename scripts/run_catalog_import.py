#!/usr/bin/env python
"""
Supplier Catalog Import
=======================
CLI script to import one supplier's catalog file (CSV or Excel) into the
Product Authority.

This script:
1. Loads the authority config and database configuration
2. Parses the catalog file into row records
3. Matches every row to a canonical product (GTIN first, then name)
4. Records the run in import_runs and prints a summary

Usage:
    python scripts/run_catalog_import.py --supplier-id SUP-001 --file catalog.csv
    python scripts/run_catalog_import.py --supplier-id SUP-001 --file catalog.xlsx --no-enrich
    python scripts/run_catalog_import.py --supplier-id SUP-001 --file catalog.csv --dry-run
    python scripts/run_catalog_import.py --supplier-id SUP-001 --file catalog.csv --min-confidence 0.95

Environment Variables:
    AUTHORITY_BACKEND: postgres (default) or memory
    AUTHORITY_CONFIG_PATH: Path to business config (default: config/authority.yml)
    GDSN_API_KEY: API key for the http data pool provider
"""

import sys
import argparse
import logging
import time
from pathlib import Path

from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from authority.imports import ImportOptions, ImportResult
from authority.logging_config import setup_logging
from authority.models import IntegrationType
from authority.normalization import load_rows_from_file
from authority.pipeline_tracking import track_import_run, update_run_counts
from authority.services import build_repository, build_services
from authority.settings import load_config

load_dotenv()


def print_banner():
    """Print the application banner."""
    print()
    print("=" * 70)
    print("  Product Authority - Supplier Catalog Import")
    print("=" * 70)
    print()


def print_summary(result: ImportResult, elapsed_seconds: float, show_failures: int = 20):
    """Print a formatted summary of the import results."""
    print()
    print("=" * 70)
    print("  CATALOG IMPORT SUMMARY")
    print("=" * 70)
    print()
    print(f"  Supplier:            {result.global_supplier_id}")
    print(f"  Rows:                {result.total_rows:,}")
    print(f"  Imported:            {result.success_count:,}")
    print(f"  Failed:              {result.failed_count:,}")
    print(f"  Needs review:        {result.review_count:,}")
    print(f"  Enriched from GDSN:  {result.enriched_count:,}")
    print()

    failures = [item for item in result.items if not item.success]
    if failures:
        print("  FAILED ROWS:")
        for item in failures[:show_failures]:
            print(f"    row {item.row_index + 1}: {'; '.join(item.errors)}")
        if len(failures) > show_failures:
            print(f"    ... and {len(failures) - show_failures} more")
        print()

    print(f"  ELAPSED TIME: {elapsed_seconds:.2f} seconds")
    print()
    print("=" * 70)
    if result.cancelled:
        print("  STATUS: CANCELLED")
    elif result.failed_count == 0:
        print("  STATUS: SUCCESS")
    elif result.success_count == 0:
        print("  STATUS: FAILED")
    else:
        print("  STATUS: COMPLETED WITH ERRORS")
    print("=" * 70)
    print()


def main():
    """Main entry point for the catalog import."""
    parser = argparse.ArgumentParser(
        description='Import a supplier catalog into the Product Authority',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --supplier-id SUP-001 --file catalog.csv
  %(prog)s --supplier-id SUP-001 --file catalog.xlsx --integration-type EDI
  %(prog)s --supplier-id SUP-001 --file catalog.csv --no-create    # match only
  %(prog)s --supplier-id SUP-001 --file catalog.csv --dry-run      # in-memory, nothing persisted
        """
    )

    parser.add_argument('--supplier-id', required=True, help='Global supplier id')
    parser.add_argument('--file', required=True, help='CSV (comma or semicolon) or Excel file')
    parser.add_argument(
        '--config',
        default='config/db_config.yml',
        help='Path to database configuration file (default: config/db_config.yml)'
    )
    parser.add_argument(
        '--integration-type',
        choices=[t.value for t in IntegrationType],
        default=None,
        help='Integration type recorded on supplier items (default: from config)'
    )
    parser.add_argument('--no-enrich', action='store_true', help='Skip GS1 data pool enrichment')
    parser.add_argument('--no-create', action='store_true', help='Do not create products for unmatched rows')
    parser.add_argument('--strict', action='store_true', help='Fail rows with validation errors instead of skipping')
    parser.add_argument('--currency', default=None, help='Currency for rows without one (e.g. EUR)')
    parser.add_argument(
        '--min-confidence',
        type=float,
        default=None,
        help='Auto-accept threshold for name matches, 0.0-1.0 (default: from config)'
    )
    parser.add_argument('--dry-run', action='store_true', help='Run against an empty in-memory repository')
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging verbosity level (default: INFO)'
    )

    args = parser.parse_args()

    if args.min_confidence is not None and not 0.0 <= args.min_confidence <= 1.0:
        print("Error: --min-confidence must be between 0.0 and 1.0")
        return 1

    file_path = Path(args.file)
    if not file_path.exists():
        print(f"Error: file not found: {args.file}")
        return 1

    setup_logging(log_level=args.log_level)
    logger = logging.getLogger(__name__)
    print_banner()

    backend = 'memory' if args.dry_run else None
    if not args.dry_run and not Path(args.config).exists():
        logger.error(f"Configuration file not found: {args.config}")
        return 1

    options = ImportOptions(
        integration_type=IntegrationType(args.integration_type) if args.integration_type else None,
        auto_enrich=False if args.no_enrich else None,
        min_auto_match_confidence=args.min_confidence,
        create_new_products=False if args.no_create else None,
        default_currency=args.currency,
        skip_invalid_rows=False if args.strict else None,
    )

    logger.info("Configuration:")
    logger.info(f"  Supplier: {args.supplier_id}")
    logger.info(f"  File: {file_path}")
    logger.info(f"  Backend: {'memory (dry run)' if args.dry_run else 'postgres'}")

    services = None
    try:
        repository, db_manager = build_repository(backend, args.config)
        services = build_services(load_config(), repository=repository)
        services.db_manager = db_manager

        rows = load_rows_from_file(file_path)
        logger.info(f"Loaded {len(rows):,} rows from {file_path.name}")

        start = time.time()
        with track_import_run(services.repository, args.supplier_id, f"file:{file_path.name}") as run:
            result = services.importer.import_catalog(args.supplier_id, rows, options)
            update_run_counts(run, result)

        print_summary(result, time.time() - start)
        return 0 if result.success_count > 0 or result.total_rows == 0 else 1

    except Exception as e:
        logger.error(f"✗ Catalog import failed: {e}", exc_info=True)
        return 1

    finally:
        if services is not None:
            services.close()


if __name__ == '__main__':
    sys.exit(main())
