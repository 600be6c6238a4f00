"""
Product Authority - Database Setup Script
Creates the database, applies the catalog schema and checks its tables

Usage:
    python scripts/setup_database.py

    Or with custom config:
    python scripts/setup_database.py --config config/db_config.yml
"""

import sys
import argparse
from pathlib import Path

from dotenv import load_dotenv

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from authority.db_utils import DatabaseConfig, DatabaseManager, apply_schema, create_database_if_not_exists
from authority.logging_config import get_logger, setup_logging

load_dotenv()

REQUIRED_TABLES = (
    'products',
    'supplier_items',
    'practice_items',
    'supplier_catalog',
    'product_quality_scores',
    'audit_log',
    'import_runs',
)


def verify_tables(config_path: str) -> list:
    """Names of required tables missing after the schema was applied"""
    db = DatabaseManager(config_path, max_connections=1)
    try:
        return [name for name in REQUIRED_TABLES if not db.table_exists(name)]
    finally:
        db.close()


def main():
    """Setup database and apply schema"""

    parser = argparse.ArgumentParser(description='Product Authority Database Setup')
    parser.add_argument(
        '--config',
        default='config/db_config.yml',
        help='Path to database config YAML'
    )
    parser.add_argument(
        '--schema',
        default='db/schema.sql',
        help='Path to schema SQL file'
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(log_level='INFO')
    logger = get_logger(__name__)

    logger.info("=" * 80)
    logger.info("Product Authority - Database Setup")
    logger.info("=" * 80)

    try:
        db_name = DatabaseConfig(args.config).config['database']

        logger.info(f"Step 1: Creating database '{db_name}' if not exists...")
        create_database_if_not_exists(args.config, db_name)

        logger.info(f"Step 2: Applying schema from {args.schema}...")
        apply_schema(args.config, args.schema)

        logger.info("Step 3: Verifying catalog tables...")
        missing = verify_tables(args.config)
        if missing:
            logger.error(f"✗ Missing tables after schema apply: {', '.join(missing)}")
            return 1
        logger.info(f"  {len(REQUIRED_TABLES)} tables present")

        logger.info("=" * 80)
        logger.info("✓ Database setup completed successfully!")
        logger.info("=" * 80)

        return 0

    except Exception as e:
        logger.error(f"✗ Database setup failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
