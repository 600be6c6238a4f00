#!/usr/bin/env python
"""
API Server Entrypoint
=====================
Starts the Product Authority API using Uvicorn.

Usage:
    python scripts/run_api.py
    python scripts/run_api.py --port 8080
    python scripts/run_api.py --host 127.0.0.1 --port 8000 --reload
    python scripts/run_api.py --backend memory

Environment Variables:
    DB_CONFIG_PATH: Path to database config (default: config/db_config.yml)
    AUTHORITY_BACKEND: postgres (default) or memory
    AUTHORITY_CONFIG_PATH: Path to business config (default: config/authority.yml)
"""

import os
import sys
import argparse
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

load_dotenv()


def print_banner():
    """Print the application banner."""
    print()
    print("=" * 70)
    print("  Product Authority API")
    print("  Catalog ingestion, match triage and product merge")
    print("=" * 70)
    print()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Product Authority API Server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                           # Start on 0.0.0.0:8000
  %(prog)s --port 8080               # Start on port 8080
  %(prog)s --host 127.0.0.1          # Localhost only
  %(prog)s --reload                  # Auto-reload on code changes
  %(prog)s --backend memory          # No database, in-memory catalog

API Documentation:
  Swagger UI: http://localhost:8000/docs
  ReDoc:      http://localhost:8000/redoc

Key Endpoints:
  GET  /api/v1/health                        - Health check
  POST /api/v1/imports/{supplier_id}/csv     - Import a supplier CSV
  GET  /api/v1/triage                        - Review queue
  POST /api/v1/triage/{item_id}/confirm      - Confirm a match
  POST /api/v1/products/merge                - Merge duplicate products
        """
    )

    parser.add_argument('--host', default='0.0.0.0', help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=8000, help='Port to bind to (default: 8000)')
    parser.add_argument('--reload', action='store_true', help='Enable auto-reload for development')
    parser.add_argument(
        '--workers',
        type=int,
        default=1,
        help='Number of worker processes (default: 1)'
    )
    parser.add_argument(
        '--config',
        default='config/db_config.yml',
        help='Path to database config file (default: config/db_config.yml)'
    )
    parser.add_argument(
        '--backend',
        default=None,
        choices=['postgres', 'memory'],
        help='Catalog repository backend (default: AUTHORITY_BACKEND or postgres)'
    )
    parser.add_argument(
        '--log-level',
        default='info',
        choices=['debug', 'info', 'warning', 'error'],
        help='Logging level (default: info)'
    )

    args = parser.parse_args()

    os.environ['DB_CONFIG_PATH'] = args.config
    os.environ['AUTHORITY_LOG_LEVEL'] = args.log_level.upper()
    if args.backend:
        os.environ['AUTHORITY_BACKEND'] = args.backend

    backend = os.environ.get('AUTHORITY_BACKEND', 'postgres')
    if backend == 'postgres' and not Path(args.config).exists():
        print(f"ERROR: Database config not found: {args.config}")
        sys.exit(1)

    print_banner()
    print(f"  Host:       {args.host}")
    print(f"  Port:       {args.port}")
    print(f"  Reload:     {args.reload}")
    print(f"  Workers:    {args.workers}")
    print(f"  Backend:    {backend}")
    print(f"  DB Config:  {args.config}")
    print(f"  Log Level:  {args.log_level}")
    print()
    print(f"  API Docs:   http://{args.host if args.host != '0.0.0.0' else 'localhost'}:{args.port}/docs")
    print()
    print("=" * 70)
    print()

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1,  # Workers doesn't work with reload
        log_level=args.log_level
    )


if __name__ == '__main__':
    main()
