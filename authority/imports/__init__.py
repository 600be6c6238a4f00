"""
Product Authority - Imports
===========================
Supplier catalog ingestion and practice catalog sync.
"""

from authority.imports.catalog_importer import (
    CancellationToken,
    CatalogImportService,
    ImportItemResult,
    ImportOptions,
    ImportResult,
)
from authority.imports.practice_sync import FeedSyncResult, PracticeCatalogSync

__all__ = [
    'CancellationToken',
    'CatalogImportService',
    'ImportItemResult',
    'ImportOptions',
    'ImportResult',
    'FeedSyncResult',
    'PracticeCatalogSync',
]
