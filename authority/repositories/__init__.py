"""
Product Authority - Repositories
================================
CatalogRepository implementations: PostgreSQL for production, in-memory
for tests and dry runs.
"""

from authority.repositories.base import CatalogRepository, UnitOfWork, plan_supplier_item_update
from authority.repositories.memory import InMemoryCatalogRepository
from authority.repositories.postgres import PostgresCatalogRepository

__all__ = [
    'CatalogRepository',
    'UnitOfWork',
    'plan_supplier_item_update',
    'InMemoryCatalogRepository',
    'PostgresCatalogRepository',
]
