"""
Shared fixtures for the Product Authority test suite.

Everything runs against the in-memory repository and the mock GDSN
client; no database or network is needed.
"""

import sys
from datetime import timedelta
from pathlib import Path

import pytest

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from authority.audit import InMemoryAuditSink
from authority.enrichment import MockGdsnClient
from authority.models import IntegrationType, MatchMethod, Product, SupplierItem, new_id, utcnow
from authority.repositories import InMemoryCatalogRepository
from authority.services import build_services
from authority.settings import AuthorityConfig


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def repository():
    return InMemoryCatalogRepository()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def gdsn_client():
    return MockGdsnClient()


@pytest.fixture
def config():
    return AuthorityConfig()


@pytest.fixture
def services(config, repository, gdsn_client, audit_sink):
    """Fully wired services over the in-memory repository"""
    built = build_services(config, repository=repository, gdsn_client=gdsn_client, audit_sink=audit_sink)
    yield built
    built.close()


@pytest.fixture
def make_product(repository):
    """Insert a product directly; `age_days` back-dates updated_at"""

    def _make(name, gtin=None, brand=None, age_days=0, **fields):
        updated = utcnow() - timedelta(days=age_days)
        product = Product(
            id=new_id(),
            name=name,
            gtin=gtin,
            brand=brand,
            is_gs1_product=gtin is not None,
            created_at=updated,
            updated_at=updated,
            **fields
        )
        return repository.add_product(product)

    return _make


@pytest.fixture
def make_item(repository):
    """Insert a supplier item linked to a product"""

    def _make(product_id, supplier_id="SUP-1", **fields):
        values = dict(
            id=new_id(),
            global_supplier_id=supplier_id,
            product_id=product_id,
            supplier_name=fields.pop('supplier_name', 'Supplier listing'),
            integration_type=IntegrationType.CSV,
            match_method=MatchMethod.FUZZY_NAME,
            match_confidence=0.75,
            needs_review=True,
            matched_by="system",
            matched_at=utcnow(),
        )
        values.update(fields)
        return repository.insert_supplier_item(SupplierItem(**values))

    return _make
