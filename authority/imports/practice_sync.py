"""
Practice catalog sync
=====================
Feeds a practice-supplier catalog (the practice's own supplier account) from
raw supplier rows: find or create the canonical product by GTIN, then
upsert the practice-supplier catalog row. Newly created GS1 products are
queued for background enrichment.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from authority.enrichment.tasks import EnrichmentQueue
from authority.models import IntegrationType, ProductDraft, SupplierCatalogUpsert
from authority.normalization import SupplierDataFeed, normalize

logger = logging.getLogger(__name__)


@dataclass
class FeedSyncResult:
    success: bool = True
    imported: int = 0
    updated: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    products: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return self.imported + self.updated + self.failed

    @property
    def success_count(self) -> int:
        return self.imported + self.updated

    @property
    def failed_count(self) -> int:
        return self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'imported': self.imported,
            'updated': self.updated,
            'failed': self.failed,
            'errors': list(self.errors),
            'products': list(self.products),
        }


class PracticeCatalogSync:
    """Product + practice-supplier catalog ingestion"""

    def __init__(self, repository, enrichment_queue: Optional[EnrichmentQueue] = None, default_currency: str = "EUR"):
        self.repository = repository
        self.enrichment_queue = enrichment_queue
        self.default_currency = default_currency

    def find_or_create_product(self, feed: SupplierDataFeed, repository=None) -> Tuple[str, bool]:
        """
        Product id for the feed's product data.

        Returns:
            (product_id, created)
        """
        repo = repository or self.repository
        data = feed.product
        if data.gtin:
            existing = repo.find_product_by_gtin(data.gtin)
            if existing:
                return existing.id, False

        product = repo.create_product(ProductDraft(
            name=feed.display_name(),
            gtin=data.gtin,
            brand=data.brand,
            description=data.description,
            is_gs1_product=data.gtin is not None,
        ))
        return product.id, True

    def upsert_supplier_catalog(
        self,
        practice_supplier_id: str,
        product_id: str,
        feed: SupplierDataFeed,
        repository=None
    ):
        repo = repository or self.repository
        entry, _ = repo.upsert_supplier_catalog(SupplierCatalogUpsert(
            practice_supplier_id=practice_supplier_id,
            product_id=product_id,
            supplier_sku=feed.catalog.supplier_sku,
            unit_price=feed.catalog.unit_price,
            currency=feed.catalog.currency,
            min_order_qty=feed.catalog.min_order_qty,
            integration_type=feed.integration_type,
        ))
        return entry

    def batch_process_supplier_feeds(
        self,
        practice_supplier_id: str,
        rows: Iterable[Mapping[str, Any]],
        integration_type=IntegrationType.MANUAL
    ) -> FeedSyncResult:
        """
        Sync a batch of raw rows into one practice-supplier catalog.

        Each row commits on its own; a failing row lands in `errors` with
        its index and the batch continues.
        """
        result = FeedSyncResult()
        queued = []

        for index, raw_row in enumerate(rows):
            feed = normalize(raw_row, integration_type, self.default_currency)
            if feed.errors:
                result.failed += 1
                result.errors.append(self._error(index, feed, "; ".join(feed.errors)))
                continue
            try:
                with self.repository.unit_of_work() as uow:
                    product_id, created = self.find_or_create_product(feed, uow.repository)
                    self.upsert_supplier_catalog(practice_supplier_id, product_id, feed, uow.repository)
            except Exception as e:
                result.failed += 1
                result.errors.append(self._error(index, feed, str(e)))
                logger.error(f"Feed row {index} for practice supplier {practice_supplier_id} failed: {e}")
                continue

            if created:
                result.imported += 1
                if feed.product.gtin:
                    queued.append(product_id)
            else:
                result.updated += 1
            result.products.append({'id': product_id, 'gtin': feed.product.gtin, 'name': feed.display_name()})

        if self.enrichment_queue is not None:
            for product_id in queued:
                try:
                    self.enrichment_queue.submit(product_id)
                except Exception as e:
                    logger.warning(f"Could not queue GS1 enrichment for product {product_id}: {e}")

        result.success = result.failed == 0
        logger.info(
            f"Practice supplier {practice_supplier_id} sync: {result.imported} new, "
            f"{result.updated} updated, {result.failed} failed, {len(queued)} queued for GS1 enrichment"
        )
        return result

    @staticmethod
    def _error(index: int, feed: SupplierDataFeed, message: str) -> Dict[str, Any]:
        return {
            'index': index,
            'supplier_sku': feed.catalog.supplier_sku,
            'gtin': feed.product.gtin,
            'message': message,
        }
