"""
Triage / Review Service
=======================
Human review queue over supplier items whose product match is uncertain.

Review operations (confirm, reassign, create-and-link, ignore) lock the
supplier item row inside a unit of work, are idempotent for repeated calls
with the same arguments, and emit one audit record per call, no-ops and
failures included.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from authority.audit import AuditSink
from authority.enrichment.tasks import EnrichmentQueue
from authority.errors import ProductNotFoundError, RowValidationError, SupplierItemNotFoundError
from authority.models import (
    MatchMethod,
    Product,
    ProductDraft,
    SupplierItem,
    TriageFilters,
    TriagePage,
    TriageStats,
    utcnow,
)
from authority.normalization import clean_gtin
from authority.settings import AuthorityConfig

logger = logging.getLogger(__name__)

ENTITY_SUPPLIER_ITEM = "supplier_item"
MIN_SEARCH_LENGTH = 2
MAX_PAGE_SIZE = 500


@dataclass
class TriageActionResult:
    supplier_item: SupplierItem
    changed: bool
    product_id: Optional[str] = None
    created_product: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'supplier_item': self.supplier_item.to_dict(),
            'changed': self.changed,
            'product_id': self.product_id or self.supplier_item.product_id,
            'created_product': self.created_product,
        }


def _linked_by(item: SupplierItem, actor_id: str) -> bool:
    """Item already carries a manual, confirmed link made by this actor"""
    return (
        item.match_method == MatchMethod.MANUAL
        and item.match_confidence == 1.0
        and not item.needs_review
        and item.matched_by == actor_id
    )


class TriageService:

    def __init__(
        self,
        repository,
        audit_sink: AuditSink,
        enrichment_queue: Optional[EnrichmentQueue] = None,
        config: Optional[AuthorityConfig] = None
    ):
        self.repository = repository
        self.audit_sink = audit_sink
        self.enrichment_queue = enrichment_queue
        self.config = config or AuthorityConfig()

    # -----------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------

    def list_for_review(
        self,
        filters: Optional[TriageFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> TriagePage:
        """
        Active supplier items needing attention.

        With the default filter this is the union of needs_review,
        confidence below the low-confidence threshold, and unscored manual
        links. Ordered needs_review first, then lowest confidence (nulls
        last), then newest.
        """
        filters = filters or TriageFilters()
        limit = min(max(1, limit or self.config.triage.page_size), MAX_PAGE_SIZE)
        offset = max(0, offset)
        items, total = self.repository.list_review_items(
            filters, limit, offset, self.config.triage.low_confidence_threshold
        )
        return TriagePage(items=items, total=total, limit=limit, offset=offset)

    def get_stats(self) -> TriageStats:
        return self.repository.review_stats(self.config.triage.low_confidence_threshold)

    def search_products(self, query: Optional[str], limit: int = 10) -> List[Product]:
        """Products by GTIN or name, for picking a reassignment target"""
        query = (query or '').strip()
        if len(query) < MIN_SEARCH_LENGTH:
            return []
        return self.repository.search_products(query, limit)

    # -----------------------------------------------------------------
    # Review operations
    # -----------------------------------------------------------------

    def confirm_match(self, supplier_item_id: str, actor_id: str) -> TriageActionResult:
        """Accept the current product link; product_id is left unchanged"""

        def apply(uow) -> Tuple[TriageActionResult, Dict[str, Any]]:
            item = self._lock_item(uow, supplier_item_id)
            if not item.needs_review and item.matched_by == actor_id:
                return TriageActionResult(item, changed=False), {'product_id': item.product_id}
            updated = uow.repository.update_supplier_item(supplier_item_id, {
                'needs_review': False,
                'matched_at': utcnow(),
                'matched_by': actor_id,
            })
            return TriageActionResult(updated, changed=True), {
                'product_id': item.product_id,
                'previous_matched_by': item.matched_by,
                'match_confidence': item.match_confidence,
            }

        return self._run("confirm_match", supplier_item_id, actor_id, apply)

    def reassign_product(self, supplier_item_id: str, new_product_id: str, actor_id: str) -> TriageActionResult:
        """Point the item at another existing product as a manual, fully confident match"""

        def apply(uow) -> Tuple[TriageActionResult, Dict[str, Any]]:
            item = self._lock_item(uow, supplier_item_id)
            if not uow.lock_products([new_product_id]):
                raise ProductNotFoundError(new_product_id, role="Target product")
            changes = {'from_product_id': item.product_id, 'to_product_id': new_product_id}
            if item.product_id == new_product_id and _linked_by(item, actor_id):
                return TriageActionResult(item, changed=False, product_id=new_product_id), changes
            updated = uow.repository.update_supplier_item(supplier_item_id, self._manual_link(new_product_id, actor_id))
            return TriageActionResult(updated, changed=True, product_id=new_product_id), changes

        return self._run("reassign_product", supplier_item_id, actor_id, apply)

    def create_product_and_link(
        self,
        supplier_item_id: str,
        draft: ProductDraft,
        actor_id: str
    ) -> TriageActionResult:
        """
        Create a product from reviewer-supplied fields and link the item to it.

        A draft GTIN that already belongs to a product links to that product
        instead. New GS1 products are queued for enrichment; a queueing
        failure is logged and never fails the link.
        """
        gtin = None
        if draft.gtin:
            gtin = clean_gtin(draft.gtin)
            if gtin is None:
                raise RowValidationError([f"Invalid GTIN format: {draft.gtin}"])

        def apply(uow) -> Tuple[TriageActionResult, Dict[str, Any]]:
            repo = uow.repository
            item = self._lock_item(uow, supplier_item_id)

            target = repo.find_product_by_gtin(gtin) if gtin else None
            if target is None and _linked_by(item, actor_id):
                current = repo.find_product_by_id(item.product_id)
                if current and current.name == draft.name and current.gtin == gtin:
                    target = current

            created = False
            if target is None:
                target = repo.create_product(ProductDraft(
                    name=draft.name,
                    gtin=gtin,
                    brand=draft.brand,
                    description=draft.description,
                    manufacturer_name=draft.manufacturer_name,
                    is_gs1_product=gtin is not None,
                ))
                created = True

            changes = {
                'from_product_id': item.product_id,
                'to_product_id': target.id,
                'created_product': created,
                'gtin': gtin,
            }
            if not created and item.product_id == target.id and _linked_by(item, actor_id):
                return TriageActionResult(item, changed=False, product_id=target.id), changes

            updated = repo.update_supplier_item(supplier_item_id, self._manual_link(target.id, actor_id))
            return TriageActionResult(updated, changed=True, product_id=target.id, created_product=created), changes

        result = self._run("create_product_and_link", supplier_item_id, actor_id, apply)
        if result.created_product and gtin:
            self._queue_enrichment(result.product_id)
        return result

    def mark_ignored(self, supplier_item_id: str, actor_id: str) -> TriageActionResult:
        """Deactivate the item; its product is left alone"""

        def apply(uow) -> Tuple[TriageActionResult, Dict[str, Any]]:
            item = self._lock_item(uow, supplier_item_id)
            if not item.is_active:
                return TriageActionResult(item, changed=False), {'product_id': item.product_id}
            updated = uow.repository.update_supplier_item(supplier_item_id, {
                'is_active': False,
                'matched_at': utcnow(),
                'matched_by': actor_id,
            })
            return TriageActionResult(updated, changed=True), {'product_id': item.product_id}

        return self._run("mark_ignored", supplier_item_id, actor_id, apply)

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _run(
        self,
        operation: str,
        supplier_item_id: str,
        actor_id: str,
        apply: Callable[[Any], Tuple[TriageActionResult, Dict[str, Any]]]
    ) -> TriageActionResult:
        try:
            with self.repository.unit_of_work() as uow:
                result, changes = apply(uow)
        except Exception as e:
            self.audit_sink.record(
                f"{operation}_failed", actor_id, ENTITY_SUPPLIER_ITEM, supplier_item_id,
                {'error': str(e), 'error_type': type(e).__name__},
            )
            logger.error(f"{operation} failed for supplier item {supplier_item_id}: {e}")
            raise

        changes['noop'] = not result.changed
        self.audit_sink.record(operation, actor_id, ENTITY_SUPPLIER_ITEM, supplier_item_id, changes)
        if result.changed:
            logger.info(f"{operation}: supplier item {supplier_item_id} by {actor_id}")
        else:
            logger.info(f"{operation}: supplier item {supplier_item_id} already up to date (no-op)")
        return result

    @staticmethod
    def _lock_item(uow, supplier_item_id: str) -> SupplierItem:
        item = uow.lock_supplier_item(supplier_item_id)
        if item is None:
            raise SupplierItemNotFoundError(supplier_item_id)
        return item

    @staticmethod
    def _manual_link(product_id: str, actor_id: str) -> Dict[str, Any]:
        return {
            'product_id': product_id,
            'match_method': MatchMethod.MANUAL,
            'match_confidence': 1.0,
            'needs_review': False,
            'matched_at': utcnow(),
            'matched_by': actor_id,
        }

    def _queue_enrichment(self, product_id: str) -> None:
        if self.enrichment_queue is None:
            return
        try:
            self.enrichment_queue.submit(product_id)
        except Exception as e:
            logger.warning(f"Could not queue GS1 enrichment for product {product_id}: {e}")
