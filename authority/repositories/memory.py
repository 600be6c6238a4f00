"""
In-memory catalog repository
============================
Complete CatalogRepository backed by dicts. Used by the test suite and by
dry-run imports. Enforces the same uniqueness rules as the database
(one product per GTIN, one active supplier item per (supplier, product),
one practice item per (practice, product)) and the same delete cascade.

A unit of work holds the repository lock for its whole duration and
restores a snapshot on rollback, so concurrent callers see either all of
a transaction's writes or none of them.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from authority.errors import (
    PersistenceConflictError,
    ProductNotFoundError,
    SupplierItemNotFoundError,
    NotFoundError,
)
from authority.models import (
    AuditRecord,
    Gs1VerificationStatus,
    ImportRun,
    MatchMethod,
    PracticeItem,
    Product,
    ProductDraft,
    QualityScore,
    SupplierCatalogEntry,
    SupplierCatalogUpsert,
    SupplierItem,
    TriageFilters,
    TriageIssueType,
    TriageItem,
    TriageStats,
    new_id,
    utcnow,
)
from authority.repositories.base import CatalogRepository, UnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class _State:
    products: Dict[str, Product] = field(default_factory=dict)
    supplier_items: Dict[str, SupplierItem] = field(default_factory=dict)
    practice_items: Dict[str, PracticeItem] = field(default_factory=dict)
    catalog_entries: Dict[str, SupplierCatalogEntry] = field(default_factory=dict)
    quality_scores: Dict[str, QualityScore] = field(default_factory=dict)
    audit_log: List[AuditRecord] = field(default_factory=list)
    import_runs: Dict[str, ImportRun] = field(default_factory=dict)


class MemoryUnitOfWork(UnitOfWork):

    def __init__(self, repository: "InMemoryCatalogRepository"):
        self.repository = repository
        self._snapshot: Optional[_State] = None

    def begin(self) -> None:
        self.repository._lock.acquire()
        self._snapshot = copy.deepcopy(self.repository._state)

    def commit(self) -> None:
        self._snapshot = None
        self.repository._lock.release()

    def rollback(self) -> None:
        try:
            if self._snapshot is not None:
                self.repository._state = self._snapshot
                self._snapshot = None
        finally:
            self.repository._lock.release()

    def lock_products(self, product_ids: Iterable[str]) -> List[Product]:
        return [p for p in (self.repository.find_product_by_id(i) for i in sorted(set(product_ids))) if p]

    def lock_supplier_item(self, supplier_item_id: str) -> Optional[SupplierItem]:
        return self.repository.get_supplier_item(supplier_item_id)


class InMemoryCatalogRepository(CatalogRepository):

    def __init__(self):
        self._state = _State()
        self._lock = threading.RLock()

    def unit_of_work(self) -> MemoryUnitOfWork:
        return MemoryUnitOfWork(self)

    # -----------------------------------------------------------------
    # Products
    # -----------------------------------------------------------------

    def find_product_by_gtin(self, gtin: str) -> Optional[Product]:
        with self._lock:
            for product in self._state.products.values():
                if product.gtin == gtin:
                    return replace(product)
        return None

    def find_product_by_id(self, product_id: str) -> Optional[Product]:
        with self._lock:
            product = self._state.products.get(product_id)
            return replace(product) if product else None

    def list_products(self) -> List[Product]:
        with self._lock:
            return [replace(p) for p in self._state.products.values()]

    def create_product(self, draft: ProductDraft) -> Product:
        with self._lock:
            if draft.gtin and self._gtin_owner(draft.gtin):
                raise PersistenceConflictError(
                    f"Product with GTIN {draft.gtin} already exists", {"gtin": draft.gtin}
                )
            product = Product.from_draft(draft)
            self._state.products[product.id] = product
            return replace(product)

    def add_product(self, product: Product) -> Product:
        """Insert a fully specified product (fixtures and seeding)"""
        with self._lock:
            if product.gtin and self._gtin_owner(product.gtin) not in (None, product.id):
                raise PersistenceConflictError(f"Product with GTIN {product.gtin} already exists")
            self._state.products[product.id] = replace(product)
            return replace(product)

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> Product:
        with self._lock:
            product = self._state.products.get(product_id)
            if product is None:
                raise ProductNotFoundError(product_id)
            unknown = set(fields) - set(Product.UPDATABLE)
            if unknown:
                raise ValueError(f"Cannot update product fields: {', '.join(sorted(unknown))}")
            gtin = fields.get('gtin')
            if gtin and self._gtin_owner(gtin) not in (None, product_id):
                raise PersistenceConflictError(f"Product with GTIN {gtin} already exists", {"gtin": gtin})
            updated = replace(product, **fields, updated_at=utcnow())
            self._state.products[product_id] = updated
            return replace(updated)

    def delete_product(self, product_id: str) -> None:
        with self._lock:
            if self._state.products.pop(product_id, None) is None:
                raise ProductNotFoundError(product_id)
            # ON DELETE CASCADE
            state = self._state
            state.supplier_items = {k: v for k, v in state.supplier_items.items() if v.product_id != product_id}
            state.practice_items = {k: v for k, v in state.practice_items.items() if v.product_id != product_id}
            state.catalog_entries = {k: v for k, v in state.catalog_entries.items() if v.product_id != product_id}
            state.quality_scores.pop(product_id, None)

    def search_products(self, query: str, limit: int = 20) -> List[Product]:
        needle = query.strip().lower()
        with self._lock:
            hits = [
                p for p in self._state.products.values()
                if needle in p.name.lower()
                or (p.gtin and needle in p.gtin)
                or (p.brand and needle in p.brand.lower())
            ]
        hits.sort(key=lambda p: p.name.lower())
        return [replace(p) for p in hits[:limit]]

    def list_products_for_refresh(self, statuses: Iterable[Gs1VerificationStatus], limit: int) -> List[Product]:
        wanted = set(statuses)
        with self._lock:
            hits = [p for p in self._state.products.values() if p.gtin and p.gs1_verification_status in wanted]
        hits.sort(key=lambda p: p.updated_at)
        return [replace(p) for p in hits[:limit]]

    def expire_verifications(self, verified_before: datetime) -> int:
        expired = 0
        with self._lock:
            for product_id, product in list(self._state.products.items()):
                if (
                    product.gs1_verification_status == Gs1VerificationStatus.VERIFIED
                    and product.gs1_verified_at is not None
                    and product.gs1_verified_at < verified_before
                ):
                    self._state.products[product_id] = replace(
                        product, gs1_verification_status=Gs1VerificationStatus.EXPIRED, updated_at=utcnow()
                    )
                    expired += 1
        return expired

    def _gtin_owner(self, gtin: str) -> Optional[str]:
        for product in self._state.products.values():
            if product.gtin == gtin:
                return product.id
        return None

    # -----------------------------------------------------------------
    # Supplier items
    # -----------------------------------------------------------------

    def get_supplier_item(self, supplier_item_id: str) -> Optional[SupplierItem]:
        with self._lock:
            item = self._state.supplier_items.get(supplier_item_id)
            return replace(item) if item else None

    def find_supplier_item(self, supplier_id: str, product_id: str, active_only: bool = True) -> Optional[SupplierItem]:
        with self._lock:
            matches = [
                i for i in self._state.supplier_items.values()
                if i.global_supplier_id == supplier_id and i.product_id == product_id
                and (i.is_active or not active_only)
            ]
        if not matches:
            return None
        matches.sort(key=lambda i: (not i.is_active, i.created_at))
        return replace(matches[0])

    def list_supplier_items_for_product(self, product_id: str, active_only: bool = True) -> List[SupplierItem]:
        with self._lock:
            items = [
                replace(i) for i in self._state.supplier_items.values()
                if i.product_id == product_id and (i.is_active or not active_only)
            ]
        items.sort(key=lambda i: (i.created_at, i.id))
        return items

    def insert_supplier_item(self, item: SupplierItem) -> SupplierItem:
        with self._lock:
            if item.is_active:
                self._check_active_pair(item.id, item.global_supplier_id, item.product_id)
            self._state.supplier_items[item.id] = replace(item)
            return replace(item)

    def update_supplier_item(self, supplier_item_id: str, fields: Dict[str, Any]) -> SupplierItem:
        with self._lock:
            item = self._state.supplier_items.get(supplier_item_id)
            if item is None:
                raise SupplierItemNotFoundError(supplier_item_id)
            unknown = set(fields) - set(SupplierItem.UPDATABLE)
            if unknown:
                raise ValueError(f"Cannot update supplier item fields: {', '.join(sorted(unknown))}")
            updated = replace(item, **fields, updated_at=utcnow())
            if updated.is_active:
                self._check_active_pair(updated.id, updated.global_supplier_id, updated.product_id)
            if updated.product_id not in self._state.products:
                raise ProductNotFoundError(updated.product_id)
            self._state.supplier_items[supplier_item_id] = updated
            return replace(updated)

    def _check_active_pair(self, item_id: str, supplier_id: str, product_id: str) -> None:
        for other in self._state.supplier_items.values():
            if (
                other.id != item_id and other.is_active
                and other.global_supplier_id == supplier_id and other.product_id == product_id
            ):
                raise PersistenceConflictError(
                    f"Supplier {supplier_id} already has an active item for product {product_id}",
                    {"supplier_id": supplier_id, "product_id": product_id},
                )

    def list_sku_mappings(self, supplier_id: str) -> Dict[str, str]:
        with self._lock:
            return {
                i.supplier_sku: i.product_id
                for i in sorted(self._state.supplier_items.values(), key=lambda i: i.updated_at)
                if i.global_supplier_id == supplier_id and i.supplier_sku and i.is_active and i.is_human_confirmed
            }

    def _in_review(self, item: SupplierItem, threshold: float) -> bool:
        return item.is_active and (
            item.needs_review
            or (item.match_confidence is not None and item.match_confidence < threshold)
            or (item.match_confidence is None and item.match_method == MatchMethod.MANUAL)
        )

    def _review_rows(self, threshold: float) -> List[Tuple[SupplierItem, Product]]:
        rows = []
        for item in self._state.supplier_items.values():
            if self._in_review(item, threshold):
                product = self._state.products.get(item.product_id)
                if product:
                    rows.append((item, product))
        return rows

    def list_review_items(
        self,
        filters: TriageFilters,
        limit: int,
        offset: int,
        low_confidence_threshold: float
    ) -> Tuple[List[TriageItem], int]:
        with self._lock:
            rows = self._review_rows(low_confidence_threshold)
            rows = [r for r in rows if _matches_filters(r[0], r[1], filters, low_confidence_threshold)]
            rows.sort(key=lambda r: (r[0].created_at, r[0].id), reverse=True)
            rows.sort(key=lambda r: (
                not r[0].needs_review,
                r[0].match_confidence is None,
                r[0].match_confidence if r[0].match_confidence is not None else 0.0,
            ))
            total = len(rows)
            page = []
            for item, product in rows[offset:offset + limit]:
                score = self._state.quality_scores.get(product.id)
                duplicates = sum(
                    1 for other in self._state.supplier_items.values()
                    if other.is_active and other.product_id == product.id and other.id != item.id
                )
                page.append(TriageItem(
                    supplier_item=replace(item),
                    product_name=product.name,
                    product_gtin=product.gtin,
                    product_brand=product.brand,
                    quality_score=score.overall_score if score else product.quality_score,
                    missing_fields=list(score.missing_fields) if score else [],
                    duplicate_count=duplicates,
                ))
        return page, total

    def review_stats(self, low_confidence_threshold: float) -> TriageStats:
        with self._lock:
            rows = self._review_rows(low_confidence_threshold)
        return TriageStats(
            total=len(rows),
            needs_review=sum(1 for i, _ in rows if i.needs_review),
            low_confidence=sum(
                1 for i, _ in rows if i.match_confidence is not None and i.match_confidence < low_confidence_threshold
            ),
            no_gtin=sum(1 for _, p in rows if not p.gtin),
            fuzzy_match=sum(1 for i, _ in rows if i.match_method == MatchMethod.FUZZY_NAME),
        )

    # -----------------------------------------------------------------
    # Practice items & practice-supplier catalog
    # -----------------------------------------------------------------

    def add_practice_item(self, practice_id: str, product_id: str, name: Optional[str] = None) -> PracticeItem:
        with self._lock:
            if product_id not in self._state.products:
                raise ProductNotFoundError(product_id)
            if self._practice_item_for(practice_id, product_id):
                raise PersistenceConflictError(
                    f"Practice {practice_id} already has an item for product {product_id}"
                )
            item = PracticeItem(id=new_id(), practice_id=practice_id, product_id=product_id, name=name)
            self._state.practice_items[item.id] = item
            return replace(item)

    def list_practice_items_for_product(self, product_id: str) -> List[PracticeItem]:
        with self._lock:
            items = [replace(i) for i in self._state.practice_items.values() if i.product_id == product_id]
        items.sort(key=lambda i: (i.created_at, i.id))
        return items

    def find_practice_item(self, practice_id: str, product_id: str) -> Optional[PracticeItem]:
        with self._lock:
            item = self._practice_item_for(practice_id, product_id)
            return replace(item) if item else None

    def repoint_practice_item(self, practice_item_id: str, product_id: str) -> PracticeItem:
        with self._lock:
            item = self._state.practice_items.get(practice_item_id)
            if item is None:
                raise NotFoundError("Practice item not found", {"practice_item_id": practice_item_id})
            if product_id not in self._state.products:
                raise ProductNotFoundError(product_id)
            if self._practice_item_for(item.practice_id, product_id):
                raise PersistenceConflictError(
                    f"Practice {item.practice_id} already has an item for product {product_id}"
                )
            updated = replace(item, product_id=product_id)
            self._state.practice_items[practice_item_id] = updated
            return replace(updated)

    def _practice_item_for(self, practice_id: str, product_id: str) -> Optional[PracticeItem]:
        for item in self._state.practice_items.values():
            if item.practice_id == practice_id and item.product_id == product_id:
                return item
        return None

    def upsert_supplier_catalog(self, fields: SupplierCatalogUpsert) -> Tuple[SupplierCatalogEntry, bool]:
        with self._lock:
            if fields.product_id not in self._state.products:
                raise ProductNotFoundError(fields.product_id)
            for entry_id, entry in self._state.catalog_entries.items():
                if entry.practice_supplier_id == fields.practice_supplier_id and entry.product_id == fields.product_id:
                    updated = replace(
                        entry,
                        supplier_sku=fields.supplier_sku,
                        unit_price=fields.unit_price,
                        currency=fields.currency,
                        min_order_qty=fields.min_order_qty,
                        integration_type=fields.integration_type,
                        is_active=True,
                        last_sync_at=utcnow(),
                    )
                    self._state.catalog_entries[entry_id] = updated
                    return replace(updated), False
            entry = SupplierCatalogEntry(
                id=new_id(),
                practice_supplier_id=fields.practice_supplier_id,
                product_id=fields.product_id,
                supplier_sku=fields.supplier_sku,
                unit_price=fields.unit_price,
                currency=fields.currency,
                min_order_qty=fields.min_order_qty,
                integration_type=fields.integration_type,
            )
            self._state.catalog_entries[entry.id] = entry
            return replace(entry), True

    def list_catalog_entries(self, practice_supplier_id: str) -> List[SupplierCatalogEntry]:
        with self._lock:
            return [replace(e) for e in self._state.catalog_entries.values()
                    if e.practice_supplier_id == practice_supplier_id]

    # -----------------------------------------------------------------
    # Quality, audit, import history
    # -----------------------------------------------------------------

    def get_quality_score(self, product_id: str) -> Optional[QualityScore]:
        with self._lock:
            score = self._state.quality_scores.get(product_id)
            return copy.deepcopy(score) if score else None

    def save_quality_score(self, score: QualityScore) -> None:
        with self._lock:
            if score.product_id not in self._state.products:
                raise ProductNotFoundError(score.product_id)
            self._state.quality_scores[score.product_id] = copy.deepcopy(score)

    def delete_quality_score(self, product_id: str) -> bool:
        with self._lock:
            return self._state.quality_scores.pop(product_id, None) is not None

    def record_audit(self, record: AuditRecord) -> None:
        with self._lock:
            self._state.audit_log.append(copy.deepcopy(record))

    def audit_log(self) -> List[AuditRecord]:
        with self._lock:
            return copy.deepcopy(self._state.audit_log)

    def save_import_run(self, run: ImportRun) -> None:
        with self._lock:
            self._state.import_runs[run.id] = replace(run)

    def list_import_runs(self, limit: int = 20, supplier_id: Optional[str] = None) -> List[ImportRun]:
        with self._lock:
            runs = [
                replace(r) for r in self._state.import_runs.values()
                if supplier_id is None or r.global_supplier_id == supplier_id
            ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]


def _matches_filters(item: SupplierItem, product: Product, filters: TriageFilters, threshold: float) -> bool:
    issue = filters.issue_type
    if issue == TriageIssueType.NEEDS_REVIEW and not item.needs_review:
        return False
    if issue == TriageIssueType.LOW_CONFIDENCE and not (
        item.match_confidence is not None and item.match_confidence < threshold
    ):
        return False
    if issue == TriageIssueType.NO_GTIN and product.gtin:
        return False
    if issue == TriageIssueType.FUZZY_MATCH and item.match_method != MatchMethod.FUZZY_NAME:
        return False
    if filters.supplier_id and item.global_supplier_id != filters.supplier_id:
        return False
    if filters.search:
        needle = filters.search.strip().lower()
        haystack = [item.supplier_name, item.supplier_sku, product.name, product.gtin]
        if not any(needle in value.lower() for value in haystack if value):
            return False
    return True
