"""
Catalog repository interface
============================
Persistence boundary for products, supplier items, practice items, the
practice-supplier catalog, quality snapshots, audit records and import
history. All failures surface as exceptions; lookups return None when
nothing is found.

Multi-write operations run inside a unit of work:

    with repository.unit_of_work() as uow:
        uow.lock_products([source_id, target_id])
        uow.repository.update_supplier_item(...)

The unit of work commits on normal exit and rolls back on any exception.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from authority.models import (
    AuditRecord,
    Gs1VerificationStatus,
    ImportRun,
    PracticeItem,
    Product,
    ProductDraft,
    QualityScore,
    SupplierCatalogEntry,
    SupplierCatalogUpsert,
    SupplierItem,
    SupplierItemUpsert,
    TriageFilters,
    TriageItem,
    TriageStats,
    new_id,
    utcnow,
)


class UnitOfWork(ABC):
    """Scoped transaction; `repository` shares its connection"""

    repository: "CatalogRepository"

    def __enter__(self) -> "UnitOfWork":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False

    @abstractmethod
    def begin(self) -> None:
        pass

    @abstractmethod
    def commit(self) -> None:
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    @abstractmethod
    def lock_products(self, product_ids: Iterable[str]) -> List[Product]:
        """Exclusive row locks on products, taken in id order; returns those that exist"""

    @abstractmethod
    def lock_supplier_item(self, supplier_item_id: str) -> Optional[SupplierItem]:
        """Exclusive row lock on one supplier item"""


class CatalogRepository(ABC):

    @abstractmethod
    def unit_of_work(self) -> UnitOfWork:
        pass

    # -----------------------------------------------------------------
    # Products
    # -----------------------------------------------------------------

    @abstractmethod
    def find_product_by_gtin(self, gtin: str) -> Optional[Product]:
        pass

    @abstractmethod
    def find_product_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    def list_products(self) -> List[Product]:
        pass

    @abstractmethod
    def create_product(self, draft: ProductDraft) -> Product:
        """Raises PersistenceConflictError when the GTIN is taken"""

    @abstractmethod
    def update_product(self, product_id: str, fields: Dict[str, Any]) -> Product:
        """Raises ProductNotFoundError for unknown ids"""

    @abstractmethod
    def delete_product(self, product_id: str) -> None:
        """Deletes the product; dependent rows still pointing at it cascade"""

    @abstractmethod
    def search_products(self, query: str, limit: int = 20) -> List[Product]:
        pass

    @abstractmethod
    def list_products_for_refresh(
        self,
        statuses: Iterable[Gs1VerificationStatus],
        limit: int
    ) -> List[Product]:
        """Products with a GTIN whose verification status is in `statuses`, oldest first"""

    @abstractmethod
    def expire_verifications(self, verified_before: datetime) -> int:
        """Mark VERIFIED products verified before the cutoff as EXPIRED"""

    # -----------------------------------------------------------------
    # Supplier items
    # -----------------------------------------------------------------

    @abstractmethod
    def get_supplier_item(self, supplier_item_id: str) -> Optional[SupplierItem]:
        pass

    @abstractmethod
    def find_supplier_item(self, supplier_id: str, product_id: str, active_only: bool = True) -> Optional[SupplierItem]:
        pass

    @abstractmethod
    def list_supplier_items_for_product(self, product_id: str, active_only: bool = True) -> List[SupplierItem]:
        pass

    @abstractmethod
    def insert_supplier_item(self, item: SupplierItem) -> SupplierItem:
        """Raises PersistenceConflictError on a duplicate active (supplier, product)"""

    @abstractmethod
    def update_supplier_item(self, supplier_item_id: str, fields: Dict[str, Any]) -> SupplierItem:
        pass

    @abstractmethod
    def list_sku_mappings(self, supplier_id: str) -> Dict[str, str]:
        """supplier_sku -> product_id for items a human has confirmed"""

    @abstractmethod
    def list_review_items(
        self,
        filters: TriageFilters,
        limit: int,
        offset: int,
        low_confidence_threshold: float
    ) -> Tuple[List[TriageItem], int]:
        pass

    @abstractmethod
    def review_stats(self, low_confidence_threshold: float) -> TriageStats:
        pass

    def upsert_supplier_item(self, fields: SupplierItemUpsert) -> Tuple[SupplierItem, bool]:
        """
        Create or update the supplier's item for a product.

        Returns:
            (item, created)
        """
        existing = (
            self.find_supplier_item(fields.global_supplier_id, fields.product_id, active_only=True)
            or self.find_supplier_item(fields.global_supplier_id, fields.product_id, active_only=False)
        )
        if existing is None:
            now = utcnow()
            item = SupplierItem(
                id=new_id(),
                global_supplier_id=fields.global_supplier_id,
                product_id=fields.product_id,
                supplier_name=fields.supplier_name,
                supplier_sku=fields.supplier_sku,
                supplier_description=fields.supplier_description,
                unit_price=fields.unit_price,
                currency=fields.currency,
                min_order_qty=fields.min_order_qty,
                stock_level=fields.stock_level,
                lead_time_days=fields.lead_time_days,
                integration_type=fields.integration_type,
                match_method=fields.match_method,
                match_confidence=fields.match_confidence,
                needs_review=fields.needs_review,
                matched_at=now,
                matched_by=fields.matched_by,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            return self.insert_supplier_item(item), True

        updates = plan_supplier_item_update(existing, fields)
        return self.update_supplier_item(existing.id, updates), False

    # -----------------------------------------------------------------
    # Practice items & practice-supplier catalog
    # -----------------------------------------------------------------

    @abstractmethod
    def add_practice_item(self, practice_id: str, product_id: str, name: Optional[str] = None) -> PracticeItem:
        pass

    @abstractmethod
    def list_practice_items_for_product(self, product_id: str) -> List[PracticeItem]:
        pass

    @abstractmethod
    def find_practice_item(self, practice_id: str, product_id: str) -> Optional[PracticeItem]:
        pass

    @abstractmethod
    def repoint_practice_item(self, practice_item_id: str, product_id: str) -> PracticeItem:
        pass

    @abstractmethod
    def upsert_supplier_catalog(self, fields: SupplierCatalogUpsert) -> Tuple[SupplierCatalogEntry, bool]:
        pass

    # -----------------------------------------------------------------
    # Quality, audit, import history
    # -----------------------------------------------------------------

    @abstractmethod
    def get_quality_score(self, product_id: str) -> Optional[QualityScore]:
        pass

    @abstractmethod
    def save_quality_score(self, score: QualityScore) -> None:
        pass

    @abstractmethod
    def delete_quality_score(self, product_id: str) -> bool:
        pass

    @abstractmethod
    def record_audit(self, record: AuditRecord) -> None:
        pass

    @abstractmethod
    def save_import_run(self, run: ImportRun) -> None:
        """Insert or update an import run"""

    @abstractmethod
    def list_import_runs(self, limit: int = 20, supplier_id: Optional[str] = None) -> List[ImportRun]:
        pass


def plan_supplier_item_update(existing: SupplierItem, fields: SupplierItemUpsert) -> Dict[str, Any]:
    """
    Field changes for re-importing a row onto an existing supplier item.

    Catalog fields always follow the feed. Match metadata is kept when a
    human already confirmed the item, and an ignored (inactive) item stays
    inactive.
    """
    updates: Dict[str, Any] = {
        'supplier_name': fields.supplier_name,
        'supplier_sku': fields.supplier_sku,
        'supplier_description': fields.supplier_description,
        'unit_price': fields.unit_price,
        'currency': fields.currency,
        'min_order_qty': fields.min_order_qty,
        'stock_level': fields.stock_level,
        'lead_time_days': fields.lead_time_days,
        'integration_type': fields.integration_type,
    }
    if not existing.is_human_confirmed:
        updates.update({
            'match_method': fields.match_method,
            'match_confidence': fields.match_confidence,
            'needs_review': fields.needs_review,
            'matched_at': utcnow(),
            'matched_by': fields.matched_by,
        })
    return updates
