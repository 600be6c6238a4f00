"""
Product Authority - Domain Model
================================
Records shared by the normalizer, matcher, repositories and services.

- Product: canonical catalog entity, at most one per non-null GTIN
- SupplierItem: supplier-owned link to a Product carrying SKU, price and
  match metadata; unique per (supplier, product) while active
- PracticeItem: a practice's local inventory record for a Product
- SupplierCatalogEntry: practice-supplier catalog row written by feed sync
- QualityScore: read-only quality snapshot per Product
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


def record_to_dict(record) -> Dict[str, Any]:
    """JSON-safe dict for any dataclass record in this module"""
    return _serialize(asdict(record))


# =====================================================================
# ENUMS
# =====================================================================

class MatchMethod(str, Enum):
    GTIN_EXACT = "GTIN_EXACT"
    FUZZY_NAME = "FUZZY_NAME"
    MANUAL = "MANUAL"


class Gs1VerificationStatus(str, Enum):
    UNVERIFIED = "UNVERIFIED"
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class IntegrationType(str, Enum):
    API = "API"
    CSV = "CSV"
    EDI = "EDI"
    OCI = "OCI"
    MANUAL = "MANUAL"


class RowState(str, Enum):
    """Per-row progress through an import"""
    RECEIVED = "RECEIVED"
    NORMALIZED = "NORMALIZED"
    MATCHED = "MATCHED"
    UNMATCHED = "UNMATCHED"
    PRODUCT_RESOLVED = "PRODUCT_RESOLVED"
    CATALOG_UPSERTED = "CATALOG_UPSERTED"
    ENRICHED = "ENRICHED"
    DONE = "DONE"
    FAILED = "FAILED"


class ImportRunStatus(str, Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


# =====================================================================
# PRODUCTS
# =====================================================================

@dataclass
class ProductDraft:
    """Fields for a product that does not exist yet"""
    name: str
    gtin: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    manufacturer_name: Optional[str] = None
    is_gs1_product: bool = False
    gs1_verification_status: Gs1VerificationStatus = Gs1VerificationStatus.UNVERIFIED
    gs1_verified_at: Optional[datetime] = None
    gs1_data: Optional[Dict[str, Any]] = None


@dataclass
class Product:
    id: str
    name: str
    gtin: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    manufacturer_name: Optional[str] = None
    is_gs1_product: bool = False
    gs1_verification_status: Gs1VerificationStatus = Gs1VerificationStatus.UNVERIFIED
    gs1_verified_at: Optional[datetime] = None
    gs1_data: Optional[Dict[str, Any]] = None
    quality_score: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    # Columns update_product() may change
    UPDATABLE = (
        'name', 'gtin', 'brand', 'description', 'manufacturer_name',
        'is_gs1_product', 'gs1_verification_status', 'gs1_verified_at',
        'gs1_data', 'quality_score',
    )

    @classmethod
    def from_draft(cls, draft: ProductDraft, product_id: Optional[str] = None) -> "Product":
        now = utcnow()
        return cls(
            id=product_id or new_id(),
            name=draft.name,
            gtin=draft.gtin,
            brand=draft.brand,
            description=draft.description,
            manufacturer_name=draft.manufacturer_name,
            is_gs1_product=draft.is_gs1_product,
            gs1_verification_status=draft.gs1_verification_status,
            gs1_verified_at=draft.gs1_verified_at,
            gs1_data=draft.gs1_data,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


# =====================================================================
# SUPPLIER ITEMS
# =====================================================================

@dataclass
class SupplierItemUpsert:
    """Payload for upsert_supplier_item(), keyed on (supplier, product)"""
    global_supplier_id: str
    product_id: str
    supplier_name: str
    supplier_sku: Optional[str] = None
    supplier_description: Optional[str] = None
    unit_price: Optional[float] = None
    currency: str = "EUR"
    min_order_qty: int = 1
    stock_level: Optional[int] = None
    lead_time_days: Optional[int] = None
    integration_type: IntegrationType = IntegrationType.CSV
    match_method: MatchMethod = MatchMethod.MANUAL
    match_confidence: Optional[float] = None
    needs_review: bool = True
    matched_by: str = "system"


@dataclass
class SupplierItem:
    id: str
    global_supplier_id: str
    product_id: str
    supplier_name: str
    supplier_sku: Optional[str] = None
    supplier_description: Optional[str] = None
    unit_price: Optional[float] = None
    currency: str = "EUR"
    min_order_qty: int = 1
    stock_level: Optional[int] = None
    lead_time_days: Optional[int] = None
    integration_type: IntegrationType = IntegrationType.CSV
    match_method: MatchMethod = MatchMethod.MANUAL
    match_confidence: Optional[float] = None
    needs_review: bool = True
    matched_at: Optional[datetime] = None
    matched_by: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    UPDATABLE = (
        'product_id', 'supplier_name', 'supplier_sku', 'supplier_description',
        'unit_price', 'currency', 'min_order_qty', 'stock_level', 'lead_time_days',
        'integration_type', 'match_method', 'match_confidence', 'needs_review',
        'matched_at', 'matched_by', 'is_active',
    )

    @property
    def is_human_confirmed(self) -> bool:
        return (
            not self.needs_review
            and self.matched_by is not None
            and self.matched_by != "system"
        )

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


# =====================================================================
# PRACTICE-SIDE RECORDS
# =====================================================================

@dataclass
class PracticeItem:
    id: str
    practice_id: str
    product_id: str
    name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


@dataclass
class SupplierCatalogUpsert:
    """Payload for upsert_supplier_catalog(), keyed on (practice supplier, product)"""
    practice_supplier_id: str
    product_id: str
    supplier_sku: Optional[str] = None
    unit_price: Optional[float] = None
    currency: str = "EUR"
    min_order_qty: int = 1
    integration_type: IntegrationType = IntegrationType.MANUAL


@dataclass
class SupplierCatalogEntry:
    id: str
    practice_supplier_id: str
    product_id: str
    supplier_sku: Optional[str] = None
    unit_price: Optional[float] = None
    currency: str = "EUR"
    min_order_qty: int = 1
    integration_type: IntegrationType = IntegrationType.MANUAL
    is_active: bool = True
    last_sync_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


@dataclass
class QualityScore:
    """Snapshot written by the external scoring job"""
    product_id: str
    overall_score: float = 0.0
    basic_data_score: float = 0.0
    gs1_data_score: float = 0.0
    media_score: float = 0.0
    document_score: float = 0.0
    regulatory_score: float = 0.0
    packaging_score: float = 0.0
    missing_fields: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    calculated_at: datetime = field(default_factory=utcnow)


# =====================================================================
# AUDIT & IMPORT HISTORY
# =====================================================================

@dataclass
class AuditRecord:
    operation: str
    actor_id: str
    entity_type: str
    entity_id: str
    timestamp: datetime = field(default_factory=utcnow)
    changes: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


@dataclass
class ImportRun:
    id: str
    global_supplier_id: str
    source: str
    status: ImportRunStatus = ImportRunStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    total_rows: int = 0
    success_count: int = 0
    failed_count: int = 0
    review_count: int = 0
    enriched_count: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return record_to_dict(self)


# =====================================================================
# TRIAGE VIEWS
# =====================================================================

class TriageIssueType(str, Enum):
    ALL = "all"
    NEEDS_REVIEW = "needs-review"
    LOW_CONFIDENCE = "low-confidence"
    NO_GTIN = "no-gtin"
    FUZZY_MATCH = "fuzzy-match"


@dataclass
class TriageFilters:
    issue_type: TriageIssueType = TriageIssueType.ALL
    supplier_id: Optional[str] = None
    search: Optional[str] = None


@dataclass
class TriageItem:
    """One review-queue row: supplier item plus product context"""
    supplier_item: SupplierItem
    product_name: str
    product_gtin: Optional[str] = None
    product_brand: Optional[str] = None
    quality_score: Optional[float] = None
    missing_fields: List[str] = field(default_factory=list)
    duplicate_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = self.supplier_item.to_dict()
        data.update({
            'product_name': self.product_name,
            'product_gtin': self.product_gtin,
            'product_brand': self.product_brand,
            'quality_score': self.quality_score,
            'missing_fields': list(self.missing_fields),
            'duplicate_count': self.duplicate_count,
        })
        return data


@dataclass
class TriagePage:
    items: List[TriageItem]
    total: int
    limit: int
    offset: int


@dataclass
class TriageStats:
    total: int = 0
    needs_review: int = 0
    low_confidence: int = 0
    no_gtin: int = 0
    fuzzy_match: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
