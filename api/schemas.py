"""
Pydantic Request/Response Schemas
=================================
Type-safe models for the Product Authority API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =====================================================================
# HEALTH
# =====================================================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(description="Overall API status")
    repository: str = Field(description="Catalog repository status")
    gdsn: str = Field(description="GDSN provider status")
    gdsn_provider: str
    version: str = Field(description="API version")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# =====================================================================
# IMPORTS
# =====================================================================

class ImportOptionsIn(BaseModel):
    """Batch options; omitted values come from config/authority.yml."""
    integration_type: Optional[str] = Field(None, description="API, CSV, EDI, OCI or MANUAL")
    auto_enrich: Optional[bool] = None
    min_auto_match_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    create_new_products: Optional[bool] = None
    default_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    skip_invalid_rows: Optional[bool] = None


class ImportRowsRequest(BaseModel):
    rows: List[Dict[str, Any]]
    options: Optional[ImportOptionsIn] = None


class ImportItemOut(BaseModel):
    row_index: int
    state: str
    success: bool
    product_id: Optional[str] = None
    supplier_item_id: Optional[str] = None
    match_method: Optional[str] = None
    match_confidence: Optional[float] = None
    needs_review: bool
    enriched: bool
    created_product: bool
    errors: List[str] = []
    warnings: List[str] = []


class ImportResultOut(BaseModel):
    run_id: Optional[str] = None
    import_id: str
    global_supplier_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: int
    total_rows: int
    success_count: int
    failed_count: int
    review_count: int
    enriched_count: int
    cancelled: bool
    items: List[ImportItemOut] = []


class ImportRunOut(BaseModel):
    id: str
    global_supplier_id: str
    source: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_rows: int
    success_count: int
    failed_count: int
    review_count: int
    enriched_count: int
    error_message: Optional[str] = None


# =====================================================================
# TRIAGE
# =====================================================================

class SupplierItemOut(BaseModel):
    id: str
    global_supplier_id: str
    product_id: str
    supplier_name: str
    supplier_sku: Optional[str] = None
    supplier_description: Optional[str] = None
    unit_price: Optional[float] = None
    currency: str
    min_order_qty: int
    stock_level: Optional[int] = None
    lead_time_days: Optional[int] = None
    integration_type: str
    match_method: str
    match_confidence: Optional[float] = None
    needs_review: bool
    matched_at: Optional[datetime] = None
    matched_by: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TriageItemOut(SupplierItemOut):
    product_name: str
    product_gtin: Optional[str] = None
    product_brand: Optional[str] = None
    quality_score: Optional[float] = None
    missing_fields: List[str] = []
    duplicate_count: int = 0


class TriageListResponse(BaseModel):
    items: List[TriageItemOut]
    total: int
    limit: int
    offset: int


class TriageStatsOut(BaseModel):
    total: int
    needs_review: int
    low_confidence: int
    no_gtin: int
    fuzzy_match: int


class ReassignRequest(BaseModel):
    product_id: str


class ProductDraftIn(BaseModel):
    name: str = Field(..., min_length=1)
    gtin: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    manufacturer_name: Optional[str] = None


class TriageActionResponse(BaseModel):
    supplier_item: SupplierItemOut
    changed: bool
    product_id: Optional[str] = None
    created_product: bool = False


# =====================================================================
# PRODUCTS
# =====================================================================

class ProductOut(BaseModel):
    id: str
    name: str
    gtin: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    manufacturer_name: Optional[str] = None
    is_gs1_product: bool
    gs1_verification_status: str
    quality_score: Optional[float] = None
    updated_at: datetime


class MergeRequest(BaseModel):
    source_product_id: str
    target_product_id: str


class MergeResponse(BaseModel):
    source_product_id: str
    target_product_id: str
    moved_supplier_items: int
    moved_practice_items: int
    deactivated_supplier_items: int
    orphaned_practice_item_ids: List[str] = []
    merged_count: int


class ErrorResponse(BaseModel):
    error: str
    detail: str
    status_code: int
