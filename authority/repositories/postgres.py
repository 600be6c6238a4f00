"""
PostgreSQL catalog repository
=============================
CatalogRepository over the schema in db/schema.sql, using psycopg2 with
RealDictCursor and parameterized SQL.

Outside a unit of work every call runs on its own pooled connection and
commits immediately. Inside one, calls share the unit of work's connection
and commit or roll back together.

Uniqueness violations are raised as PersistenceConflictError.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import psycopg2
from psycopg2 import extras

from authority.db_utils import DatabaseManager
from authority.errors import NotFoundError, PersistenceConflictError, ProductNotFoundError, SupplierItemNotFoundError
from authority.models import (
    AuditRecord,
    Gs1VerificationStatus,
    ImportRun,
    ImportRunStatus,
    IntegrationType,
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
)
from authority.repositories.base import CatalogRepository, UnitOfWork

logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = """
    id::text AS id, gtin, name, brand, description, manufacturer_name,
    is_gs1_product, gs1_verification_status, gs1_verified_at, gs1_data,
    quality_score, created_at, updated_at
"""

SUPPLIER_ITEM_COLUMNS = """
    si.id::text AS id, si.global_supplier_id, si.product_id::text AS product_id,
    si.supplier_name, si.supplier_sku, si.supplier_description, si.unit_price,
    si.currency, si.min_order_qty, si.stock_level, si.lead_time_days,
    si.integration_type, si.match_method, si.match_confidence, si.needs_review,
    si.matched_at, si.matched_by, si.is_active, si.created_at, si.updated_at
"""

# Base condition of the triage queue
REVIEW_CONDITION = """
    si.is_active
    AND (
        si.needs_review
        OR si.match_confidence < %(threshold)s
        OR (si.match_confidence IS NULL AND si.match_method = 'MANUAL')
    )
"""


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
        return True
    except (ValueError, TypeError, AttributeError):
        return False


def _float(value) -> Optional[float]:
    return float(value) if isinstance(value, Decimal) else value


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (dict, list)):
        return extras.Json(value)
    return value


# =====================================================================
# ROW MAPPERS
# =====================================================================

def _product_from_row(row: Dict[str, Any]) -> Product:
    return Product(
        id=row['id'],
        name=row['name'],
        gtin=row['gtin'],
        brand=row['brand'],
        description=row['description'],
        manufacturer_name=row['manufacturer_name'],
        is_gs1_product=row['is_gs1_product'],
        gs1_verification_status=Gs1VerificationStatus(row['gs1_verification_status']),
        gs1_verified_at=row['gs1_verified_at'],
        gs1_data=row['gs1_data'],
        quality_score=_float(row['quality_score']),
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def _supplier_item_from_row(row: Dict[str, Any]) -> SupplierItem:
    return SupplierItem(
        id=row['id'],
        global_supplier_id=row['global_supplier_id'],
        product_id=row['product_id'],
        supplier_name=row['supplier_name'],
        supplier_sku=row['supplier_sku'],
        supplier_description=row['supplier_description'],
        unit_price=_float(row['unit_price']),
        currency=row['currency'],
        min_order_qty=row['min_order_qty'],
        stock_level=row['stock_level'],
        lead_time_days=row['lead_time_days'],
        integration_type=IntegrationType(row['integration_type']),
        match_method=MatchMethod(row['match_method']),
        match_confidence=_float(row['match_confidence']),
        needs_review=row['needs_review'],
        matched_at=row['matched_at'],
        matched_by=row['matched_by'],
        is_active=row['is_active'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


def _practice_item_from_row(row: Dict[str, Any]) -> PracticeItem:
    return PracticeItem(
        id=row['id'],
        practice_id=row['practice_id'],
        product_id=row['product_id'],
        name=row['name'],
        created_at=row['created_at'],
    )


def _catalog_entry_from_row(row: Dict[str, Any]) -> SupplierCatalogEntry:
    return SupplierCatalogEntry(
        id=row['id'],
        practice_supplier_id=row['practice_supplier_id'],
        product_id=row['product_id'],
        supplier_sku=row['supplier_sku'],
        unit_price=_float(row['unit_price']),
        currency=row['currency'],
        min_order_qty=row['min_order_qty'],
        integration_type=IntegrationType(row['integration_type']),
        is_active=row['is_active'],
        last_sync_at=row['last_sync_at'],
    )


# =====================================================================
# UNIT OF WORK
# =====================================================================

class PostgresUnitOfWork(UnitOfWork):

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager
        self._conn = None
        self.repository: Optional[PostgresCatalogRepository] = None

    def begin(self) -> None:
        self._conn = self.db_manager.get_connection_pool().getconn()
        self.repository = PostgresCatalogRepository(self.db_manager, connection=self._conn)

    def commit(self) -> None:
        try:
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            self._release()

    def rollback(self) -> None:
        try:
            self._conn.rollback()
        finally:
            self._release()

    def _release(self) -> None:
        if self._conn is not None:
            self.db_manager.get_connection_pool().putconn(self._conn)
            self._conn = None

    def lock_products(self, product_ids: Iterable[str]) -> List[Product]:
        ids = sorted({str(i) for i in product_ids if _is_uuid(i)})
        if not ids:
            return []
        with self.repository._cursor() as cur:
            cur.execute(
                f"""
                SELECT {PRODUCT_COLUMNS}
                FROM products
                WHERE id = ANY(%s::uuid[])
                ORDER BY id
                FOR UPDATE
                """,
                (ids,)
            )
            return [_product_from_row(r) for r in cur.fetchall()]

    def lock_supplier_item(self, supplier_item_id: str) -> Optional[SupplierItem]:
        if not _is_uuid(supplier_item_id):
            return None
        with self.repository._cursor() as cur:
            cur.execute(
                f"SELECT {SUPPLIER_ITEM_COLUMNS} FROM supplier_items si WHERE si.id = %s FOR UPDATE",
                (supplier_item_id,)
            )
            row = cur.fetchone()
            return _supplier_item_from_row(row) if row else None


# =====================================================================
# REPOSITORY
# =====================================================================

class PostgresCatalogRepository(CatalogRepository):

    def __init__(self, db_manager: DatabaseManager, connection=None):
        self.db_manager = db_manager
        self._connection = connection

    def unit_of_work(self) -> PostgresUnitOfWork:
        return PostgresUnitOfWork(self.db_manager)

    @contextmanager
    def _cursor(self):
        try:
            if self._connection is not None:
                cursor = self._connection.cursor(cursor_factory=extras.RealDictCursor)
                try:
                    yield cursor
                finally:
                    cursor.close()
            else:
                with self.db_manager.get_cursor() as cursor:
                    yield cursor
        except psycopg2.errors.UniqueViolation as e:
            constraint = getattr(e.diag, 'constraint_name', None)
            raise PersistenceConflictError(
                f"Uniqueness violation on {constraint or 'unknown constraint'}",
                {"constraint": constraint, "detail": getattr(e.diag, 'message_detail', None)},
            ) from e

    def _fetch_all(self, query: str, params=None) -> List[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def _fetch_one(self, query: str, params=None) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()

    # -----------------------------------------------------------------
    # Products
    # -----------------------------------------------------------------

    def find_product_by_gtin(self, gtin: str) -> Optional[Product]:
        row = self._fetch_one(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE gtin = %s", (gtin,))
        return _product_from_row(row) if row else None

    def find_product_by_id(self, product_id: str) -> Optional[Product]:
        if not _is_uuid(product_id):
            return None
        row = self._fetch_one(f"SELECT {PRODUCT_COLUMNS} FROM products WHERE id = %s", (product_id,))
        return _product_from_row(row) if row else None

    def list_products(self) -> List[Product]:
        rows = self._fetch_all(f"SELECT {PRODUCT_COLUMNS} FROM products ORDER BY id")
        return [_product_from_row(r) for r in rows]

    def create_product(self, draft: ProductDraft) -> Product:
        row = self._fetch_one(
            f"""
            INSERT INTO products (
                id, gtin, name, brand, description, manufacturer_name, is_gs1_product,
                gs1_verification_status, gs1_verified_at, gs1_data
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {PRODUCT_COLUMNS}
            """,
            (
                new_id(), draft.gtin, draft.name, draft.brand, draft.description,
                draft.manufacturer_name, draft.is_gs1_product,
                draft.gs1_verification_status.value, draft.gs1_verified_at,
                _db_value(draft.gs1_data),
            )
        )
        return _product_from_row(row)

    def update_product(self, product_id: str, fields: Dict[str, Any]) -> Product:
        unknown = set(fields) - set(Product.UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update product fields: {', '.join(sorted(unknown))}")
        if not _is_uuid(product_id):
            raise ProductNotFoundError(product_id)

        columns = sorted(fields)
        set_clause = ", ".join(f"{c} = %s" for c in columns)
        row = self._fetch_one(
            f"""
            UPDATE products SET {set_clause}{', ' if columns else ''}updated_at = NOW()
            WHERE id = %s
            RETURNING {PRODUCT_COLUMNS}
            """,
            tuple(_db_value(fields[c]) for c in columns) + (product_id,)
        )
        if row is None:
            raise ProductNotFoundError(product_id)
        return _product_from_row(row)

    def delete_product(self, product_id: str) -> None:
        if not _is_uuid(product_id):
            raise ProductNotFoundError(product_id)
        with self._cursor() as cur:
            cur.execute("DELETE FROM products WHERE id = %s", (product_id,))
            if cur.rowcount == 0:
                raise ProductNotFoundError(product_id)

    def search_products(self, query: str, limit: int = 20) -> List[Product]:
        pattern = f"%{query.strip()}%"
        rows = self._fetch_all(
            f"""
            SELECT {PRODUCT_COLUMNS}
            FROM products
            WHERE name ILIKE %s OR brand ILIKE %s OR gtin LIKE %s
            ORDER BY lower(name)
            LIMIT %s
            """,
            (pattern, pattern, pattern, limit)
        )
        return [_product_from_row(r) for r in rows]

    def list_products_for_refresh(self, statuses: Iterable[Gs1VerificationStatus], limit: int) -> List[Product]:
        rows = self._fetch_all(
            f"""
            SELECT {PRODUCT_COLUMNS}
            FROM products
            WHERE gtin IS NOT NULL AND gs1_verification_status = ANY(%s)
            ORDER BY updated_at
            LIMIT %s
            """,
            ([s.value for s in statuses], limit)
        )
        return [_product_from_row(r) for r in rows]

    def expire_verifications(self, verified_before: datetime) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE products
                SET gs1_verification_status = 'EXPIRED', updated_at = NOW()
                WHERE gs1_verification_status = 'VERIFIED' AND gs1_verified_at < %s
                """,
                (verified_before,)
            )
            return cur.rowcount

    # -----------------------------------------------------------------
    # Supplier items
    # -----------------------------------------------------------------

    def get_supplier_item(self, supplier_item_id: str) -> Optional[SupplierItem]:
        if not _is_uuid(supplier_item_id):
            return None
        row = self._fetch_one(
            f"SELECT {SUPPLIER_ITEM_COLUMNS} FROM supplier_items si WHERE si.id = %s", (supplier_item_id,)
        )
        return _supplier_item_from_row(row) if row else None

    def find_supplier_item(self, supplier_id: str, product_id: str, active_only: bool = True) -> Optional[SupplierItem]:
        if not _is_uuid(product_id):
            return None
        row = self._fetch_one(
            f"""
            SELECT {SUPPLIER_ITEM_COLUMNS}
            FROM supplier_items si
            WHERE si.global_supplier_id = %s AND si.product_id = %s
              AND (si.is_active OR NOT %s)
            ORDER BY si.is_active DESC, si.created_at
            LIMIT 1
            """,
            (supplier_id, product_id, active_only)
        )
        return _supplier_item_from_row(row) if row else None

    def list_supplier_items_for_product(self, product_id: str, active_only: bool = True) -> List[SupplierItem]:
        rows = self._fetch_all(
            f"""
            SELECT {SUPPLIER_ITEM_COLUMNS}
            FROM supplier_items si
            WHERE si.product_id = %s AND (si.is_active OR NOT %s)
            ORDER BY si.created_at, si.id
            """,
            (product_id, active_only)
        )
        return [_supplier_item_from_row(r) for r in rows]

    def insert_supplier_item(self, item: SupplierItem) -> SupplierItem:
        row = self._fetch_one(
            f"""
            WITH inserted AS (
                INSERT INTO supplier_items (
                    id, global_supplier_id, product_id, supplier_name, supplier_sku,
                    supplier_description, unit_price, currency, min_order_qty, stock_level,
                    lead_time_days, integration_type, match_method, match_confidence,
                    needs_review, matched_at, matched_by, is_active
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
            )
            SELECT {SUPPLIER_ITEM_COLUMNS} FROM inserted si
            """,
            (
                item.id, item.global_supplier_id, item.product_id, item.supplier_name,
                item.supplier_sku, item.supplier_description, item.unit_price, item.currency,
                item.min_order_qty, item.stock_level, item.lead_time_days,
                item.integration_type.value, item.match_method.value, item.match_confidence,
                item.needs_review, item.matched_at, item.matched_by, item.is_active,
            )
        )
        return _supplier_item_from_row(row)

    def update_supplier_item(self, supplier_item_id: str, fields: Dict[str, Any]) -> SupplierItem:
        unknown = set(fields) - set(SupplierItem.UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update supplier item fields: {', '.join(sorted(unknown))}")
        if not _is_uuid(supplier_item_id):
            raise SupplierItemNotFoundError(supplier_item_id)

        columns = sorted(fields)
        set_clause = ", ".join(f"{c} = %s" for c in columns)
        row = self._fetch_one(
            f"""
            WITH updated AS (
                UPDATE supplier_items SET {set_clause}{', ' if columns else ''}updated_at = NOW()
                WHERE id = %s
                RETURNING *
            )
            SELECT {SUPPLIER_ITEM_COLUMNS} FROM updated si
            """,
            tuple(_db_value(fields[c]) for c in columns) + (supplier_item_id,)
        )
        if row is None:
            raise SupplierItemNotFoundError(supplier_item_id)
        return _supplier_item_from_row(row)

    def list_sku_mappings(self, supplier_id: str) -> Dict[str, str]:
        rows = self._fetch_all(
            """
            SELECT DISTINCT ON (supplier_sku) supplier_sku, product_id::text AS product_id
            FROM supplier_items
            WHERE global_supplier_id = %s
              AND supplier_sku IS NOT NULL
              AND is_active AND NOT needs_review
              AND matched_by IS NOT NULL AND matched_by <> 'system'
            ORDER BY supplier_sku, updated_at DESC
            """,
            (supplier_id,)
        )
        return {r['supplier_sku']: r['product_id'] for r in rows}

    def _review_filter_sql(self, filters: TriageFilters, params: Dict[str, Any]) -> str:
        clauses = []
        if filters.issue_type == TriageIssueType.NEEDS_REVIEW:
            clauses.append("si.needs_review")
        elif filters.issue_type == TriageIssueType.LOW_CONFIDENCE:
            clauses.append("si.match_confidence < %(threshold)s")
        elif filters.issue_type == TriageIssueType.NO_GTIN:
            clauses.append("p.gtin IS NULL")
        elif filters.issue_type == TriageIssueType.FUZZY_MATCH:
            clauses.append("si.match_method = 'FUZZY_NAME'")
        if filters.supplier_id:
            clauses.append("si.global_supplier_id = %(supplier_id)s")
            params['supplier_id'] = filters.supplier_id
        if filters.search:
            clauses.append(
                "(si.supplier_name ILIKE %(search)s OR si.supplier_sku ILIKE %(search)s"
                " OR p.name ILIKE %(search)s OR p.gtin LIKE %(search)s)"
            )
            params['search'] = f"%{filters.search.strip()}%"
        return "".join(f" AND {c}" for c in clauses)

    def list_review_items(
        self,
        filters: TriageFilters,
        limit: int,
        offset: int,
        low_confidence_threshold: float
    ) -> Tuple[List[TriageItem], int]:
        params: Dict[str, Any] = {'threshold': low_confidence_threshold, 'limit': limit, 'offset': offset}
        where = REVIEW_CONDITION + self._review_filter_sql(filters, params)

        count_row = self._fetch_one(
            f"""
            SELECT COUNT(*) AS total
            FROM supplier_items si
            JOIN products p ON p.id = si.product_id
            WHERE {where}
            """,
            params
        )
        rows = self._fetch_all(
            f"""
            SELECT {SUPPLIER_ITEM_COLUMNS},
                   p.name AS product_name, p.gtin AS product_gtin, p.brand AS product_brand,
                   COALESCE(q.overall_score, p.quality_score) AS product_quality_score,
                   q.missing_fields AS product_missing_fields,
                   (
                       SELECT COUNT(*) FROM supplier_items d
                       WHERE d.product_id = si.product_id AND d.is_active AND d.id <> si.id
                   ) AS duplicate_count
            FROM supplier_items si
            JOIN products p ON p.id = si.product_id
            LEFT JOIN product_quality_scores q ON q.product_id = p.id
            WHERE {where}
            ORDER BY si.needs_review DESC, si.match_confidence ASC NULLS LAST, si.created_at DESC
            LIMIT %(limit)s OFFSET %(offset)s
            """,
            params
        )
        items = [
            TriageItem(
                supplier_item=_supplier_item_from_row(r),
                product_name=r['product_name'],
                product_gtin=r['product_gtin'],
                product_brand=r['product_brand'],
                quality_score=_float(r['product_quality_score']),
                missing_fields=list(r['product_missing_fields'] or []),
                duplicate_count=r['duplicate_count'],
            )
            for r in rows
        ]
        return items, count_row['total']

    def review_stats(self, low_confidence_threshold: float) -> TriageStats:
        row = self._fetch_one(
            f"""
            SELECT
                COUNT(*) AS total,
                COUNT(*) FILTER (WHERE si.needs_review) AS needs_review,
                COUNT(*) FILTER (WHERE si.match_confidence < %(threshold)s) AS low_confidence,
                COUNT(*) FILTER (WHERE p.gtin IS NULL) AS no_gtin,
                COUNT(*) FILTER (WHERE si.match_method = 'FUZZY_NAME') AS fuzzy_match
            FROM supplier_items si
            JOIN products p ON p.id = si.product_id
            WHERE {REVIEW_CONDITION}
            """,
            {'threshold': low_confidence_threshold}
        )
        return TriageStats(**row)

    # -----------------------------------------------------------------
    # Practice items & practice-supplier catalog
    # -----------------------------------------------------------------

    def add_practice_item(self, practice_id: str, product_id: str, name: Optional[str] = None) -> PracticeItem:
        row = self._fetch_one(
            """
            INSERT INTO practice_items (id, practice_id, product_id, name)
            VALUES (%s, %s, %s, %s)
            RETURNING id::text AS id, practice_id, product_id::text AS product_id, name, created_at
            """,
            (new_id(), practice_id, product_id, name)
        )
        return _practice_item_from_row(row)

    def list_practice_items_for_product(self, product_id: str) -> List[PracticeItem]:
        rows = self._fetch_all(
            """
            SELECT id::text AS id, practice_id, product_id::text AS product_id, name, created_at
            FROM practice_items
            WHERE product_id = %s
            ORDER BY created_at, id
            """,
            (product_id,)
        )
        return [_practice_item_from_row(r) for r in rows]

    def find_practice_item(self, practice_id: str, product_id: str) -> Optional[PracticeItem]:
        row = self._fetch_one(
            """
            SELECT id::text AS id, practice_id, product_id::text AS product_id, name, created_at
            FROM practice_items
            WHERE practice_id = %s AND product_id = %s
            """,
            (practice_id, product_id)
        )
        return _practice_item_from_row(row) if row else None

    def repoint_practice_item(self, practice_item_id: str, product_id: str) -> PracticeItem:
        row = self._fetch_one(
            """
            UPDATE practice_items SET product_id = %s
            WHERE id = %s
            RETURNING id::text AS id, practice_id, product_id::text AS product_id, name, created_at
            """,
            (product_id, practice_item_id)
        )
        if row is None:
            raise NotFoundError("Practice item not found", {"practice_item_id": practice_item_id})
        return _practice_item_from_row(row)

    def upsert_supplier_catalog(self, fields: SupplierCatalogUpsert) -> Tuple[SupplierCatalogEntry, bool]:
        row = self._fetch_one(
            """
            INSERT INTO supplier_catalog (
                id, practice_supplier_id, product_id, supplier_sku, unit_price,
                currency, min_order_qty, integration_type
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (practice_supplier_id, product_id) DO UPDATE SET
                supplier_sku = EXCLUDED.supplier_sku,
                unit_price = EXCLUDED.unit_price,
                currency = EXCLUDED.currency,
                min_order_qty = EXCLUDED.min_order_qty,
                integration_type = EXCLUDED.integration_type,
                is_active = TRUE,
                last_sync_at = NOW()
            RETURNING id::text AS id, practice_supplier_id, product_id::text AS product_id,
                      supplier_sku, unit_price, currency, min_order_qty, integration_type,
                      is_active, last_sync_at, (xmax = 0) AS inserted
            """,
            (
                new_id(), fields.practice_supplier_id, fields.product_id, fields.supplier_sku,
                fields.unit_price, fields.currency, fields.min_order_qty, fields.integration_type.value,
            )
        )
        return _catalog_entry_from_row(row), bool(row['inserted'])

    # -----------------------------------------------------------------
    # Quality, audit, import history
    # -----------------------------------------------------------------

    def get_quality_score(self, product_id: str) -> Optional[QualityScore]:
        if not _is_uuid(product_id):
            return None
        row = self._fetch_one(
            "SELECT *, product_id::text AS product_id FROM product_quality_scores WHERE product_id = %s",
            (product_id,)
        )
        if row is None:
            return None
        return QualityScore(
            product_id=row['product_id'],
            overall_score=_float(row['overall_score']),
            basic_data_score=_float(row['basic_data_score']),
            gs1_data_score=_float(row['gs1_data_score']),
            media_score=_float(row['media_score']),
            document_score=_float(row['document_score']),
            regulatory_score=_float(row['regulatory_score']),
            packaging_score=_float(row['packaging_score']),
            missing_fields=list(row['missing_fields'] or []),
            warnings=list(row['warnings'] or []),
            calculated_at=row['calculated_at'],
        )

    def save_quality_score(self, score: QualityScore) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO product_quality_scores (
                    product_id, overall_score, basic_data_score, gs1_data_score, media_score,
                    document_score, regulatory_score, packaging_score, missing_fields, warnings,
                    calculated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (product_id) DO UPDATE SET
                    overall_score = EXCLUDED.overall_score,
                    basic_data_score = EXCLUDED.basic_data_score,
                    gs1_data_score = EXCLUDED.gs1_data_score,
                    media_score = EXCLUDED.media_score,
                    document_score = EXCLUDED.document_score,
                    regulatory_score = EXCLUDED.regulatory_score,
                    packaging_score = EXCLUDED.packaging_score,
                    missing_fields = EXCLUDED.missing_fields,
                    warnings = EXCLUDED.warnings,
                    calculated_at = EXCLUDED.calculated_at
                """,
                (
                    score.product_id, score.overall_score, score.basic_data_score,
                    score.gs1_data_score, score.media_score, score.document_score,
                    score.regulatory_score, score.packaging_score,
                    extras.Json(score.missing_fields), extras.Json(score.warnings),
                    score.calculated_at,
                )
            )

    def delete_quality_score(self, product_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM product_quality_scores WHERE product_id = %s", (product_id,))
            return cur.rowcount > 0

    def record_audit(self, record: AuditRecord) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO audit_log (id, operation, actor_id, entity_type, entity_id, changes, created_at)
                VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s)
                """,
                (
                    record.id, record.operation, record.actor_id, record.entity_type,
                    record.entity_id, json.dumps(record.changes, default=str), record.timestamp,
                )
            )

    def save_import_run(self, run: ImportRun) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO import_runs (
                    id, global_supplier_id, source, status, started_at, completed_at,
                    total_rows, success_count, failed_count, review_count, enriched_count,
                    error_message
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status,
                    completed_at = EXCLUDED.completed_at,
                    total_rows = EXCLUDED.total_rows,
                    success_count = EXCLUDED.success_count,
                    failed_count = EXCLUDED.failed_count,
                    review_count = EXCLUDED.review_count,
                    enriched_count = EXCLUDED.enriched_count,
                    error_message = EXCLUDED.error_message
                """,
                (
                    run.id, run.global_supplier_id, run.source, run.status.value,
                    run.started_at, run.completed_at, run.total_rows, run.success_count,
                    run.failed_count, run.review_count, run.enriched_count, run.error_message,
                )
            )

    def list_import_runs(self, limit: int = 20, supplier_id: Optional[str] = None) -> List[ImportRun]:
        # Read-only history goes through the SQLAlchemy engine
        df = self.db_manager.read_dataframe(
            """
            SELECT id::text AS id, global_supplier_id, source, status, started_at, completed_at,
                   total_rows, success_count, failed_count, review_count, enriched_count,
                   error_message
            FROM import_runs
            WHERE CAST(:supplier_id AS TEXT) IS NULL OR global_supplier_id = :supplier_id
            ORDER BY started_at DESC
            LIMIT :limit
            """,
            {'supplier_id': supplier_id, 'limit': limit}
        )
        runs = []
        for record in df.to_dict(orient='records'):
            completed_at = record['completed_at']
            runs.append(ImportRun(
                id=record['id'],
                global_supplier_id=record['global_supplier_id'],
                source=record['source'],
                status=ImportRunStatus(record['status']),
                started_at=record['started_at'].to_pydatetime(),
                completed_at=None if pd.isna(completed_at) else completed_at.to_pydatetime(),
                total_rows=int(record['total_rows']),
                success_count=int(record['success_count']),
                failed_count=int(record['failed_count']),
                review_count=int(record['review_count']),
                enriched_count=int(record['enriched_count']),
                error_message=None if pd.isna(record["error_message"]) else record["error_message"],
            ))
        return runs
