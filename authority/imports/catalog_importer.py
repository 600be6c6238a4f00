"""
Supplier Catalog Import
=======================
Drives a supplier catalog batch through the ingestion pipeline:

1. Normalize the raw row for its source format
2. Match it to a product (GTIN, GTIN variant, SKU mapping, fuzzy name)
3. Create a product when nothing matched (GDSN-backed when possible)
4. Upsert the supplier item carrying price and match metadata
5. Enrich the product from GDSN (best effort)

Rows run sequentially and each one commits in its own unit of work, so a
failing row is recorded and counted without touching the others.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from authority.enrichment.service import EnrichmentService
from authority.errors import ImportCancelledError
from authority.matching import GtinMatcher, MatchCandidate, MatchResult, ProductIndex, needs_review
from authority.models import (
    Gs1VerificationStatus,
    IntegrationType,
    MatchMethod,
    Product,
    ProductDraft,
    RowState,
    SupplierItemUpsert,
    new_id,
    utcnow,
)
from authority.normalization import SupplierDataFeed, normalize, parse_csv
from authority.settings import AuthorityConfig, ImportSettings, MatchingSettings

logger = logging.getLogger(__name__)


# =====================================================================
# OPTIONS & RESULTS
# =====================================================================

@dataclass
class ImportOptions:
    """Per-batch options; anything left as None falls back to the 'import' config section"""
    integration_type: Optional[IntegrationType] = None
    auto_enrich: Optional[bool] = None
    min_auto_match_confidence: Optional[float] = None
    create_new_products: Optional[bool] = None
    default_currency: Optional[str] = None
    skip_invalid_rows: Optional[bool] = None

    def with_defaults(self, settings: ImportSettings) -> "ImportOptions":
        integration_type = self.integration_type or settings.integration_type
        if not isinstance(integration_type, IntegrationType):
            integration_type = IntegrationType(str(integration_type).upper())
        return replace(
            self,
            integration_type=integration_type,
            auto_enrich=settings.auto_enrich if self.auto_enrich is None else self.auto_enrich,
            create_new_products=(
                settings.create_new_products if self.create_new_products is None else self.create_new_products
            ),
            default_currency=(self.default_currency or settings.default_currency).upper(),
            skip_invalid_rows=settings.skip_invalid_rows if self.skip_invalid_rows is None else self.skip_invalid_rows,
        )


@dataclass
class ImportItemResult:
    row_index: int
    state: RowState = RowState.RECEIVED
    success: bool = False
    product_id: Optional[str] = None
    supplier_item_id: Optional[str] = None
    match_method: Optional[MatchMethod] = None
    match_confidence: Optional[float] = None
    needs_review: bool = False
    enriched: bool = False
    created_product: bool = False
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'row_index': self.row_index,
            'state': self.state.value,
            'success': self.success,
            'product_id': self.product_id,
            'supplier_item_id': self.supplier_item_id,
            'match_method': self.match_method.value if self.match_method else None,
            'match_confidence': self.match_confidence,
            'needs_review': self.needs_review,
            'enriched': self.enriched,
            'created_product': self.created_product,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
        }


@dataclass
class ImportResult:
    import_id: str
    global_supplier_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: int = 0
    total_rows: int = 0
    success_count: int = 0
    failed_count: int = 0
    review_count: int = 0
    enriched_count: int = 0
    cancelled: bool = False
    items: List[ImportItemResult] = field(default_factory=list)

    def record(self, item: ImportItemResult) -> None:
        self.items.append(item)
        if item.success:
            self.success_count += 1
            if item.enriched:
                self.enriched_count += 1
        else:
            self.failed_count += 1
        if item.needs_review:
            self.review_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'import_id': self.import_id,
            'global_supplier_id': self.global_supplier_id,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_ms': self.duration_ms,
            'total_rows': self.total_rows,
            'success_count': self.success_count,
            'failed_count': self.failed_count,
            'review_count': self.review_count,
            'enriched_count': self.enriched_count,
            'cancelled': self.cancelled,
            'items': [item.to_dict() for item in self.items],
        }


class CancellationToken:
    """Checked between rows; rows already committed stay committed"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ImportCancelledError("Import cancelled")


# =====================================================================
# SERVICE
# =====================================================================

class CatalogImportService:
    """Import orchestrator for supplier catalogs"""

    def __init__(
        self,
        repository,
        matcher: GtinMatcher,
        enrichment: Optional[EnrichmentService] = None,
        config: Optional[AuthorityConfig] = None
    ):
        self.repository = repository
        self.matcher = matcher
        self.enrichment = enrichment
        self.config = config or AuthorityConfig()

    def import_catalog(
        self,
        supplier_id: str,
        rows: Iterable[Mapping[str, Any]],
        options: Optional[ImportOptions] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> ImportResult:
        """
        Import a batch of raw rows for one global supplier.

        Args:
            supplier_id: Global supplier the rows belong to
            rows: Flat raw records in the source format given by options.integration_type
            options: Batch options (defaults from config)
            cancel_token: Optional token checked before each row

        Returns:
            ImportResult with one ImportItemResult per processed row, in input order
        """
        rows = list(rows)
        opts = (options or ImportOptions()).with_defaults(self.config.imports)
        matching = self._matching_settings(supplier_id, opts)
        started = time.monotonic()
        result = ImportResult(
            import_id=f"import-{new_id()}",
            global_supplier_id=supplier_id,
            started_at=utcnow(),
            total_rows=len(rows),
        )

        logger.info("=" * 60)
        logger.info(f"Catalog import {result.import_id} - supplier {supplier_id}")
        logger.info(f"  Rows: {len(rows)} | Format: {opts.integration_type.value} | "
                    f"Auto-accept: {matching.auto_accept_threshold} | Enrich: {opts.auto_enrich}")
        logger.info("=" * 60)

        index = ProductIndex.from_repository(self.repository, supplier_id)

        for row_index, raw_row in enumerate(rows):
            try:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
            except ImportCancelledError:
                result.cancelled = True
                logger.warning(
                    f"Import {result.import_id} cancelled after {row_index}/{len(rows)} rows"
                )
                break
            result.record(self._process_row(supplier_id, row_index, raw_row, opts, matching, index))

        result.completed_at = utcnow()
        result.duration_ms = int((time.monotonic() - started) * 1000)

        logger.info("=" * 60)
        logger.info(f"Catalog import {result.import_id} complete{' (cancelled)' if result.cancelled else ''}")
        logger.info(f"  Success: {result.success_count} | Failed: {result.failed_count} | "
                    f"Review: {result.review_count} | Enriched: {result.enriched_count}")
        logger.info(f"  Duration: {result.duration_ms} ms")
        logger.info("=" * 60)
        return result

    def import_csv(
        self,
        supplier_id: str,
        content: Union[str, bytes],
        options: Optional[ImportOptions] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> ImportResult:
        """Parse CSV text and import it; rows keep CSV field resolution"""
        options = replace(options or ImportOptions(), integration_type=IntegrationType.CSV)
        return self.import_catalog(supplier_id, parse_csv(content), options, cancel_token)

    # -----------------------------------------------------------------
    # Row pipeline
    # -----------------------------------------------------------------

    def _matching_settings(self, supplier_id: str, opts: ImportOptions) -> MatchingSettings:
        matching = self.config.matching_for(supplier_id)
        if opts.min_auto_match_confidence is not None:
            matching = replace(matching, auto_accept_threshold=opts.min_auto_match_confidence)
        return matching

    def _process_row(
        self,
        supplier_id: str,
        row_index: int,
        raw_row: Mapping[str, Any],
        opts: ImportOptions,
        matching: MatchingSettings,
        index: ProductIndex
    ) -> ImportItemResult:
        item = ImportItemResult(row_index=row_index)
        try:
            feed = normalize(raw_row, opts.integration_type, opts.default_currency)
            item.warnings.extend(feed.warnings)
            if feed.errors:
                if opts.skip_invalid_rows:
                    item.errors.extend(feed.errors)
                    item.state = RowState.FAILED
                    logger.debug(f"Row {row_index} skipped: {'; '.join(feed.errors)}")
                    return item
                item.warnings.extend(feed.errors)
            item.state = RowState.NORMALIZED

            # Placeholder names never take part in fuzzy scoring
            candidate = MatchCandidate(
                name=feed.product.name or '',
                gtin=feed.product.gtin,
                supplier_sku=feed.catalog.supplier_sku,
                brand=feed.product.brand,
                description=feed.product.description,
                supplier_id=supplier_id,
            )
            match = self.matcher.match(candidate, index, matching)
            item.state = RowState.MATCHED if match.matched else RowState.UNMATCHED
            item.match_method = match.method
            item.match_confidence = match.confidence
            item.needs_review = match.needs_review

            self._persist_row(supplier_id, item, feed, match, opts, matching, index)
            if item.state == RowState.FAILED:
                return item

            if opts.auto_enrich and not item.enriched and feed.product.gtin:
                self._enrich(item)
            item.state = RowState.DONE

        except Exception as e:
            item.success = False
            item.state = RowState.FAILED
            item.errors.append(f"Processing error: {e}")
            logger.error(f"Failed to process import row {row_index}: {e}", exc_info=True)

        return item

    def _persist_row(
        self,
        supplier_id: str,
        item: ImportItemResult,
        feed: SupplierDataFeed,
        match: MatchResult,
        opts: ImportOptions,
        matching: MatchingSettings,
        index: ProductIndex
    ) -> None:
        """Resolve the product and upsert the supplier item in one unit of work"""
        created: Optional[Product] = None
        with self.repository.unit_of_work() as uow:
            repo = uow.repository
            product_id = match.product_id

            # Blocks while a merge holds the product; a merged-away product falls back to creation
            if product_id and not uow.lock_products([product_id]):
                item.warnings.append(f"Matched product {product_id} no longer exists")
                index.remove(product_id)
                product_id = None
                item.match_method = MatchMethod.MANUAL
                item.match_confidence = None
                item.needs_review = True

            if product_id is None:
                if not opts.create_new_products:
                    item.errors.append("Could not match or create product")
                    item.needs_review = True
                    item.state = RowState.FAILED
                    return
                product_id, created = self._resolve_new_product(repo, item, feed, opts, matching)
            item.product_id = product_id
            item.state = RowState.PRODUCT_RESOLVED

            supplier_item, _ = repo.upsert_supplier_item(SupplierItemUpsert(
                global_supplier_id=supplier_id,
                product_id=product_id,
                supplier_name=feed.display_name(),
                supplier_sku=feed.catalog.supplier_sku,
                supplier_description=feed.catalog.supplier_description,
                unit_price=feed.catalog.unit_price,
                currency=feed.catalog.currency,
                min_order_qty=feed.catalog.min_order_qty,
                stock_level=feed.catalog.stock_level,
                lead_time_days=feed.catalog.lead_time_days,
                integration_type=opts.integration_type,
                match_method=item.match_method or MatchMethod.MANUAL,
                match_confidence=item.match_confidence,
                needs_review=item.needs_review,
                matched_by="system",
            ))

        # Only visible to later rows once committed
        if created is not None:
            index.add(created)
        item.supplier_item_id = supplier_item.id
        item.success = True
        item.state = RowState.CATALOG_UPSERTED

    def _resolve_new_product(
        self,
        repo,
        item: ImportItemResult,
        feed: SupplierDataFeed,
        opts: ImportOptions,
        matching: MatchingSettings
    ):
        """
        Returns (product_id, created_product or None).

        A product that appeared for the GTIN since the snapshot was taken is
        linked instead of duplicated.
        """
        gtin = feed.product.gtin
        if gtin:
            existing = repo.find_product_by_gtin(gtin)
            if existing is not None:
                item.match_method = MatchMethod.GTIN_EXACT
                item.match_confidence = 1.0
                item.needs_review = needs_review(1.0, matching.auto_accept_threshold)
                return existing.id, None

        draft = None
        if gtin and opts.auto_enrich and self.enrichment is not None:
            lookup = self.enrichment.lookup_by_gtin(gtin)
            if lookup.found and lookup.data is not None:
                draft = self.enrichment.draft_from_lookup(lookup, feed.display_name())
                draft.brand = draft.brand or feed.product.brand
                draft.description = draft.description or feed.product.description
                item.enriched = True

        if draft is None:
            draft = ProductDraft(
                name=feed.display_name(),
                gtin=gtin,
                brand=feed.product.brand,
                description=feed.product.description,
                is_gs1_product=feed.product.is_gs1_product,
            )

        product = repo.create_product(draft)
        item.created_product = True
        item.match_method = MatchMethod.MANUAL
        item.match_confidence = (
            self.config.imports.confidence_with_gtin if gtin else self.config.imports.confidence_without_gtin
        )
        logger.debug(f"Created product {product.id} ({product.name}) for row {item.row_index}")
        return product.id, product

    def _enrich(self, item: ImportItemResult) -> None:
        """Best effort; a failure only adds a warning"""
        if self.enrichment is None:
            return
        try:
            product = self.repository.find_product_by_id(item.product_id)
            if product is None or product.gs1_verification_status == Gs1VerificationStatus.VERIFIED:
                return
            outcome = self.enrichment.enrich_product(item.product_id)
            item.enriched = outcome.enriched
            if outcome.error and not outcome.enriched:
                item.warnings.append(f"GS1 enrichment: {outcome.error}")
            if outcome.enriched:
                item.state = RowState.ENRICHED
        except Exception as e:
            item.warnings.append("Failed to enrich with GS1 data")
            logger.warning(f"Enrichment failed for product {item.product_id}: {e}")
