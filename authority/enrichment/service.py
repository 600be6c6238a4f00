"""
GS1 enrichment service
======================
Looks products up in the GDSN data pool and writes manufacturer-verified
attributes back onto the catalog.

Verification status transitions driven here:

    UNVERIFIED/EXPIRED/FAILED -> PENDING -> VERIFIED   (record found)
                                         -> UNVERIFIED (not in data pool)
                                         -> FAILED     (lookup raised)
    VERIFIED (older than refresh_after_days) -> EXPIRED
"""

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from authority.enrichment.client import GdsnClient, GdsnError, LookupResult, ManufacturerRecord
from authority.errors import ProductNotFoundError
from authority.models import Gs1VerificationStatus, Product, ProductDraft, utcnow
from authority.settings import EnrichmentSettings

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentResult:
    product_id: str
    gtin: Optional[str]
    status: Gs1VerificationStatus
    enriched: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'gtin': self.gtin,
            'status': self.status.value,
            'enriched': self.enriched,
            'error': self.error,
        }


def gs1_payload(record: ManufacturerRecord, provider_id: str) -> Dict[str, Any]:
    """What gets stored in products.gs1_data"""
    payload = record.to_dict()
    payload['provider_id'] = provider_id
    payload['raw'] = record.raw
    return payload


def product_fields_from_record(record: ManufacturerRecord, provider_id: str) -> Dict[str, Any]:
    return {
        'name': record.trade_item_description or record.gtin,
        'brand': record.brand_name,
        'description': record.short_description,
        'manufacturer_name': record.manufacturer_name,
        'is_gs1_product': True,
        'gs1_verification_status': Gs1VerificationStatus.VERIFIED,
        'gs1_verified_at': utcnow(),
        'gs1_data': gs1_payload(record, provider_id),
    }


class EnrichmentService:
    """GDSN lookups plus product write-back"""

    def __init__(
        self,
        repository,
        client: GdsnClient,
        settings: Optional[EnrichmentSettings] = None,
        cache_ttl_seconds: float = 3600.0
    ):
        self.repository = repository
        self.client = client
        self.settings = settings or EnrichmentSettings()
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: Dict[str, LookupResult] = {}
        self._cache_lock = threading.Lock()

    # -----------------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------------

    def lookup_by_gtin(self, gtin: str) -> LookupResult:
        """
        Look a GTIN up without touching the catalog.

        Provider errors are logged and returned as found=False with `error`
        set; they never raise.
        """
        cached = self._cached(gtin)
        if cached:
            return cached

        try:
            record = self.client.fetch_product_by_gtin(gtin)
        except GdsnError as e:
            logger.warning(f"GDSN lookup failed for {gtin} [{e.code}]: {e.message}")
            return LookupResult(found=False, gtin=gtin, error=e.message)

        result = LookupResult(found=record is not None, gtin=gtin, data=record, source="network")
        if record is not None:
            with self._cache_lock:
                self._cache[gtin] = result
        return result

    def draft_from_lookup(self, result: LookupResult, fallback_name: str) -> ProductDraft:
        """ProductDraft for a new product built from a successful lookup"""
        record = result.data
        return ProductDraft(
            name=record.trade_item_description or fallback_name,
            gtin=result.gtin,
            brand=record.brand_name,
            description=record.short_description,
            manufacturer_name=record.manufacturer_name,
            is_gs1_product=True,
            gs1_verification_status=Gs1VerificationStatus.VERIFIED,
            gs1_verified_at=utcnow(),
            gs1_data=gs1_payload(record, self.client.provider_id),
        )

    def _cached(self, gtin: str) -> Optional[LookupResult]:
        with self._cache_lock:
            cached = self._cache.get(gtin)
            if cached is None:
                return None
            if (utcnow() - cached.timestamp).total_seconds() > self.cache_ttl_seconds:
                del self._cache[gtin]
                return None
        return LookupResult(found=True, gtin=gtin, data=cached.data, source="cache", timestamp=cached.timestamp)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # -----------------------------------------------------------------
    # Product enrichment
    # -----------------------------------------------------------------

    def enrich_product(self, product_id: str, raise_on_error: bool = False) -> EnrichmentResult:
        """
        Enrich one product from the data pool.

        Args:
            product_id: Product to enrich
            raise_on_error: Re-raise GdsnError after recording FAILED, so a
                task queue can decide whether to retry

        Returns:
            EnrichmentResult
        """
        product = self.repository.find_product_by_id(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        if not product.gtin:
            return EnrichmentResult(
                product_id=product_id,
                gtin=None,
                status=product.gs1_verification_status,
                error="Product has no GTIN",
            )

        self._set_status(product, Gs1VerificationStatus.PENDING)

        try:
            record = self.client.fetch_product_by_gtin(product.gtin)
        except GdsnError as e:
            logger.warning(f"Enrichment failed for product {product_id} ({product.gtin}) [{e.code}]: {e.message}")
            self._set_status(product, Gs1VerificationStatus.FAILED)
            if raise_on_error:
                raise
            return EnrichmentResult(
                product_id=product_id,
                gtin=product.gtin,
                status=Gs1VerificationStatus.FAILED,
                error=e.message,
            )

        if record is None:
            logger.info(f"GTIN {product.gtin} not found in GDSN, product {product_id} stays unverified")
            self._set_status(product, Gs1VerificationStatus.UNVERIFIED)
            return EnrichmentResult(
                product_id=product_id,
                gtin=product.gtin,
                status=Gs1VerificationStatus.UNVERIFIED,
                error="GTIN not found in GDSN",
            )

        self.repository.update_product(product_id, product_fields_from_record(record, self.client.provider_id))
        logger.info(f"Product {product_id} verified against GDSN ({product.gtin})")
        return EnrichmentResult(
            product_id=product_id,
            gtin=product.gtin,
            status=Gs1VerificationStatus.VERIFIED,
            enriched=True,
        )

    def refresh_stale_verifications(self, limit: int = 100, max_age_days: Optional[int] = None) -> int:
        """
        Expire old verifications, then re-enrich EXPIRED and FAILED products.

        Returns:
            Number of products verified again
        """
        max_age_days = self.settings.refresh_after_days if max_age_days is None else max_age_days
        cutoff = utcnow() - timedelta(days=max_age_days)
        expired = self.repository.expire_verifications(cutoff)
        if expired:
            logger.info(f"Marked {expired} verifications older than {max_age_days} days as EXPIRED")

        candidates = self.repository.list_products_for_refresh(
            [Gs1VerificationStatus.EXPIRED, Gs1VerificationStatus.FAILED], limit
        )
        refreshed = 0
        for product in candidates:
            result = self.enrich_product(product.id)
            if result.enriched:
                refreshed += 1

        logger.info(f"Refreshed {refreshed}/{len(candidates)} stale GS1 verifications")
        return refreshed

    def _set_status(self, product: Product, status: Gs1VerificationStatus) -> None:
        self.repository.update_product(product.id, {'gs1_verification_status': status})
