"""
GTIN Matcher
============
Resolves a normalized supplier row to an existing Product.

Precedence (first success wins):
1. Exact GTIN                       -> GTIN_EXACT, 1.0
2. Same GTIN with different zero padding (GTIN-12/13/14 forms)
                                    -> GTIN_EXACT, 0.99
3. Supplier SKU confirmed by a human earlier
                                    -> MANUAL, 1.0
4. Fuzzy name (trigram similarity >= floor)
                                    -> FUZZY_NAME, similarity
5. Nothing                          -> no product, MANUAL, None

needs_review is True iff confidence is None or below the auto-accept
threshold. Fuzzy ties are broken by exact brand match, then the most
recently updated product, then product id.

The matcher does no I/O and keeps no state between calls; everything it
reads comes from the ProductIndex passed in.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from authority.matching.index import ProductIndex
from authority.matching.similarity import jaccard, name_trigrams
from authority.models import MatchMethod, Product
from authority.normalization.gtin import gtin_variants
from authority.normalization.names import brands_match
from authority.settings import MatchingSettings

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 1.0
GTIN_VARIANT_CONFIDENCE = 0.99
SKU_MAPPING_CONFIDENCE = 1.0

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class MatchCandidate:
    """What the matcher knows about a supplier row"""
    name: str
    gtin: Optional[str] = None
    supplier_sku: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    supplier_id: Optional[str] = None


@dataclass
class ScoredProduct:
    product_id: str
    name: str
    score: float
    brand_match: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'score': self.score,
            'brand_match': self.brand_match,
        }


@dataclass
class MatchResult:
    product_id: Optional[str]
    method: MatchMethod
    confidence: Optional[float]
    needs_review: bool
    strategy: str  # 'gtin', 'gtin_variant', 'sku_mapping', 'fuzzy_name', 'none'
    candidates: List[ScoredProduct] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.product_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'method': self.method.value,
            'confidence': self.confidence,
            'needs_review': self.needs_review,
            'strategy': self.strategy,
            'candidates': [c.to_dict() for c in self.candidates],
        }


def needs_review(confidence: Optional[float], threshold: float) -> bool:
    return confidence is None or confidence < threshold


def _updated_ts(product: Product) -> float:
    updated = product.updated_at or _EPOCH
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return updated.timestamp()


class GtinMatcher:
    """Multi-strategy product matcher"""

    def __init__(self, settings: Optional[MatchingSettings] = None):
        self.settings = settings or MatchingSettings()

    def match(
        self,
        candidate: MatchCandidate,
        index: ProductIndex,
        settings: Optional[MatchingSettings] = None
    ) -> MatchResult:
        """
        Resolve a candidate against the product snapshot.

        Args:
            candidate: Normalized row fields
            index: Product snapshot
            settings: Per-call thresholds (e.g. a supplier override)

        Returns:
            MatchResult; product_id is None when nothing matched
        """
        settings = settings or self.settings
        threshold = settings.auto_accept_threshold

        if candidate.gtin:
            product = index.by_gtin(candidate.gtin)
            if product:
                return self._result(product.id, MatchMethod.GTIN_EXACT, EXACT_CONFIDENCE, threshold, 'gtin')

            if settings.match_gtin_variants:
                for variant in gtin_variants(candidate.gtin):
                    product = index.by_gtin(variant)
                    if product:
                        logger.debug(f"GTIN {candidate.gtin} matched product {product.id} via variant {variant}")
                        return self._result(
                            product.id, MatchMethod.GTIN_EXACT, GTIN_VARIANT_CONFIDENCE, threshold, 'gtin_variant'
                        )

        if settings.use_sku_mappings:
            product = index.by_sku(candidate.supplier_id, candidate.supplier_sku)
            if product:
                return self._result(product.id, MatchMethod.MANUAL, SKU_MAPPING_CONFIDENCE, threshold, 'sku_mapping')

        scored = self.score_candidates(candidate, index, settings)
        if scored:
            best = scored[0]
            return self._result(
                best.product_id, MatchMethod.FUZZY_NAME, best.score, threshold, 'fuzzy_name',
                candidates=scored[:settings.max_candidates]
            )

        return MatchResult(
            product_id=None,
            method=MatchMethod.MANUAL,
            confidence=None,
            needs_review=True,
            strategy='none',
        )

    def score_candidates(
        self,
        candidate: MatchCandidate,
        index: ProductIndex,
        settings: Optional[MatchingSettings] = None
    ) -> List[ScoredProduct]:
        """All products at or above the fuzzy floor, best first"""
        settings = settings or self.settings
        query = name_trigrams(candidate.name or '')
        if not query:
            return []

        ranked = []
        for product in index.fuzzy_candidates(query):
            score = round(jaccard(query, index.trigrams_of(product.id)), 4)
            if score < settings.fuzzy_floor:
                continue
            brand_match = brands_match(candidate.brand, product.brand)
            ranked.append((product, ScoredProduct(product.id, product.name, score, brand_match)))

        ranked.sort(key=lambda pair: (
            -pair[1].score,
            not pair[1].brand_match,
            -_updated_ts(pair[0]),
            pair[0].id,
        ))
        return [scored for _, scored in ranked]

    @staticmethod
    def _result(
        product_id: str,
        method: MatchMethod,
        confidence: float,
        threshold: float,
        strategy: str,
        candidates: Optional[List[ScoredProduct]] = None
    ) -> MatchResult:
        return MatchResult(
            product_id=product_id,
            method=method,
            confidence=confidence,
            needs_review=needs_review(confidence, threshold),
            strategy=strategy,
            candidates=candidates or [],
        )
