"""
Product Authority - Matching
============================
Pure product matching over an in-memory ProductIndex snapshot.
"""

from authority.matching.similarity import similarity, trigrams
from authority.matching.index import ProductIndex
from authority.matching.gtin_matcher import (
    GtinMatcher,
    MatchCandidate,
    MatchResult,
    ScoredProduct,
    needs_review,
)

__all__ = [
    'similarity',
    'trigrams',
    'ProductIndex',
    'GtinMatcher',
    'MatchCandidate',
    'MatchResult',
    'ScoredProduct',
    'needs_review',
]
