"""
Trigram similarity
==================
Same semantics as PostgreSQL's pg_trgm similarity(): each word is padded
with two leading blanks and one trailing blank, its 3-character windows
form a set, and similarity is |A & B| / |A | B| over the two sets.

Computing it in process keeps the matcher pure; the repository only has to
provide a product snapshot.
"""

import re
from typing import FrozenSet

from authority.normalization.names import normalize_product_name

_WORD_SPLIT = re.compile(r'[^0-9a-z]+')


def trigrams(text: str) -> FrozenSet[str]:
    """Trigram set of a string, pg_trgm style"""
    grams = set()
    for word in _WORD_SPLIT.split(text.lower()):
        if not word:
            continue
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def name_trigrams(name: str) -> FrozenSet[str]:
    """Trigrams of a product name after normalization"""
    return trigrams(normalize_product_name(name))


def jaccard(left: FrozenSet[str], right: FrozenSet[str]) -> float:
    if not left or not right:
        return 0.0
    shared = len(left & right)
    return shared / (len(left) + len(right) - shared)


def similarity(left: str, right: str) -> float:
    """
    Similarity of two product names, 0.0 to 1.0.

    Examples:
        >>> similarity("Surgical Gloves Size M", "surgical gloves size m")
        1.0
        >>> similarity("Surgical Gloves Size M", "Bandages") < 0.1
        True
    """
    return jaccard(name_trigrams(left), name_trigrams(right))
