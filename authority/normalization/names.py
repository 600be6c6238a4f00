"""
Product and brand name normalization
====================================
Names are compared after folding case and accents, dropping punctuation
and collapsing whitespace, so "Handschoenen, Nitril (M)" and
"handschoenen nitril m" are the same string to the matcher.

Brand names additionally lose legal-form suffixes (GmbH, B.V., Ltd ...)
so that "MedPro GmbH" and "MedPro" count as an exact brand match.
"""

import re
import unicodedata
from typing import Optional

# Legal-form suffixes stripped from brand names (longer first)
COMPANY_SUFFIXES = [
    'LIMITED LIABILITY COMPANY',
    'PUBLIC LIMITED COMPANY',
    'CO KG',
    'GMBH CO KG',
    'CO LTD',
    'LIMITED',
    'LTD',
    'LLC',
    'PLC',
    'INC',
    'CORP',
    'CORPORATION',
    'GMBH',
    'AG',
    'KG',
    'SA',
    'SAS',
    'SRL',
    'SARL',
    'BV',
    'NV',
    'AB',
    'AS',
    'OY',
    'SPA',
]

PUNCTUATION_CHARS = r'[.,\-/\\()&\'\"#@!?:;*+=\[\]{}|<>~`$%^_®™©]'

_SUFFIX_PATTERN = re.compile(
    r'(?:\s+(?:' + '|'.join(re.escape(s) for s in sorted(COMPANY_SUFFIXES, key=len, reverse=True)) + r'))+\s*$'
)


def fold_text(value: str) -> str:
    """Uppercase, strip accents, replace punctuation with spaces, collapse whitespace"""
    text = unicodedata.normalize('NFKD', value)
    text = ''.join(c for c in text if not unicodedata.combining(c))
    text = text.upper()
    text = re.sub(PUNCTUATION_CHARS, ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def normalize_product_name(name: Optional[str]) -> str:
    """
    Normalize a product name for similarity scoring.

    Examples:
        >>> normalize_product_name("Surgical Gloves - Size M")
        'SURGICAL GLOVES SIZE M'
        >>> normalize_product_name("  Pflaster, 6cm x 5m ")
        'PFLASTER 6CM X 5M'
    """
    if not name:
        return ''
    return fold_text(str(name))


def normalize_brand(brand: Optional[str]) -> str:
    """
    Normalize a brand or manufacturer name for exact comparison.

    Examples:
        >>> normalize_brand("MedPro Medical Supplies GmbH")
        'MEDPRO MEDICAL SUPPLIES'
        >>> normalize_brand("PharmaCo B.V.")
        'PHARMACO'
    """
    if not brand:
        return ''
    text = fold_text(str(brand))
    # "B V" after punctuation folding
    text = re.sub(r'\b([A-Z]) ([A-Z])$', r'\1\2', text)
    stripped = _SUFFIX_PATTERN.sub('', ' ' + text).strip()
    return stripped or text


def brands_match(left: Optional[str], right: Optional[str]) -> bool:
    left_norm = normalize_brand(left)
    return bool(left_norm) and left_norm == normalize_brand(right)
