"""
GTIN helpers
============
Supplier feeds carry GTIN-8, GTIN-12 (UPC), GTIN-13 (EAN) and GTIN-14
identifiers, frequently with spaces or hyphens and with inconsistent zero
padding.

Acceptance is a format check only: digits, length 8/12/13/14. The check
digit is reported by has_valid_check_digit() but never used to reject a
GTIN, since supplier data with a bad check digit still identifies the same
article on the supplier's side.
"""

import re
from typing import List, Optional

VALID_GTIN_LENGTHS = (8, 12, 13, 14)

GTIN_TYPES = {
    8: 'GTIN-8',
    12: 'GTIN-12',
    13: 'GTIN-13',
    14: 'GTIN-14',
}

_SEPARATORS = re.compile(r'[\s\-]')


def clean_gtin(raw) -> Optional[str]:
    """
    Strip whitespace and hyphens and validate the format.

    Returns:
        The digit string, or None when the value is absent or not a GTIN
    """
    if raw is None:
        return None
    if isinstance(raw, float) and raw.is_integer():
        # Spreadsheet cells come through as floats
        raw = str(int(raw))
    cleaned = _SEPARATORS.sub('', str(raw))
    if not cleaned:
        return None
    return cleaned if is_valid_gtin_format(cleaned) else None


def is_valid_gtin_format(value: str) -> bool:
    return value.isdigit() and value.isascii() and len(value) in VALID_GTIN_LENGTHS


def calculate_check_digit(gtin_without_check_digit: str) -> int:
    """Modulo-10 check digit, weights 3,1,3,... starting from the rightmost digit"""
    total = 0
    for position, digit in enumerate(reversed(gtin_without_check_digit)):
        total += int(digit) * (3 if position % 2 == 0 else 1)
    return (10 - total % 10) % 10


def has_valid_check_digit(gtin: str) -> bool:
    if not is_valid_gtin_format(gtin):
        return False
    return calculate_check_digit(gtin[:-1]) == int(gtin[-1])


def gtin_type(gtin: str) -> Optional[str]:
    return GTIN_TYPES.get(len(gtin)) if is_valid_gtin_format(gtin) else None


def normalize_to_gtin14(gtin: str) -> Optional[str]:
    cleaned = clean_gtin(gtin)
    return cleaned.zfill(14) if cleaned else None


def gtin_variants(gtin: str) -> List[str]:
    """
    Other spellings of the same GTIN that differ only in leading zeros.

    '04006501003638' -> ['4006501003638'] plus the zero-padded forms that
    have a valid GTIN length. The input itself is never included.
    """
    cleaned = clean_gtin(gtin)
    if not cleaned:
        return []

    significant = cleaned.lstrip('0')
    variants = []
    for length in VALID_GTIN_LENGTHS:
        if len(significant) <= length:
            candidate = significant.zfill(length)
            if candidate != cleaned and candidate not in variants:
                variants.append(candidate)
    return variants


def format_gtin_for_display(gtin: str) -> str:
    """Group digits the way they are printed under the barcode"""
    cleaned = clean_gtin(gtin)
    if not cleaned:
        return gtin
    if len(cleaned) == 13:
        return f"{cleaned[0]} {cleaned[1:7]} {cleaned[7:12]} {cleaned[12]}"
    if len(cleaned) == 14:
        return f"{cleaned[0]} {cleaned[1:3]} {cleaned[3:8]} {cleaned[8:13]} {cleaned[13]}"
    if len(cleaned) == 12:
        return f"{cleaned[0]} {cleaned[1:6]} {cleaned[6:11]} {cleaned[11]}"
    return f"{cleaned[:4]} {cleaned[4:]}"
