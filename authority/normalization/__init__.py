"""
Product Authority - Normalization
=================================
Pure, stateless conversion of raw supplier rows into SupplierDataFeed.
"""

from authority.normalization.gtin import (
    clean_gtin,
    calculate_check_digit,
    has_valid_check_digit,
    gtin_variants,
    normalize_to_gtin14,
)
from authority.normalization.names import normalize_product_name, normalize_brand, brands_match
from authority.normalization.fields import FieldMap, SOURCE_FIELD_MAPS, field_map_for
from authority.normalization.feeds import (
    SupplierDataFeed,
    ProductData,
    CatalogData,
    normalize,
    normalize_strict,
)
from authority.normalization.tabular import parse_csv, load_rows_from_file

__all__ = [
    'clean_gtin',
    'calculate_check_digit',
    'has_valid_check_digit',
    'gtin_variants',
    'normalize_to_gtin14',
    'normalize_product_name',
    'normalize_brand',
    'brands_match',
    'FieldMap',
    'SOURCE_FIELD_MAPS',
    'field_map_for',
    'SupplierDataFeed',
    'ProductData',
    'CatalogData',
    'normalize',
    'normalize_strict',
    'parse_csv',
    'load_rows_from_file',
]
