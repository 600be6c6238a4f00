"""
Supplier feed normalization
===========================
normalize(raw_row, source_format) turns one free-form supplier record into
a SupplierDataFeed: canonical product fields, catalog (pricing) fields and
a list of errors and warnings.

Rules:
- GTIN: whitespace/hyphens stripped; accepted only as 8/12/13/14 digits,
  otherwise a warning and the row continues without a GTIN
- Price: non-negative, rounded to 2 decimals; invalid -> warning, None
- minOrderQty / stockLevel / leadTimeDays: floored non-negative integers;
  minOrderQty defaults to 1
- Name: the only required field; its absence is an error
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from authority.errors import RowValidationError
from authority.models import IntegrationType
from authority.normalization.fields import field_map_for
from authority.normalization.gtin import clean_gtin

DEFAULT_CURRENCY = "EUR"
DEFAULT_MIN_ORDER_QTY = 1

_NUMERIC_CHARS = re.compile(r'[^0-9.,\-]')
_CURRENCY_CODE = re.compile(r'^[A-Z]{3}$')


@dataclass
class ProductData:
    name: Optional[str]
    gtin: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    is_gs1_product: bool = False


@dataclass
class CatalogData:
    supplier_sku: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_description: Optional[str] = None
    unit_price: Optional[float] = None
    currency: str = DEFAULT_CURRENCY
    min_order_qty: int = DEFAULT_MIN_ORDER_QTY
    stock_level: Optional[int] = None
    lead_time_days: Optional[int] = None


@dataclass
class SupplierDataFeed:
    """One normalized supplier row"""
    integration_type: IntegrationType
    product: ProductData
    catalog: CatalogData
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def display_name(self) -> str:
        """Row name, or a placeholder built from SKU/GTIN for rows without one"""
        if self.product.name:
            return self.product.name
        reference = self.catalog.supplier_sku or self.product.gtin
        return f"Unnamed item {reference}" if reference else "Unnamed item"


# =====================================================================
# VALUE PARSERS
# =====================================================================

def parse_decimal(raw: Any) -> Optional[float]:
    """
    Parse a supplier-formatted number.

    Accepts decimal commas and thousands separators in either convention
    ("1.234,50", "1,234.50", "12,5") and ignores currency symbols.
    Returns None when no number can be read.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return None if isinstance(raw, float) and not math.isfinite(raw) else float(raw)

    text = _NUMERIC_CHARS.sub('', str(raw))
    if not text or text in ('-', '.', ','):
        return None

    if ',' in text and '.' in text:
        # The later separator is the decimal separator
        if text.rfind(',') > text.rfind('.'):
            text = text.replace('.', '').replace(',', '.')
        else:
            text = text.replace(',', '')
    elif ',' in text:
        text = text.replace(',', '.') if text.count(',') == 1 else text.replace(',', '')

    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_price(raw: Any) -> Optional[float]:
    value = parse_decimal(raw)
    if value is None or value < 0:
        return None
    return round(value, 2)


def parse_non_negative_int(raw: Any) -> Optional[int]:
    value = parse_decimal(raw)
    if value is None or value < 0:
        return None
    return int(math.floor(value))


def parse_currency(raw: Any, default_currency: str) -> str:
    if raw is None:
        return default_currency
    code = str(raw).strip().upper()
    return code if _CURRENCY_CODE.match(code) else default_currency


def _text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    text = str(raw).strip()
    return text or None


# =====================================================================
# NORMALIZE
# =====================================================================

def normalize(
    raw_row: Mapping[str, Any],
    source_format,
    default_currency: str = DEFAULT_CURRENCY
) -> SupplierDataFeed:
    """
    Normalize one raw supplier record.

    Args:
        raw_row: Free-form key/value record as received from the source
        source_format: IntegrationType (or its name) the row came from
        default_currency: Currency used when the row has none

    Returns:
        SupplierDataFeed; check .errors before persisting
    """
    field_map = field_map_for(source_format)
    values = field_map.extract(raw_row)
    errors: List[str] = []
    warnings: List[str] = []

    name = _text(values['name'])
    if not name:
        errors.append("Name is required")

    gtin = None
    raw_gtin = values['gtin']
    if raw_gtin is not None:
        gtin = clean_gtin(raw_gtin)
        if gtin is None:
            warnings.append(f"Invalid GTIN format: {raw_gtin}")

    unit_price = None
    if values['price'] is not None:
        unit_price = parse_price(values['price'])
        if unit_price is None:
            warnings.append(f"Invalid price: {values['price']}")

    min_order_qty = DEFAULT_MIN_ORDER_QTY
    if values['min_order_qty'] is not None:
        parsed_qty = parse_non_negative_int(values['min_order_qty'])
        if parsed_qty:
            min_order_qty = parsed_qty
        else:
            warnings.append(f"Invalid minimum order quantity: {values['min_order_qty']}")

    stock_level = None
    if values['stock_level'] is not None:
        stock_level = parse_non_negative_int(values['stock_level'])
        if stock_level is None:
            warnings.append(f"Invalid stock level: {values['stock_level']}")

    lead_time_days = None
    if values['lead_time_days'] is not None:
        lead_time_days = parse_non_negative_int(values['lead_time_days'])
        if lead_time_days is None:
            warnings.append(f"Invalid lead time: {values['lead_time_days']}")

    brand = _text(values['brand'])
    description = _text(values['description'])

    return SupplierDataFeed(
        integration_type=field_map.integration_type,
        product=ProductData(
            name=name,
            gtin=gtin,
            brand=brand,
            description=description,
            is_gs1_product=gtin is not None,
        ),
        catalog=CatalogData(
            supplier_sku=_text(values['sku']),
            supplier_name=name,
            supplier_description=description,
            unit_price=unit_price,
            currency=parse_currency(values['currency'], default_currency),
            min_order_qty=min_order_qty,
            stock_level=stock_level,
            lead_time_days=lead_time_days,
        ),
        errors=errors,
        warnings=warnings,
    )


def normalize_strict(
    raw_row: Mapping[str, Any],
    source_format,
    default_currency: str = DEFAULT_CURRENCY
) -> SupplierDataFeed:
    """Like normalize(), but raises RowValidationError when the row has errors"""
    feed = normalize(raw_row, source_format, default_currency)
    if feed.errors:
        raise RowValidationError(feed.errors, feed.warnings)
    return feed


def feed_summary(feed: SupplierDataFeed) -> Dict[str, Any]:
    """Flat view used in logs and dry-run output"""
    return {
        'name': feed.product.name,
        'gtin': feed.product.gtin,
        'sku': feed.catalog.supplier_sku,
        'price': feed.catalog.unit_price,
        'currency': feed.catalog.currency,
        'errors': list(feed.errors),
        'warnings': list(feed.warnings),
    }
