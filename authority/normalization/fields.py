"""
Source field maps
=================
Each integration type carries its own table of source keys per canonical
field. Keys are compared after folding (lowercase, '-' and spaces to '_',
OCI array suffixes like '[1]' removed), and the first synonym with a
non-empty value wins.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from authority.models import IntegrationType

CANONICAL_FIELDS = (
    'gtin',
    'sku',
    'name',
    'brand',
    'description',
    'price',
    'currency',
    'min_order_qty',
    'stock_level',
    'lead_time_days',
)

_OCI_INDEX = re.compile(r'\[\d+\]$')
_NON_KEY_CHARS = re.compile(r'[^a-z0-9_]')


def fold_key(key: Any) -> str:
    """'Unit Price' -> 'unit_price', 'NEW_ITEM-EAN[1]' -> 'new_item_ean'"""
    text = _OCI_INDEX.sub('', str(key).strip()).lower()
    text = text.replace('-', '_').replace(' ', '_')
    return _NON_KEY_CHARS.sub('_', text)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:  # NaN from spreadsheets
        return True
    return isinstance(value, str) and not value.strip()


@dataclass(frozen=True)
class FieldMap:
    """Ordered source-key synonyms for every canonical field of one source format"""
    integration_type: IntegrationType
    gtin: Tuple[str, ...]
    sku: Tuple[str, ...]
    name: Tuple[str, ...]
    brand: Tuple[str, ...]
    description: Tuple[str, ...]
    price: Tuple[str, ...]
    currency: Tuple[str, ...]
    min_order_qty: Tuple[str, ...]
    stock_level: Tuple[str, ...]
    lead_time_days: Tuple[str, ...]

    def synonyms(self, field_name: str) -> Tuple[str, ...]:
        if field_name not in CANONICAL_FIELDS:
            raise KeyError(f"Unknown canonical field: {field_name}")
        return getattr(self, field_name)

    def resolve(self, row: Mapping[str, Any], field_name: str) -> Optional[Any]:
        """First non-empty value among the field's synonyms, or None"""
        folded = {fold_key(k): v for k, v in row.items()}
        for synonym in self.synonyms(field_name):
            value = folded.get(fold_key(synonym))
            if not _is_blank(value):
                return value.strip() if isinstance(value, str) else value
        return None

    def extract(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """All canonical fields of a raw row"""
        return {name: self.resolve(row, name) for name in CANONICAL_FIELDS}


# =====================================================================
# FIELD MAPS PER SOURCE FORMAT
# =====================================================================

CSV_FIELDS = FieldMap(
    integration_type=IntegrationType.CSV,
    gtin=('gtin', 'ean', 'barcode', 'upc'),
    sku=('sku', 'supplier_sku', 'suppliersku', 'article', 'article_number', 'artikelnummer'),
    name=('name', 'product_name', 'productname', 'description', 'bezeichnung'),
    brand=('brand', 'merk', 'manufacturer', 'hersteller'),
    description=('description', 'details', 'beschreibung', 'long_description'),
    price=('price', 'unit_price', 'unitprice', 'prijs', 'preis'),
    currency=('currency', 'valuta', 'wahrung', 'waehrung'),
    min_order_qty=('min_qty', 'min_order_qty', 'minorderqty', 'minimum', 'min_order', 'moq'),
    stock_level=('stock', 'stock_level', 'voorraad', 'bestand', 'inventory'),
    lead_time_days=('lead_time', 'leadtime', 'lead_time_days', 'delivery_days', 'lieferzeit'),
)

API_FIELDS = FieldMap(
    integration_type=IntegrationType.API,
    gtin=('gtin', 'ean', 'barcode'),
    sku=('sku', 'supplierSku', 'articleNumber'),
    name=('name', 'productName', 'title'),
    brand=('brand', 'manufacturer'),
    description=('description', 'longDescription'),
    price=('price', 'unitPrice'),
    currency=('currency',),
    min_order_qty=('minOrderQty', 'moq'),
    stock_level=('stockLevel', 'stock'),
    lead_time_days=('leadTimeDays', 'leadTime'),
)

EDI_FIELDS = FieldMap(
    integration_type=IntegrationType.EDI,
    gtin=('ean', 'gtin'),
    sku=('lineItemId', 'supplierArticleNumber'),
    name=('description', 'itemDescription'),
    brand=('manufacturer', 'brand'),
    description=('longDescription',),
    price=('unitPrice', 'netPrice'),
    currency=('currency',),
    min_order_qty=('minQty',),
    stock_level=('quantityAvailable',),
    lead_time_days=('leadTimeDays',),
)

OCI_FIELDS = FieldMap(
    integration_type=IntegrationType.OCI,
    gtin=('NEW_ITEM-EAN',),
    sku=('NEW_ITEM-VENDORMAT',),
    name=('NEW_ITEM-DESCRIPTION',),
    brand=('NEW_ITEM-MANUFACTNAME', 'NEW_ITEM-VENDOR'),
    description=('NEW_ITEM-LONGTEXT',),
    price=('NEW_ITEM-PRICE',),
    currency=('NEW_ITEM-CURRENCY',),
    min_order_qty=('NEW_ITEM-MINQTY',),
    stock_level=(),
    lead_time_days=('NEW_ITEM-LEADTIME',),
)

MANUAL_FIELDS = FieldMap(
    integration_type=IntegrationType.MANUAL,
    gtin=('gtin',),
    sku=('supplierSku', 'sku'),
    name=('name',),
    brand=('brand',),
    description=('description',),
    price=('unitPrice', 'price'),
    currency=('currency',),
    min_order_qty=('minOrderQty',),
    stock_level=('stockLevel',),
    lead_time_days=('leadTimeDays',),
)

SOURCE_FIELD_MAPS: Dict[IntegrationType, FieldMap] = {
    IntegrationType.API: API_FIELDS,
    IntegrationType.CSV: CSV_FIELDS,
    IntegrationType.EDI: EDI_FIELDS,
    IntegrationType.OCI: OCI_FIELDS,
    IntegrationType.MANUAL: MANUAL_FIELDS,
}

_missing = set(IntegrationType) - set(SOURCE_FIELD_MAPS)
if _missing:
    raise RuntimeError(f"No field map for: {', '.join(sorted(t.value for t in _missing))}")


def field_map_for(source_format) -> FieldMap:
    """Look up the field map for an IntegrationType or its string value"""
    try:
        integration_type = IntegrationType(str(getattr(source_format, 'value', source_format)).upper())
    except ValueError:
        raise ValueError(f"Unknown source format: {source_format!r}") from None
    return SOURCE_FIELD_MAPS[integration_type]
