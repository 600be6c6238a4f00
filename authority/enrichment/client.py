"""
GDSN client interface
=====================
Provider-neutral contract for GS1/GDSN data pool lookups, the record type
providers map into and the error hierarchy they raise.

Providers return None for unknown GTINs and raise GdsnError subclasses for
everything else. Errors flagged `retryable` (network failures, rate limits)
may succeed when attempted again.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from authority.models import utcnow


# =====================================================================
# ERRORS
# =====================================================================

class GdsnError(Exception):
    """Base error for all data pool failures"""

    code = "UNKNOWN_ERROR"
    retryable = False

    def __init__(self, message: str, provider_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id
        self.details = details or {}


class GdsnAuthenticationError(GdsnError):
    code = "AUTHENTICATION_ERROR"


class GdsnRateLimitError(GdsnError):
    code = "RATE_LIMIT_EXCEEDED"
    retryable = True

    def __init__(
        self,
        message: str,
        retry_after_s: Optional[float] = None,
        provider_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, provider_id, details)
        self.retry_after_s = retry_after_s


class GdsnNetworkError(GdsnError):
    code = "NETWORK_ERROR"
    retryable = True


class GdsnValidationError(GdsnError):
    code = "VALIDATION_ERROR"


class GdsnProviderError(GdsnError):
    """Provider answered with a server-side failure"""
    code = "PROVIDER_ERROR"
    retryable = True


# =====================================================================
# RECORDS
# =====================================================================

@dataclass
class ManufacturerRecord:
    """Manufacturer-verified attributes of one trade item"""
    gtin: str
    trade_item_description: str
    brand_name: Optional[str] = None
    short_description: Optional[str] = None
    manufacturer_name: Optional[str] = None
    manufacturer_gln: Optional[str] = None
    gpc_category_code: Optional[str] = None
    target_market: List[str] = field(default_factory=list)
    net_content_value: Optional[float] = None
    net_content_uom: Optional[str] = None
    is_regulated_device: bool = False
    device_risk_class: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gtin': self.gtin,
            'trade_item_description': self.trade_item_description,
            'brand_name': self.brand_name,
            'short_description': self.short_description,
            'manufacturer_name': self.manufacturer_name,
            'manufacturer_gln': self.manufacturer_gln,
            'gpc_category_code': self.gpc_category_code,
            'target_market': list(self.target_market),
            'net_content_value': self.net_content_value,
            'net_content_uom': self.net_content_uom,
            'is_regulated_device': self.is_regulated_device,
            'device_risk_class': self.device_risk_class,
        }


@dataclass
class LookupResult:
    found: bool
    gtin: str
    data: Optional[ManufacturerRecord] = None
    source: str = "network"
    timestamp: datetime = field(default_factory=utcnow)
    error: Optional[str] = None


# =====================================================================
# CLIENT CONTRACT
# =====================================================================

class GdsnClient(ABC):
    """A GDSN data pool provider"""

    provider_id: str = "unknown"

    @abstractmethod
    def fetch_product_by_gtin(self, gtin: str) -> Optional[ManufacturerRecord]:
        """Record for one GTIN, or None when the data pool does not know it"""

    def fetch_products_by_gtins(self, gtins: Iterable[str]) -> Dict[str, Optional[ManufacturerRecord]]:
        return {gtin: self.fetch_product_by_gtin(gtin) for gtin in gtins}

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    def close(self) -> None:
        pass


def _first_text(value: Any) -> Optional[str]:
    """GS1 JSON carries language strings as [{'languageCode': 'en', 'value': ...}]"""
    if value is None:
        return None
    if isinstance(value, list):
        english = [v for v in value if isinstance(v, dict) and v.get('languageCode') == 'en']
        for candidate in english + value:
            text = _first_text(candidate)
            if text:
                return text
        return None
    if isinstance(value, dict):
        return _first_text(value.get('value'))
    text = str(value).strip()
    return text or None


def record_from_trade_item(payload: Dict[str, Any], provider_id: str) -> ManufacturerRecord:
    """
    Map a GS1-style JSON trade item onto ManufacturerRecord.

    Accepts either a bare trade item or one wrapped in 'tradeItem',
    'product' or 'item'.
    """
    item = payload.get('tradeItem') or payload.get('product') or payload.get('item') or payload
    gtin = _first_text(item.get('gtin'))
    description_info = item.get('tradeItemDescriptionInformation') or {}
    provider = item.get('informationProviderOfTradeItem') or {}
    classification = item.get('gdsnTradeItemClassification') or {}
    net_content = description_info.get('netContent') or item.get('netContent') or {}
    healthcare = item.get('healthcareItemInformation') or {}

    description = _first_text(
        description_info.get('tradeItemDescription') or item.get('tradeItemDescription') or item.get('description')
    )
    if not gtin or not description:
        raise GdsnValidationError(
            "Trade item is missing gtin or description", provider_id, {"keys": sorted(item.keys())}
        )

    markets = item.get('targetMarket') or []
    if isinstance(markets, (str, dict)):
        markets = [markets]
    target_market = [
        m.get('targetMarketCountryCode') if isinstance(m, dict) else str(m)
        for m in markets
    ]

    net_value = net_content.get('value') if isinstance(net_content, dict) else None
    return ManufacturerRecord(
        gtin=gtin,
        trade_item_description=description,
        brand_name=_first_text(description_info.get('brandName') or item.get('brandName')),
        short_description=_first_text(
            description_info.get('descriptionShort') or item.get('descriptionShort') or item.get('shortDescription')
        ),
        manufacturer_name=_first_text(provider.get('partyName') or item.get('manufacturerName')),
        manufacturer_gln=_first_text(provider.get('gln') or item.get('manufacturerGln')),
        gpc_category_code=_first_text(classification.get('gpcCategoryCode') or item.get('gpcCategoryCode')),
        target_market=[m for m in target_market if m],
        net_content_value=float(net_value) if net_value is not None else None,
        net_content_uom=net_content.get('unitCode') if isinstance(net_content, dict) else None,
        is_regulated_device=bool(healthcare.get('isRegulatedDevice', False)),
        device_risk_class=_first_text(healthcare.get('deviceRiskClass')),
        raw=payload,
    )
