"""
Fixture-backed GDSN client for development and tests.
"""

import copy
import logging
from typing import Dict, Iterable, Optional

from authority.enrichment.client import GdsnClient, GdsnError, ManufacturerRecord

logger = logging.getLogger(__name__)

SAMPLE_RECORDS: Dict[str, ManufacturerRecord] = {
    '4006501003638': ManufacturerRecord(
        gtin='4006501003638',
        trade_item_description='Sterile Surgical Gloves (Size M)',
        brand_name='MedPro',
        short_description='Latex-free sterile surgical gloves',
        manufacturer_name='MedPro Medical Supplies GmbH',
        manufacturer_gln='4006501000001',
        gpc_category_code='10000449',
        target_market=['NL', 'DE', 'BE'],
        net_content_value=50,
        net_content_uom='pair',
        is_regulated_device=True,
        device_risk_class='IIa',
        raw={'_mockData': True},
    ),
    '8714632012345': ManufacturerRecord(
        gtin='8714632012345',
        trade_item_description='Ibuprofen 400mg Tablets',
        brand_name='PharmaCo',
        short_description='Pain relief tablets',
        manufacturer_name='PharmaCo B.V.',
        manufacturer_gln='8714632000001',
        gpc_category_code='51000000',
        target_market=['NL'],
        net_content_value=20,
        net_content_uom='tablet',
        raw={'_mockData': True},
    ),
}


class MockGdsnClient(GdsnClient):
    """
    Answers from an in-process fixture table.

    Lookups try the GTIN as given and its 13-digit form, so a 14-digit
    '04006501003638' finds the '4006501003638' fixture.

    `failures` maps a GTIN to an exception raised on lookup, for exercising
    error paths.
    """

    provider_id = "mock"

    def __init__(
        self,
        records: Optional[Dict[str, ManufacturerRecord]] = None,
        failures: Optional[Dict[str, GdsnError]] = None
    ):
        self.records = copy.deepcopy(SAMPLE_RECORDS if records is None else records)
        self.failures = dict(failures or {})
        self.lookups = []

    def add_record(self, record: ManufacturerRecord) -> None:
        self.records[record.gtin] = record

    def fetch_product_by_gtin(self, gtin: str) -> Optional[ManufacturerRecord]:
        self.lookups.append(gtin)
        if gtin in self.failures:
            raise self.failures[gtin]
        for key in (gtin, gtin.lstrip('0').zfill(13)):
            record = self.records.get(key)
            if record:
                logger.debug(f"Mock GDSN hit for {gtin}")
                return copy.deepcopy(record)
        logger.debug(f"Mock GDSN miss for {gtin}")
        return None

    def fetch_products_by_gtins(self, gtins: Iterable[str]) -> Dict[str, Optional[ManufacturerRecord]]:
        return {gtin: self.fetch_product_by_gtin(gtin) for gtin in gtins}

    def is_connected(self) -> bool:
        return True
