"""
Product Authority - GS1/GDSN Enrichment
=======================================
Data pool clients, the enrichment service and its background queue.
"""

from authority.enrichment.client import (
    GdsnClient,
    GdsnError,
    GdsnAuthenticationError,
    GdsnRateLimitError,
    GdsnNetworkError,
    GdsnValidationError,
    GdsnProviderError,
    ManufacturerRecord,
    LookupResult,
)
from authority.enrichment.mock_client import MockGdsnClient
from authority.enrichment.http_client import HttpGdsnClient
from authority.enrichment.service import EnrichmentService, EnrichmentResult
from authority.enrichment.tasks import EnrichmentQueue, EnrichmentTask, TaskStatus

__all__ = [
    'GdsnClient',
    'GdsnError',
    'GdsnAuthenticationError',
    'GdsnRateLimitError',
    'GdsnNetworkError',
    'GdsnValidationError',
    'GdsnProviderError',
    'ManufacturerRecord',
    'LookupResult',
    'MockGdsnClient',
    'HttpGdsnClient',
    'EnrichmentService',
    'EnrichmentResult',
    'EnrichmentQueue',
    'EnrichmentTask',
    'TaskStatus',
]
