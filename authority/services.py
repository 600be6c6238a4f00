"""
Service wiring
==============
Builds every Product Authority component once, at process start, and
hands them out through a Services container. Nothing in the package keeps
module-level service instances.

Usage:
    config = load_config()
    services = build_services(config)              # backend from AUTHORITY_BACKEND
    services.importer.import_catalog(supplier_id, rows)
    services.close()
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from authority.audit import AuditSink, RepositoryAuditSink
from authority.db_utils import DatabaseManager
from authority.enrichment import EnrichmentQueue, EnrichmentService, GdsnClient, HttpGdsnClient, MockGdsnClient
from authority.imports import CatalogImportService, PracticeCatalogSync
from authority.matching import GtinMatcher
from authority.merge import ProductMergeOperator
from authority.repositories import CatalogRepository, InMemoryCatalogRepository, PostgresCatalogRepository
from authority.settings import AuthorityConfig, EnrichmentSettings, load_config
from authority.triage import TriageService

logger = logging.getLogger(__name__)

BACKEND_ENV = 'AUTHORITY_BACKEND'
BACKENDS = ('postgres', 'memory')


@dataclass
class Services:
    config: AuthorityConfig
    repository: CatalogRepository
    audit_sink: AuditSink
    gdsn_client: GdsnClient
    enrichment: EnrichmentService
    enrichment_queue: EnrichmentQueue
    matcher: GtinMatcher
    importer: CatalogImportService
    practice_sync: PracticeCatalogSync
    triage: TriageService
    merge: ProductMergeOperator
    db_manager: Optional[DatabaseManager] = None

    def close(self) -> None:
        self.enrichment_queue.shutdown(wait_for_tasks=True)
        self.gdsn_client.close()
        if self.db_manager is not None:
            self.db_manager.close()


def build_gdsn_client(settings: EnrichmentSettings) -> GdsnClient:
    if settings.provider == 'mock':
        return MockGdsnClient()
    if settings.provider == 'http':
        return HttpGdsnClient(
            base_url=settings.base_url,
            api_key=settings.api_key,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
        )
    raise ValueError(f"Unknown enrichment provider '{settings.provider}' (expected 'mock' or 'http')")


def build_repository(backend: Optional[str] = None, db_config_path: Optional[str] = None):
    """
    Returns:
        (repository, db_manager or None)
    """
    backend = (backend or os.environ.get(BACKEND_ENV, 'postgres')).lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend '{backend}' (expected one of {', '.join(BACKENDS)})")
    if backend == 'memory':
        return InMemoryCatalogRepository(), None
    db_manager = DatabaseManager(db_config_path)
    return PostgresCatalogRepository(db_manager), db_manager


def build_services(
    config: Optional[AuthorityConfig] = None,
    repository: Optional[CatalogRepository] = None,
    gdsn_client: Optional[GdsnClient] = None,
    audit_sink: Optional[AuditSink] = None,
    backend: Optional[str] = None
) -> Services:
    """
    Wire the component graph.

    Args:
        config: Business config (load_config() when omitted)
        repository: Catalog repository (built from `backend` / AUTHORITY_BACKEND when omitted)
        gdsn_client: Data pool client (from config.enrichment when omitted)
        audit_sink: Audit destination (audit_log table via the repository when omitted)
        backend: 'postgres' or 'memory'; only used when no repository is passed

    Returns:
        Services
    """
    config = config or load_config()
    db_manager = None
    if repository is None:
        repository, db_manager = build_repository(backend)
    gdsn_client = gdsn_client or build_gdsn_client(config.enrichment)
    audit_sink = audit_sink or RepositoryAuditSink(repository)

    enrichment = EnrichmentService(repository, gdsn_client, config.enrichment)
    enrichment_queue = EnrichmentQueue(
        enrichment,
        max_workers=config.enrichment.max_workers,
        max_attempts=config.enrichment.max_retries,
    )
    matcher = GtinMatcher(config.matching)

    logger.info(
        f"Services ready: repository={type(repository).__name__} "
        f"gdsn={gdsn_client.provider_id} auto_accept={config.matching.auto_accept_threshold}"
    )
    return Services(
        config=config,
        repository=repository,
        audit_sink=audit_sink,
        gdsn_client=gdsn_client,
        enrichment=enrichment,
        enrichment_queue=enrichment_queue,
        matcher=matcher,
        importer=CatalogImportService(repository, matcher, enrichment, config),
        practice_sync=PracticeCatalogSync(repository, enrichment_queue, config.imports.default_currency),
        triage=TriageService(repository, audit_sink, enrichment_queue, config),
        merge=ProductMergeOperator(repository, audit_sink),
        db_manager=db_manager,
    )
