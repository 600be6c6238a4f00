"""
Business configuration for the Product Authority core
=====================================================
Loaded from config/authority.yml (path overridable through
AUTHORITY_CONFIG_PATH). Every key is optional; a missing file yields the
defaults below.

Example:
    matching:
      fuzzy_floor: 0.5
      auto_accept_threshold: 0.9
    suppliers:
      "supplier-123":
        auto_accept_threshold: 0.95
"""

import os
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from authority.models import IntegrationType

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/authority.yml'

# Matching thresholds
DEFAULT_FUZZY_FLOOR = 0.5
DEFAULT_AUTO_ACCEPT_THRESHOLD = 0.90


@dataclass(frozen=True)
class MatchingSettings:
    fuzzy_floor: float = DEFAULT_FUZZY_FLOOR
    auto_accept_threshold: float = DEFAULT_AUTO_ACCEPT_THRESHOLD
    match_gtin_variants: bool = True
    use_sku_mappings: bool = True
    max_candidates: int = 5

    def __post_init__(self):
        for name in ('fuzzy_floor', 'auto_accept_threshold'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"matching.{name} must be between 0.0 and 1.0, got {value}")


@dataclass(frozen=True)
class ImportSettings:
    integration_type: IntegrationType = IntegrationType.CSV
    auto_enrich: bool = True
    create_new_products: bool = True
    default_currency: str = "EUR"
    skip_invalid_rows: bool = True
    confidence_with_gtin: float = 0.8
    confidence_without_gtin: float = 0.5


@dataclass(frozen=True)
class TriageSettings:
    low_confidence_threshold: float = 0.9
    page_size: int = 50


@dataclass(frozen=True)
class EnrichmentSettings:
    provider: str = "mock"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = 30.0
    max_retries: int = 3
    max_workers: int = 4
    refresh_after_days: int = 365


@dataclass(frozen=True)
class AuthorityConfig:
    matching: MatchingSettings = field(default_factory=MatchingSettings)
    imports: ImportSettings = field(default_factory=ImportSettings)
    triage: TriageSettings = field(default_factory=TriageSettings)
    enrichment: EnrichmentSettings = field(default_factory=EnrichmentSettings)
    supplier_overrides: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def matching_for(self, supplier_id: Optional[str]) -> MatchingSettings:
        """Global matching settings with any per-supplier threshold overrides applied"""
        overrides = self.supplier_overrides.get(supplier_id or '', {})
        if not overrides:
            return self.matching
        return replace(self.matching, **overrides)


def _section(cls, raw: Optional[Dict[str, Any]], section_name: str):
    """Build a settings dataclass from a YAML mapping, ignoring unknown keys"""
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{section_name}': {', '.join(sorted(unknown))}")
    values = {k: v for k, v in raw.items() if k in known}
    if cls is ImportSettings and 'integration_type' in values:
        values['integration_type'] = IntegrationType(str(values['integration_type']).upper())
    return cls(**values)


def _supplier_overrides(raw: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    allowed = {'fuzzy_floor', 'auto_accept_threshold'}
    overrides = {}
    for supplier_id, values in (raw or {}).items():
        values = values or {}
        bad = set(values) - allowed
        if bad:
            raise ValueError(f"Unsupported supplier override keys for {supplier_id}: {', '.join(sorted(bad))}")
        overrides[str(supplier_id)] = {k: float(v) for k, v in values.items()}
    return overrides


def load_config(config_path: Optional[str] = None) -> AuthorityConfig:
    """
    Load AuthorityConfig from YAML.

    Args:
        config_path: Explicit path; defaults to AUTHORITY_CONFIG_PATH or config/authority.yml

    Returns:
        AuthorityConfig (defaults when the file does not exist)
    """
    path = Path(config_path or os.environ.get('AUTHORITY_CONFIG_PATH', DEFAULT_CONFIG_PATH))
    if not path.exists():
        logger.info(f"No authority config at {path}, using defaults")
        return AuthorityConfig()

    with open(path, 'r', encoding='utf-8') as f:
        raw = yaml.safe_load(f) or {}

    enrichment = dict(raw.get('enrichment') or {})
    # Secrets usually come from the environment rather than the YAML file
    if os.environ.get('GDSN_API_KEY'):
        enrichment['api_key'] = os.environ['GDSN_API_KEY']

    config = AuthorityConfig(
        matching=_section(MatchingSettings, raw.get('matching'), 'matching'),
        imports=_section(ImportSettings, raw.get('import'), 'import'),
        triage=_section(TriageSettings, raw.get('triage'), 'triage'),
        enrichment=_section(EnrichmentSettings, enrichment, 'enrichment'),
        supplier_overrides=_supplier_overrides(raw.get('suppliers')),
    )
    logger.info(f"Authority config loaded from {path}")
    return config
