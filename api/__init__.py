"""
Product Authority API
=====================
FastAPI surface over the catalog ingestion, triage and merge services.
"""

__version__ = "1.0.0"
