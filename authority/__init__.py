"""
Product Authority
=================
Product identity resolution and supplier catalog ingestion.

Supplier rows (CSV, API JSON, EDI, OCI, manual entry) are normalized,
resolved to a canonical Product by GTIN or name similarity, attached to
the supplier's catalog and, where the match is weak, routed to a human
triage queue. Duplicate products are consolidated by the merge operator.
"""

__version__ = "1.0.0"
