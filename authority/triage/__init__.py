"""
Product Authority - Triage
==========================
Review queue and review operations for uncertain supplier item matches.
"""

from authority.triage.service import TriageActionResult, TriageService

__all__ = [
    'TriageActionResult',
    'TriageService',
]
