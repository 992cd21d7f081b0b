"""
Servicer Tracker Package

Task tracking for a financial-optimisation service team:
- Supabase access to customers, categories, sub-categories and tasks
- Staleness, priority queue and savings rollups over the task graph
- Daily servicer reports from the task audit trail
- Read-only demo mode when Supabase is not configured
"""

__version__ = "1.0.0"
__author__ = "Servicer Tracker Team"

from .logging_conf import configure_from_settings, configure_logging, ensure_logging_configured

__all__ = [
    "configure_from_settings",
    "configure_logging",
    "ensure_logging_configured",
]
