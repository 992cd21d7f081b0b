"""
Configuration for the servicer task tracker.

This module contains:
- Settings loaded from the environment and an optional .env file
- Supabase table names and schema notes
"""

from .supabase_config import (
    SCHEMA_INFO,
    TABLES,
    Settings,
    get_schema_info,
    get_settings,
    get_supabase_config,
    is_demo_mode,
)

__all__ = [
    "SCHEMA_INFO",
    "TABLES",
    "Settings",
    "get_schema_info",
    "get_settings",
    "get_supabase_config",
    "is_demo_mode",
]
