"""
Supabase configuration for the servicer task tracker.

Both the endpoint and the anon key come from the environment (or .env). When
either is missing the tracker runs in read-only demo mode on sample data.
"""

from functools import lru_cache
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    # Read .env by default (repo root). You can also export envs directly.
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Staleness thresholds
    STALE_THRESHOLD_DAYS: int = 3
    OVERDUE_THRESHOLD_DAYS: int = 7
    URGENT_THRESHOLD_DAYS: int = 2  # dashboard "urgent" list

    RECENT_UPDATES_LIMIT: int = 10
    UP_NEXT_LIMIT: int = 50

    # Per-entity write coalescing
    WRITE_DEBOUNCE_SECONDS: float = 0.5

    # Servicer name -> id lookups
    SERVICER_CACHE_TTL_SECONDS: int = 300
    SERVICER_CACHE_MAX_ENTRIES: int = 256

    @property
    def demo_mode(self) -> bool:
        return not (self.SUPABASE_URL and self.SUPABASE_ANON_KEY)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process settings (read once)."""
    return Settings()


def is_demo_mode(settings: Optional[Settings] = None) -> bool:
    return (settings or get_settings()).demo_mode


def get_supabase_config(settings: Optional[Settings] = None) -> Dict[str, Optional[str]]:
    """Get Supabase endpoint and key; values are None in demo mode"""
    settings = settings or get_settings()
    return {
        "url": settings.SUPABASE_URL,
        "anon_key": settings.SUPABASE_ANON_KEY,
    }


# Wire names of the relations this system reads and writes
TABLES = {
    "customer": "tbl_customer",
    "category": "categories",
    "sub_category": "sub_categories",
    "task": "tasks",
    "team_member": "tbl_team_member",
    "daily_update": "daily_updates",
}

# Database schema information for reference
SCHEMA_INFO = {
    "tables": {
        "tbl_customer": "Customers keyed by phone, assigned to one servicer",
        "categories": "Financial matter groupings per customer (Insurance, Debt, ...)",
        "sub_categories": "Service engagements with savings and bundle membership",
        "tasks": "Checklist items tracked through the status lifecycle",
        "tbl_team_member": "Servicers (operators)",
        "daily_updates": "Append-only audit trail of task status changes",
    },
    "read_only_columns": {
        "tbl_customer": ["last_message_at"],
    },
}


def get_schema_info() -> Dict[str, Any]:
    """Get database schema information"""
    return SCHEMA_INFO
