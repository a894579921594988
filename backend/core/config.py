"""
Centralized configuration for the Tally backend.

All environment variables and settings should be defined here
to avoid duplication across modules.
"""
import os
from functools import lru_cache


class Settings:
    """Application settings loaded from environment variables."""

    # CORS - comma-separated list of allowed origins ("*" = any device on the network)
    ALLOWED_ORIGINS: list = os.environ.get("ALLOWED_ORIGINS", "*").split(",")

    # Database
    DB_PATH: str = os.environ.get("TALLY_DB_PATH", "data/tally.db")

    # Session lifecycle
    SESSION_TTL_SECONDS: int = int(os.environ.get("TALLY_SESSION_TTL_SECONDS", 24 * 60 * 60))
    SESSION_CODE_ATTEMPTS: int = int(os.environ.get("TALLY_SESSION_CODE_ATTEMPTS", 10))
    PURGE_INTERVAL_MINUTES: int = int(os.environ.get("TALLY_PURGE_INTERVAL_MINUTES", 15))

    # "auto" (quantity column -> multiset), "set" or "multiset"
    SCAN_MODE: str = os.environ.get("TALLY_SCAN_MODE", "auto")

    # Synchronizer: "relay" (WebSocket hub) or "store" (REST + polling)
    SYNC_BACKEND: str = os.environ.get("TALLY_SYNC_BACKEND", "store")
    POLL_INTERVAL_SECONDS: float = float(os.environ.get("TALLY_POLL_INTERVAL_SECONDS", 3))

    # Relay hub
    RELAY_GRACE_SECONDS: float = float(os.environ.get("TALLY_RELAY_GRACE_SECONDS", 300))
    # Where the hub keeps sessions: "memory" (hub lifetime) or "sqlite"
    RELAY_STORE: str = os.environ.get("TALLY_RELAY_STORE", "memory")

    VERSION: str = "1.0.0"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()
