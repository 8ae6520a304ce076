"""
Application configuration using pydantic-settings.

Loads configuration from environment variables with sensible defaults.
"""
from functools import lru_cache
from typing import Optional, Set

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database (SQLite for local dev, PostgreSQL for production)
    database_url: str = "sqlite:///./invoice_canon.db"

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Application
    debug: bool = False
    log_level: str = "INFO"

    # Canonical backfill
    backfill_default_limit: int = 200
    backfill_max_limit: int = 2000
    backfill_cooldown_seconds: int = 600

    # Canonical analytics rollout
    use_canonical_lines: bool = False
    canonical_lines_org_allowlist: str = ""

    @property
    def canonical_org_allowlist(self) -> Set[str]:
        """Organisation ids parsed from the CSV allow-list."""
        return parse_csv_set(self.canonical_lines_org_allowlist)


def parse_csv_set(raw: Optional[str]) -> Set[str]:
    """Split a comma separated string into a set of trimmed, non-empty values."""
    text = (raw or "").strip()
    if not text:
        return set()
    return {part.strip() for part in text.split(",") if part.strip()}


def is_canonical_lines_enabled_for_org(
    organisation_id: str,
    settings: Optional[Settings] = None,
) -> bool:
    """
    Check whether canonical analytics is switched on for an organisation.

    The global switch must be on. If the allow-list is non-empty the
    organisation must also be listed in it.
    """
    settings = settings or get_settings()
    if not settings.use_canonical_lines:
        return False
    allow = settings.canonical_org_allowlist
    if not allow:
        return True
    return organisation_id in allow


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
