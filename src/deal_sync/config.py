"""
Configuration management for the deal sync engine.

Loads DEAL_SYNC_* settings from environment variables (and a project-root
.env file when present). The resulting SyncConfig is passed explicitly into
the source client, fetcher and scheduler; nothing inside the engine reads
process-wide globals.
"""

from datetime import date
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class SyncConfig(BaseSettings):
    """Settings for one sync process, loaded from environment."""

    model_config = SettingsConfigDict(env_prefix='DEAL_SYNC_', extra='ignore')

    # Datastore
    DATABASE_URL: str = ''

    # Source API
    SOURCE_BASE_URL: str = 'https://api-velocity.newton.ca/api/forms'
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, le=300)

    # Pacing (seconds) between page requests, yearly windows, and partitions
    PAGE_DELAY_SECONDS: float = Field(default=0.2, ge=0)
    WINDOW_DELAY_SECONDS: float = Field(default=0.1, ge=0)
    PARTITION_DELAY_SECONDS: float = Field(default=0.5, ge=0)

    # Windowing
    HISTORY_EPOCH: date = date(2021, 1, 1)
    INCREMENTAL_BUFFER_HOURS: int = Field(default=24, ge=0)

    # Concurrency (1 = sequential)
    PARTITION_CONCURRENCY: int = Field(default=1, ge=1, le=10)
    DEAL_CONCURRENCY: int = Field(default=1, ge=1, le=10)

    # Retry ledger
    RETRY_LIMIT: int = Field(default=10, ge=1)

    # Logging
    LOG_LEVEL: str = 'INFO'
    LOG_JSON: bool = False

    def validate_required(self) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if not self.DATABASE_URL:
            missing.append('DEAL_SYNC_DATABASE_URL')
        if not self.SOURCE_BASE_URL:
            missing.append('DEAL_SYNC_SOURCE_BASE_URL')
        return missing


@lru_cache
def get_config() -> SyncConfig:
    """Cached config singleton."""
    return SyncConfig()
