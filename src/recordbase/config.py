"""Environment-driven settings via pydantic-settings.

Every value has a default so the engine works without any environment.
Explicit arguments to the factory and CLI override these.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings read from RECORDBASE_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="RECORDBASE_", env_file=".env", extra="ignore")

    database_path: str = "recordbase.db"

    # Query paging
    default_page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    # Bulk transfer
    export_limit: int = Field(default=5000, ge=1)
    import_header_offset: int = Field(default=2, ge=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()
