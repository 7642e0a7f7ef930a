"""Application configuration pulled from environment variables via pydantic."""
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the GBFS explorer service."""
    model_config = SettingsConfigDict(env_prefix="GBFS_EXPLORER_", extra="ignore", populate_by_name=True)

    mobility_database_refresh_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "GBFS_EXPLORER_MOBILITY_DATABASE_REFRESH_TOKEN",
            "MOBILITY_DATABASE_REFRESH_TOKEN",
        ),
    )
    mobility_database_url: str = "https://api.mobilitydatabase.org"
    catalog_data_type: str = "gbfs"
    catalog_page_limit: int = 1000
    catalog_cache_hours: float = 6
    token_refresh_buffer_seconds: int = 300
    token_default_expires_in: int = 3600
    upstream_timeout_seconds: float = 30.0
    feed_timeout_seconds: float = 10.0
    proxy_timeout_seconds: float = 7.0
    feed_cache_ttl_seconds: int = 60
    error_excerpt_chars: int = 200
    user_agent: str = "GBFSExplorer/1.0"
    mapbox_access_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GBFS_EXPLORER_MAPBOX_ACCESS_TOKEN", "MAPBOX_ACCESS_TOKEN"),
    )
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    min_search_chars: int = 2
    log_level: str = "INFO"

    @field_validator("mobility_database_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @property
    def catalog_cache_seconds(self) -> float:
        """Catalog TTL expressed in seconds."""
        return self.catalog_cache_hours * 3600


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    logger.debug(f"Loaded settings: {settings.model_dump_json(indent=4, exclude={'mobility_database_refresh_token', 'mapbox_access_token'})}")
