"""
Catalog Gateway Settings
========================

Environment-driven configuration for the gateway. Every field can be
overridden with a ``CATALOG_GATEWAY_`` prefixed environment variable or a
``.env`` file, e.g. ``CATALOG_GATEWAY_MIN_REQUEST_INTERVAL=2.0``.
"""

from functools import lru_cache
from typing import List, Optional, Set

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GatewaySettings(BaseSettings):
    """Settings for the catalog gateway service"""

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_GATEWAY_",
        env_file=".env",
        extra="ignore",
    )

    # Service configuration
    service_name: str = "catalog-gateway"
    service_version: str = "1.0.0"
    port: int = 8100

    # Upstream endpoints
    musicbrainz_base_url: str = "https://musicbrainz.org/ws/2"
    wikidata_entity_url: str = "https://www.wikidata.org/wiki/Special:EntityData"
    commons_file_path_url: str = "https://commons.wikimedia.org/wiki/Special:FilePath"
    image_width: int = Field(500, gt=0)
    user_agent: str = "JustForTheRecord/1.0.0 (contact@example.com)"

    # Throttling and retries (MusicBrainz allows ~1 req/sec per client)
    min_request_interval: float = Field(1.1, ge=0)
    request_timeout: float = Field(12.0, gt=0)
    max_attempts: int = Field(4, ge=1)
    initial_backoff: float = Field(0.6, ge=0)
    max_backoff: float = Field(60.0, ge=0)
    retry_status_codes: Set[int] = {429, 502, 503, 504}

    # Degraded-mode cache
    search_cache_ttl: float = Field(600.0, gt=0)

    # Request shaping
    artist_search_top_n: int = Field(15, ge=1)
    default_search_limit: int = Field(25, ge=1)
    max_page_size: int = Field(100, ge=1)

    # Authentication
    protected_actions: Set[str] = set()
    auth_introspection_url: Optional[str] = None
    auth_api_key: Optional[str] = None

    # HTTP surface and monitoring
    cors_origins: List[str] = ["*"]
    enable_metrics: bool = True
    log_level: str = "INFO"

    @field_validator("user_agent")
    @classmethod
    def _user_agent_required(cls, value: str) -> str:
        # MusicBrainz rejects anonymous clients
        if not value.strip():
            raise ValueError("user_agent must not be empty")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> GatewaySettings:
    """Return the process-wide settings instance."""
    return GatewaySettings()
