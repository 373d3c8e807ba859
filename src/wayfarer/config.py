"""Configuration management for Wayfarer using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="WAYFARER_",
        extra="ignore",
    )

    # Quest backend (Nakama RPC)
    nakama_host: str = Field(default="localhost", description="Nakama server host")
    nakama_port: int = Field(default=7350, description="Nakama HTTP API port")
    nakama_use_ssl: bool = Field(default=False, description="Use HTTPS for Nakama")
    nakama_server_key: str = Field(
        default="defaultkey", description="Server key used for Basic auth on session calls"
    )
    rpc_timeout_seconds: float = Field(
        default=10.0, description="Default timeout for a single backend RPC"
    )
    rpc_timeout_ceiling_seconds: float = Field(
        default=30.0, description="Hard upper bound the RPC client never exceeds"
    )

    # Routing
    mapbox_access_token: str | None = Field(
        default=None, description="Mapbox Directions API token", alias="MAPBOX_ACCESS_TOKEN"
    )
    route_profile: str = Field(
        default="walking", description="Routing profile: walking, cycling or driving"
    )

    # Quest progression
    arrival_threshold_meters: float = Field(
        default=50.0, description="Radius within which a step counts as reached"
    )
    location_poll_interval_seconds: float = Field(
        default=5.0, description="Seconds between location samples while navigating"
    )
    location_fix_timeout_seconds: float = Field(
        default=10.0, description="Upper bound on a single device location fix"
    )
    max_quest_distance_km: float = Field(
        default=5.0, description="Search radius for nearby quests"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level", alias="LOG_LEVEL")
    log_format: str = Field(
        default="console", description="Log format (console or json)", alias="LOG_FORMAT"
    )

    @property
    def nakama_base_url(self) -> str:
        """Base URL of the Nakama HTTP API."""
        protocol = "https" if self.nakama_use_ssl else "http"
        return f"{protocol}://{self.nakama_host}:{self.nakama_port}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
