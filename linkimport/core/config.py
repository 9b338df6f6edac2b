from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    APIM_INTERNAL_TOKEN: str | None = None
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # === Collaborator credentials ===
    GOOGLE_MAPS_API_KEY: str | None = None
    MAPBOX_ACCESS_TOKEN: str | None = None

    # === Link fetch guardrails ===
    LINK_IMPORT_MAX_REDIRECTS: int = 3
    LINK_IMPORT_TIMEOUT_SECONDS: float = Field(
        default=8.0,
        description="Per-hop timeout for link fetches (seconds). Not cumulative across redirects.",
    )
    LINK_IMPORT_MAX_BYTES: int = 2 * 1024 * 1024  # 2 MB of body, never more in memory
    LINK_IMPORT_USER_AGENT: str = "LinkImport/1.0 (+https://github.com/linkimport/linkimport)"
    LINK_IMPORT_ACCEPT_LANGUAGE: str = "en-US,en;q=0.9"
    LINK_IMPORT_ALLOWED_CONTENT_TYPES: list[str] = [
        "text/html",
        "text/plain",
        "application/json",
        "application/ld+json",
        "text/xml",
        "application/xml",
    ]
    LINK_IMPORT_PIN_RESOLVED_IP: bool = Field(
        default=True,
        description="Connect to the validated address instead of re-resolving the hostname.",
    )
    LINK_IMPORT_MAX_URLS: int = 3

    # === Place resolution ===
    PLACES_SEARCH_RADIUS_METERS: int = 20_000
    PLACES_TIMEOUT_SECONDS: float = 10.0

    # === API Rate Limits (requests per second) ===
    PLACES_RATE_LIMIT: float = 5.0
    MAPBOX_RATE_LIMIT: float = 5.0

    @field_validator("LINK_IMPORT_MAX_REDIRECTS")
    @classmethod
    def validate_max_redirects(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError("LINK_IMPORT_MAX_REDIRECTS must be between 0 and 10")
        return v

    @field_validator("LINK_IMPORT_TIMEOUT_SECONDS", "PLACES_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        """Validate per-request timeouts (seconds)."""
        if v < 0.5:
            raise ValueError("Timeout must be >= 0.5 seconds")
        if v > 60.0:
            raise ValueError("Timeout must be <= 60 seconds")
        return v

    @field_validator("LINK_IMPORT_MAX_BYTES")
    @classmethod
    def validate_max_bytes(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("LINK_IMPORT_MAX_BYTES must be >= 1 KB")
        if v > 20 * 1024 * 1024:
            raise ValueError("LINK_IMPORT_MAX_BYTES must be <= 20 MB (memory safety)")
        return v

    @field_validator("LINK_IMPORT_MAX_URLS")
    @classmethod
    def validate_max_urls(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("LINK_IMPORT_MAX_URLS must be between 1 and 10")
        return v

    @field_validator("PLACES_RATE_LIMIT", "MAPBOX_RATE_LIMIT")
    @classmethod
    def validate_rate_limits(cls, v: float) -> float:
        """Validate API rate limits (requests per second)."""
        if v < 0.1:
            raise ValueError("Rate limit must be >= 0.1 requests/sec (minimum reasonable)")
        if v > 1000.0:
            raise ValueError("Rate limit must be <= 1000 requests/sec (reasonable max)")
        return v

    @field_validator("PLACES_SEARCH_RADIUS_METERS")
    @classmethod
    def validate_search_radius(cls, v: int) -> int:
        # Places API caps location bias circles at 50 km
        if v < 100 or v > 50_000:
            raise ValueError("PLACES_SEARCH_RADIUS_METERS must be between 100 and 50000")
        return v


settings = Settings()
