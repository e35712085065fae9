"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="TRIPCORE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Trip Tracking & Consolidation API"
    api_prefix: str = "/api"
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:8081",
            "http://127.0.0.1:8081",
            "http://localhost:19006",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # External collaborators
    booking_api_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the booking/trip backend (e.g., https://api.example.com/api).",
    )
    booking_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token used for booking backend requests.",
    )
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    traffic_api_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the traffic conditions provider.",
    )
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Channel provider endpoint receiving outbound messages. Messages are only logged when unset.",
    )
    admin_recipient_ref: str = Field(default="admins", description="Recipient reference for the admin audience.")

    http_timeout_seconds: float = Field(default=15.0, gt=0.0)
    http_max_retries: int = Field(default=3, ge=0)
    http_backoff_seconds: float = Field(default=1.0, ge=0.0)

    # Tracking
    tracking_interval_seconds: float = Field(default=30.0, gt=0.0)
    position_fetch_timeout_seconds: float = Field(default=10.0, gt=0.0)
    degraded_after_failures: int = Field(default=3, ge=1)
    trackable_statuses: tuple[str, ...] = Field(default=("accepted", "started", "in_progress"))

    # Deviation / alerts
    deviation_threshold: float = Field(
        default=0.01,
        gt=0.0,
        description="Deviation threshold in coordinate degrees (~1.1 km at the equator, shrinks in longitude with latitude).",
    )
    deviation_strategy: Literal["endpoints", "polyline"] = Field(default="endpoints")
    high_severity_factor: float = Field(default=2.0, ge=1.0)
    alert_history_limit: int = Field(default=50, ge=1)
    traffic_radius_m: float = Field(default=5000.0, gt=0.0)
    traffic_cache_ttl_seconds: float = Field(default=300.0, ge=0.0)
    traffic_cache_max_entries: int = Field(default=256, ge=1)

    # Planning
    average_speed_kmh: float = Field(default=40.0, gt=0.0)
    plan_ttl_seconds: float = Field(default=900.0, gt=0.0, description="How long a proposed plan can be accepted.")
    plan_cache_max_entries: int = Field(default=512, ge=1)

    @field_validator("frontend_allowed_origins", "trackable_statuses", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
