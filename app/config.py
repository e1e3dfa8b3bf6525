"""
Application configuration using Pydantic settings.
"""
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Growth-rate estimator configuration
    growth_rate_api_base_url: str = Field(
        default="http://localhost:3000/api",
        description="Base URL for the product growth-rate estimation service"
    )
    growth_rate_api_key: str = Field(
        default="",
        description="API key for the growth-rate estimation service"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(
        default=3,
        description="Maximum number of retry attempts for API calls"
    )
    retry_backoff_multiplier: int = Field(
        default=1,
        description="Multiplier for exponential backoff"
    )
    retry_min_wait: int = Field(
        default=4,
        description="Minimum wait time in seconds between retries"
    )
    retry_max_wait: int = Field(
        default=10,
        description="Maximum wait time in seconds between retries"
    )

    # Field geometry
    field_min_dimension: float = Field(
        default=40.0,
        description="Smallest bounding-box extent of a rendered field (scene units)"
    )
    field_max_dimension: float = Field(
        default=150.0,
        description="Largest bounding-box extent of a rendered field (scene units)"
    )
    grid_jitter_ratio: float = Field(
        default=0.1,
        description="Random offset applied to grid positions as a fraction of spacing"
    )
    max_rendered_plants: int = Field(
        default=500,
        description="Maximum number of plant positions handed to the renderer"
    )

    # Timeline
    default_horizon_days: int = Field(
        default=90,
        description="Number of days covered by a new timeline"
    )
    default_start_date: str = Field(
        default="2025-03-20",
        description="Planting date used when a request does not give one"
    )
    climate_seed: Optional[int] = Field(
        default=None,
        description="Seed for the weather generator (unset = random)"
    )

    # Playback
    playback_base_interval_ms: int = Field(
        default=1000,
        description="Interval between automatic day advances at 1x speed"
    )
    playback_min_speed: float = Field(
        default=0.1,
        description="Lowest accepted playback speed multiplier"
    )
    playback_max_speed: float = Field(
        default=16.0,
        description="Highest accepted playback speed multiplier"
    )

    # Simulation sessions
    max_simulations: int = Field(
        default=16,
        description="Most simulations kept at once; the least recently used is ended to make room"
    )
    simulation_idle_ttl_seconds: float = Field(
        default=3600.0,
        description="Simulations not touched for this long are ended on the next create"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum requests per minute per client"
    )

    # Application Settings
    app_name: str = Field(
        default="Crop Field Growth Simulator",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
