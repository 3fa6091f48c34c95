"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App
    app_env: str = "development"
    debug: bool = True
    api_version: str = "1.0.0"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Rate Limiting
    rate_limit_per_minute: int = 30

    # Image Processing
    max_image_size_mb: int = 10
    max_image_dimension: int = 2048

    # Warp geometry (normalized face units)
    warp_face_overscan: float = 1.25
    warp_inner_edge: float = 0.85
    warp_max_influence: float = 1.1
    warp_default_face_fraction_x: float = 0.8
    warp_default_face_fraction_y: float = 0.9

    # Warp strength
    warp_amplification_base: float = 10.0
    warp_reference_area: int = 256 * 256
    warp_slider_limit: float = 50.0
    warp_noise_limit: float = 30.0
    warp_safety_margin: int = 3

    # Scheduling
    warp_rows_per_slice: int = 20
    worker_enabled: bool = False
    worker_timeout_seconds: float = 5.0

    # Effects
    effect_max_blur_radius: int = 30
    effect_max_pixel_block: int = 32
    effect_mask_opacity: float = 0.9
    effect_max_mask_scale: float = 4.0

    # Diagnostics
    vector_field_step: int = 20
    vector_field_arrow_scale: float = 3.0

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def max_image_size_bytes(self) -> int:
        """Max image size in bytes."""
        return self.max_image_size_mb * 1024 * 1024

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
