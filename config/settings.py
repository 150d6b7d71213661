"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional

from models.price_band import DEFAULT_PRICE_BANDS, PriceBandConfig, PriceBandDefinition


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: Optional[str] = Field(
        None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        None,
        description="Supabase anon/public key"
    )
    statistics_table: str = Field(
        default="region_customer_statistics",
        description="Region × grade customer counts, partitioned by period"
    )
    write_back_table: str = Field(
        default="allocation_prediction",
        description="Per-region allocation rows, partitioned by period"
    )

    # ===================
    # ALLOCATION
    # ===================
    default_max_grade: str = Field(
        default="D30",
        description="Highest grade when a product has no range"
    )
    default_min_grade: str = Field(
        default="D1",
        description="Lowest grade when a product has no range"
    )
    tie_break: str = Field(
        default="lowest_index",
        pattern="^(lowest_index|highest_index)$",
        description="Order among equal-weight grades during residual correction"
    )
    city_wide_label: str = Field(
        default="全市",
        description="Region label of the city-wide statistics row"
    )

    # ===================
    # BIWEEKLY BOOST
    # ===================
    biweekly_boost_phrase: str = Field(
        default="两周一访上浮100%",
        description="Remark marker that doubles biweekly customers"
    )
    biweekly_visit_cycles: list[str] = Field(
        default_factory=lambda: ["双周"],
        description="Visit-cycle labels counted as biweekly"
    )

    # ===================
    # PRICE BANDS
    # ===================
    price_bands: list[PriceBandDefinition] = Field(
        default_factory=lambda: list(DEFAULT_PRICE_BANDS),
        description="Ordered price bands, first match wins (JSON in env)"
    )

    # ===================
    # BATCH
    # ===================
    batch_max_workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Threads for independent products (1 = sequential)"
    )
    avg_error_tolerance: float = Field(
        default=0.05,
        ge=0,
        le=1,
        description="Warn when average relative error exceeds this"
    )
    max_error_tolerance: float = Field(
        default=0.15,
        ge=0,
        le=1,
        description="Warn when maximum relative error exceeds this"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def price_band_config(self) -> PriceBandConfig:
        return PriceBandConfig(bands=tuple(self.price_bands))


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
