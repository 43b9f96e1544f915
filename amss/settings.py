"""
Runtime settings with pydantic-settings.

Values come from the environment (prefix ``AMSS_``) or a ``.env`` file.
Nested estimator defaults use a double underscore, e.g.
``AMSS_ROAS__MIN_REPS=20``.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EstimatorSettings(BaseSettings):
    """Defaults for the ROAS estimator."""
    model_config = SettingsConfigDict(
        env_prefix="AMSS_ROAS_",
        extra="ignore"
    )

    min_reps: int = Field(default=10, gt=1)
    max_time: float = Field(default=600.0, gt=0)  # seconds
    target_margin: float = Field(default=0.01, ge=0)
    target_cv: float = Field(default=0.01, ge=0)
    n_jobs: int = 1


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_prefix="AMSS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    log_level: str = "WARNING"

    # Relative mass drift tolerated before a transition is rescaled
    mass_tolerance: float = Field(default=1e-9, gt=0)

    roas: EstimatorSettings = Field(default_factory=EstimatorSettings)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a stream handler to the package logger at the configured level."""
    level = level or get_settings().log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s"
    )
