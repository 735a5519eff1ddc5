"""
Centralized configuration management.
All environment variables and settings are defined here.
"""
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="Carbon Ledger Service", alias="APP_NAME")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    default_user_id: str = Field(default="default-user", alias="DEFAULT_USER_ID")

    # Remote classifier (OpenAI-compatible chat completions)
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_api_url: str = Field(
        default="https://api.openai.com/v1/chat/completions",
        alias="OPENAI_API_URL"
    )
    openai_model: str = Field(default="gpt-4o", alias="OPENAI_MODEL")
    openai_timeout: int = Field(default=30, alias="OPENAI_TIMEOUT")
    openai_verify_ssl: bool = Field(default=True, alias="OPENAI_VERIFY_SSL")

    # Remote emission factor database (Climatiq)
    climatiq_api_key: str = Field(default="", alias="CLIMATIQ_API_KEY")
    climatiq_api_url: str = Field(default="https://api.climatiq.io/v1", alias="CLIMATIQ_API_URL")
    climatiq_region: str = Field(default="EU", alias="CLIMATIQ_REGION")
    climatiq_year: int = Field(default=2024, alias="CLIMATIQ_YEAR")
    climatiq_timeout: int = Field(default=10, alias="CLIMATIQ_TIMEOUT")

    # Batch classification throttling
    classification_batch_size: int = Field(default=10, alias="CLASSIFICATION_BATCH_SIZE")
    classification_batch_delay: float = Field(default=1.0, alias="CLASSIFICATION_BATCH_DELAY")
    verification_threshold: float = Field(default=0.8, alias="VERIFICATION_THRESHOLD")

    # Spend-to-activity conversion (EUR per physical unit). Rough averages.
    fuel_price_per_litre: float = Field(default=1.5, alias="FUEL_PRICE_PER_LITRE")
    energy_price_per_kwh: float = Field(default=0.25, alias="ENERGY_PRICE_PER_KWH")
    travel_cost_per_km: float = Field(default=0.5, alias="TRAVEL_COST_PER_KM")
    hotel_cost_per_night: float = Field(default=100.0, alias="HOTEL_COST_PER_NIGHT")

    # Analytics
    materiality_threshold_kg: float = Field(default=100.0, alias="MATERIALITY_THRESHOLD_KG")
    default_carbon_price: float = Field(default=85.0, alias="DEFAULT_CARBON_PRICE")
    fuzzy_match_threshold: float = Field(default=0.8, alias="FUZZY_MATCH_THRESHOLD")

    # Storage
    temp_storage_path: str = Field(default="files", alias="STORAGE_PATH")
    reports_path: str = Field(default="reports", alias="REPORTS_PATH")
    database_path: str = Field(default="carbon_ledger.db", alias="DATABASE_PATH")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v_upper

    @field_validator("port")
    @classmethod
    def validate_port(cls, v):
        """Validate port is in valid range."""
        if not (1 <= v <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("classification_batch_size")
    @classmethod
    def validate_batch_size(cls, v):
        if v < 1:
            raise ValueError("Classification batch size must be at least 1")
        return v

    @field_validator("classification_batch_delay")
    @classmethod
    def validate_batch_delay(cls, v):
        if v < 0:
            raise ValueError("Classification batch delay cannot be negative")
        return v

    @field_validator(
        "fuel_price_per_litre",
        "energy_price_per_kwh",
        "travel_cost_per_km",
        "hotel_cost_per_night",
    )
    @classmethod
    def validate_conversion_ratio(cls, v):
        """Conversion ratios are divisors and must be positive."""
        if v <= 0:
            raise ValueError("Conversion ratios must be positive")
        return v

    @property
    def remote_classifier_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def remote_factors_enabled(self) -> bool:
        return bool(self.climatiq_api_key)

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        Path(self.temp_storage_path).mkdir(parents=True, exist_ok=True)
        Path(self.reports_path).mkdir(parents=True, exist_ok=True)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
        _settings.ensure_directories()
    return _settings


def reset_settings() -> None:
    """Reset settings singleton (useful for testing)."""
    global _settings
    _settings = None
