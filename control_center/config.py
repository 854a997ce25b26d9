"""
Configuration management for Control Center.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Control Center")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./control_center.db")
    database_pool_size: int = Field(default=20)
    database_max_overflow: int = Field(default=30)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    # Timeline pagination
    timeline_default_limit: int = Field(default=100)
    timeline_max_limit: int = Field(default=500)

    # Publish ledger
    publish_batches_default_limit: int = Field(default=50)
    publish_batches_max_limit: int = Field(default=100)
    publish_items_default_limit: int = Field(default=100)
    publish_items_max_limit: int = Field(default=500)
    publish_result_max_bytes: int = Field(
        default=32768,
        description="Serialized result_json larger than this is replaced by {} and flagged truncated.",
    )

    # Evidence
    evidence_max_payload_bytes: int = Field(default=100 * 1024)

    # Verification
    verification_default_required_checks: str = Field(
        default="deployment",
        description="Comma-separated checks required when a caller does not name any.",
    )

    def default_required_checks(self) -> List[str]:
        """Parse the comma-separated default required checks."""
        raw = self.verification_default_required_checks or ""
        return [c.strip() for c in raw.split(",") if c.strip()]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
