"""Application settings loaded from environment variables."""
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Every value has a local-development default."""

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    # SQLite locally, PostgreSQL in production
    database_url: str = Field(default="sqlite:///./railcert.db")

    # Archival sweep marks evidence older than this as archived (never deletes)
    evidence_retention_days: int = Field(default=90)

    # Reporting window for certifications about to expire
    expiring_soon_days: int = Field(default=30)

    # Default deadline for point-in-time reconstruction queries
    reconstruction_timeout_seconds: float = Field(default=30.0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
