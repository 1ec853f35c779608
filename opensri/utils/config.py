"""Application settings.

Settings are read from environment variables prefixed with ``OPENSRI_`` (or a
``.env`` file). Data paths default to the per-user data directory resolved by
platformdirs.

Environment Variables:
- OPENSRI_DATABASE_URL: SQLAlchemy URL (default: sqlite file in data_dir)
- OPENSRI_SRI_API_URL / OPENSRI_SRI_EMAIL / OPENSRI_SRI_PASSWORD: authority API
- OPENSRI_MAX_RETRIES: submission retry limit (default: 12)
- OPENSRI_SMTP_HOST / OPENSRI_SMTP_PORT / ...: outbound customer email
"""

from functools import lru_cache
from pathlib import Path

from platformdirs import PlatformDirs
from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

dirs = PlatformDirs("opensri", "opensri")


class Settings(BaseSettings):
    """OpenSRI runtime configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OPENSRI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path(dirs.user_data_dir))
    archive_dir: Path | None = Field(
        default=None, description="Root folder for generated PDFs (default: data_dir/archive)"
    )
    database_url: str | None = Field(default=None, description="SQLAlchemy database URL")

    # Tax authority
    sri_api_url: str = Field(default="http://localhost:3100")
    sri_email: str = Field(default="")
    sri_password: SecretStr = Field(default=SecretStr(""))
    sri_timeout: float = Field(default=30.0, gt=0, description="Read timeout in seconds")
    sri_connect_timeout: float = Field(default=10.0, gt=0)

    # Retry policy
    max_retries: int = Field(default=12, ge=1, le=100)
    retry_base_delay: float = Field(default=300.0, gt=0, description="Seconds before 1st retry")
    retry_backoff_factor: float = Field(default=2.0, ge=1)
    retry_max_delay: float = Field(default=57600.0, gt=0, description="Upper bound (16h)")
    stale_submission_minutes: int = Field(
        default=30, ge=1, description="SENT documents older than this are considered crashed"
    )

    # Issuer data printed on documents
    issuer_name: str = Field(default="OpenSRI Marketplace")
    issuer_ruc: str = Field(default="")
    issuer_address: str = Field(default="")
    establishment_code: str = Field(default="001")
    emission_point_code: str = Field(default="001")
    currency: str = Field(default="USD")

    # Outbound email
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587)
    smtp_username: str = Field(default="")
    smtp_password: SecretStr = Field(default=SecretStr(""))
    smtp_timeout: float = Field(default=30.0, gt=0)
    email_from: str = Field(default="facturacion@opensri.local")

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)
    log_file: Path | None = Field(default=None)
    debug: bool = Field(default=False)

    @model_validator(mode="after")
    def _derive_paths(self) -> "Settings":
        if self.archive_dir is None:
            self.archive_dir = self.data_dir / "archive"
        if self.database_url is None:
            self.database_url = f"sqlite:///{self.data_dir / 'opensri.db'}"
        return self

    def ensure_directories(self) -> None:
        """Create data and archive directories if missing."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        assert self.archive_dir is not None
        self.archive_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


def reload_settings() -> Settings:
    """Drop the cached settings and read them again from the environment."""
    get_settings.cache_clear()
    return get_settings()
