"""Application settings and configuration.

This module defines all configuration options for the dchannel service.
Settings are loaded from environment variables with sensible defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_POLL_INTERVAL_SECONDS = 5.0
MAX_POLL_INTERVAL_SECONDS = 30.0


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="dchannel", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Local state
    data_dir: Path = Field(default=Path("./.dchannel"), alias="DCHANNEL_DATA_DIR")
    database_url: str = Field(default="sqlite:///./dchannel.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Identity file, encrypted at rest under a passphrase-derived key
    identity_file: Path = Field(default=Path("./secretkeys.json"), alias="IDENTITY_FILE")
    # log2 of the scrypt cost parameter used for the passphrase recipient
    scrypt_work_factor: int = Field(default=18, ge=10, le=22, alias="SCRYPT_WORK_FACTOR")

    # Object store / naming service backend
    store_backend: Literal["kubo", "local"] = Field(default="kubo", alias="STORE_BACKEND")
    kubo_api_url: str = Field(default="http://127.0.0.1:5001", alias="KUBO_API_URL")
    kubo_timeout_seconds: float = Field(default=60.0, alias="KUBO_TIMEOUT_SECONDS")
    name_publish_timeout_seconds: float = Field(
        default=120.0,
        alias="NAME_PUBLISH_TIMEOUT_SECONDS",
    )
    name_resolve_timeout_seconds: float = Field(
        default=30.0,
        alias="NAME_RESOLVE_TIMEOUT_SECONDS",
    )
    name_resolve_use_cache: bool = Field(default=True, alias="NAME_RESOLVE_USE_CACHE")

    # Feed behaviour
    default_channel: str = Field(default="self", alias="DEFAULT_CHANNEL")
    poll_interval_seconds: float = Field(
        default=5.0,
        ge=MIN_POLL_INTERVAL_SECONDS,
        le=MAX_POLL_INTERVAL_SECONDS,
        alias="POLL_INTERVAL_SECONDS",
    )
    desktop_notifications: bool = Field(default=False, alias="DESKTOP_NOTIFICATIONS")

    # CORS configuration for the web frontend
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def objects_dir(self) -> Path:
        """Directory holding bundles written by the local backend."""
        return self.data_dir / "objects"

    @property
    def names_file(self) -> Path:
        """JSON file holding name records written by the local backend."""
        return self.data_dir / "names.json"


settings = Settings()
