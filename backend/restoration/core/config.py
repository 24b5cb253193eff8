"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings include
the database connection parameters and pool sizing, the scratch directory
used for shapefile uploads, token verification keys, CORS origins, and the
default log level.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from restoration.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.database_url)

    Environment variables can override defaults:
        >>> DB_HOST=db.internal
        >>> DB_POOL_SIZE=40
        >>> DB_CONNECTION_TIMEOUT=5000
"""

import functools
import pathlib
from urllib import parse

import pydantic_settings


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via environment variables or .env file.

    Attributes:
        db_host: PostgreSQL host name.
        db_port: PostgreSQL port.
        db_user_api: Database role used by the API.
        db_user_api_pass: Password for ``db_user_api``.
        db_database: Database name.
        db_pool_size: Maximum number of pooled connections.
        db_connection_timeout: Milliseconds to wait for a pooled connection,
            0 waits indefinitely.
        storage_dir: Scratch directory for uploaded shapefile bundles.
        max_upload_size_bytes: Maximum upload size (default 50MB).
        allow_origins: List of allowed CORS origins (["*"] allows all).
        log_level: Initial level of the ``restoration`` logger.
        keycloak_public_key: Key used to verify bearer tokens.
        keycloak_algorithms: Accepted token signing algorithms.
        keycloak_audience: Expected token audience, not checked when None.
    """

    db_host: str = "localhost"
    db_port: int = 5432
    db_user_api: str = "restoration_api"
    db_user_api_pass: str = "postgres"
    db_database: str = "restoration"
    db_pool_size: int = 20
    db_connection_timeout: int = 0
    storage_dir: pathlib.Path = pathlib.Path("/tmp/restoration/uploads")
    max_upload_size_bytes: int = 50 * 1024 * 1024
    allow_origins: list[str] = ["*"]
    log_level: str = "info"
    keycloak_public_key: str = ""
    keycloak_algorithms: list[str] = ["RS256"]
    keycloak_audience: str | None = None

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def database_url(self) -> str:
        """PostgreSQL connection string built from the ``db_*`` fields."""
        user = parse.quote(self.db_user_api, safe="")
        password = parse.quote(self.db_user_api_pass, safe="")
        return (
            f"postgresql://{user}:{password}@{self.db_host}:{self.db_port}"
            f"/{self.db_database}"
        )

    def ensure_directories(self) -> None:
        """Create the local upload scratch directory."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance with directories initialized.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. Subsequent calls return the same
    cached instance.

    Returns:
        Settings instance with all configuration values populated and
        directories ensured to exist.
    """
    settings = Settings()
    settings.ensure_directories()
    return settings
