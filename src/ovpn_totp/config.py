"""Central configuration loaded from environment variables and .env files."""

from __future__ import annotations

from enum import StrEnum

from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseBackend(StrEnum):
    SQLITE = "sqlite"
    POSTGRES = "postgresql"


def backend_for(url: str) -> DatabaseBackend:
    """Pick the backend from a database URL's scheme."""
    scheme = url.split(":", 1)[0].lower()
    if scheme == "sqlite":
        return DatabaseBackend.SQLITE
    if scheme in ("postgres", "postgresql"):
        return DatabaseBackend.POSTGRES
    raise ValueError(f"Unsupported database URL scheme: {scheme!r}")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database (shared with the panel's users database)
    database_url: str = "sqlite:///./users.db"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    # TOTP
    totp_enabled: bool = False
    totp_issuer: str = "ovpn-admin"
    totp_valid_window: int = 1
    totp_qr_size: int = 200

    # Encryption of stored secrets (base64, 32 bytes). Empty = stored as-is.
    totp_master_key: str = ""

    # Logging
    log_level: str = "INFO"

    @property
    def database_backend(self) -> DatabaseBackend:
        return backend_for(self.database_url)


settings = Settings()
