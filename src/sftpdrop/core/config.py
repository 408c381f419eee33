"""Configuration management for the SFTP drop service."""

import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from pydantic_settings import BaseSettings, SettingsConfigDict

from sftpdrop.core.exceptions import InvalidConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "sftpdrop"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Remote SFTP server
    SFTP_HOST: str = ""
    SFTP_PORT: int = 22
    SFTP_USERNAME: str = ""
    SFTP_PASSWORD: str = ""
    SFTP_UPLOAD_DIR: str = "/uploads/sftp-web-app"
    SFTP_KEEPALIVE_SECONDS: int = 10
    SFTP_CONNECT_TIMEOUT_SECONDS: float = 15.0

    # Connection retry policy
    SFTP_CONNECT_MAX_ATTEMPTS: int = 3
    SFTP_CONNECT_BASE_DELAY_SECONDS: float = 1.0
    SFTP_CONNECT_BACKOFF_MULTIPLIER: float = 2.0
    SFTP_CONNECT_MAX_DELAY_SECONDS: float = 10.0

    # Chunk store
    CHUNK_STORE_BACKEND: str = "local"  # "memory", "local" or "gcs"
    CHUNK_STORE_DIR: str = str(Path(tempfile.gettempdir()) / "sftp-chunks")
    GCS_BUCKET_NAME: str = ""
    GCS_CHUNK_PREFIX: str = "chunks-temp/"
    GCP_PROJECT_ID: str = ""
    CHUNK_MAX_AGE_SECONDS: int = 3600
    CHUNK_SWEEP_INTERVAL_SECONDS: int = 1800

    # Size limits
    CHUNK_SIZE_MB: int = 4  # client slice size, kept under the per-request ceiling
    MAX_CHUNK_MB: int = 10
    MAX_UPLOAD_MB: int = 500
    MAX_SIMPLE_UPLOAD_MB: int = 50
    MAX_FILES_PER_REQUEST: int = 20
    MAX_TOTAL_CHUNKS: int = 1024
    LARGE_FILE_THRESHOLD_MB: int = 15
    ALLOWED_UPLOAD_MIME_TYPES: str = ""  # Comma-separated, empty = allow all

    # Rate limiting (per client address)
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_CHUNK_REQUESTS: int = 30
    RATE_LIMIT_FINALIZE_REQUESTS: int = 30
    RATE_LIMIT_UPLOAD_REQUESTS: int = 10

    # Metadata database
    DATABASE_URL: str = "sqlite:///./data/sftpdrop.db"
    METADATA_TABLE: str = "files"

    # Client side
    API_BASE_URL: str = "http://localhost:8000"
    MEDIA_CACHE_DIR: str = str(Path.home() / ".cache" / "sftpdrop" / "media")
    MEDIA_CACHE_MEMORY_MB: int = 50
    MEDIA_CACHE_MAX_AGE_SECONDS: int = 7 * 24 * 60 * 60
    MEDIA_CACHE_SWEEP_DELAY_SECONDS: float = 5.0
    CLIENT_REQUEST_TIMEOUT_SECONDS: float = 60.0

    @property
    def allowed_mime_types(self) -> list[str] | None:
        """Parse ALLOWED_UPLOAD_MIME_TYPES into a list."""
        if not self.ALLOWED_UPLOAD_MIME_TYPES:
            return None
        return [mt.strip() for mt in self.ALLOWED_UPLOAD_MIME_TYPES.split(",") if mt.strip()]

    @property
    def chunk_size_bytes(self) -> int:
        return self.CHUNK_SIZE_MB * 1024 * 1024

    @property
    def max_chunk_bytes(self) -> int:
        return self.MAX_CHUNK_MB * 1024 * 1024

    @property
    def max_upload_bytes(self) -> int:
        """Convert MAX_UPLOAD_MB to bytes."""
        return self.MAX_UPLOAD_MB * 1024 * 1024

    @property
    def max_simple_upload_bytes(self) -> int:
        return self.MAX_SIMPLE_UPLOAD_MB * 1024 * 1024

    @property
    def large_file_threshold_bytes(self) -> int:
        """Files above this size are uploaded in chunks."""
        return self.LARGE_FILE_THRESHOLD_MB * 1024 * 1024

    @property
    def media_cache_memory_bytes(self) -> int:
        return self.MEDIA_CACHE_MEMORY_MB * 1024 * 1024


@dataclass(frozen=True)
class SFTPConfig:
    """Complete connection settings for the remote SFTP server."""

    host: str
    port: int
    username: str
    password: str

    def __repr__(self) -> str:
        return f"SFTPConfig(host={self.host!r}, port={self.port}, username={self.username!r})"


def resolve_sftp_config(
    partial: Mapping[str, Any] | None = None, base: Settings | None = None
) -> SFTPConfig:
    """Merge a partial client-supplied config over the server defaults.

    Server credentials are only filled in when the merged host and port are
    the server's own. A config pointing anywhere else must carry its own
    username and password.

    Args:
        partial: Optional mapping with any of host/port/username/password
        base: Settings providing the defaults (module singleton if omitted)

    Returns:
        A validated SFTPConfig

    Raises:
        InvalidConfigError: If the merged config is incomplete or malformed
    """
    base = base or settings
    partial = partial or {}

    host = partial.get("host") or base.SFTP_HOST
    port = partial.get("port") or base.SFTP_PORT
    default_target = host == base.SFTP_HOST and port == base.SFTP_PORT
    username = partial.get("username") or (base.SFTP_USERNAME if default_target else "")
    password = partial.get("password") or (base.SFTP_PASSWORD if default_target else "")

    if not isinstance(host, str) or not host:
        raise InvalidConfigError("Invalid SFTP configuration: host is required")
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
        raise InvalidConfigError("Invalid SFTP configuration: port must be between 1 and 65535")
    if not isinstance(username, str) or not username:
        raise InvalidConfigError("Invalid SFTP configuration: username is required")
    if not isinstance(password, str) or not password:
        raise InvalidConfigError("Invalid SFTP configuration: password is required")

    return SFTPConfig(host=host, port=port, username=username, password=password)


# Singleton settings instance
settings = Settings()
