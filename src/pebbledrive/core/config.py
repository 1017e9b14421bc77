"""Configuration management for PebbleDrive."""

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Hard ceiling imposed by the object store on a single multipart object
OBJECT_STORE_MAX_FILE_BYTES = 5 * 1024 * 1024 * 1024
MAX_FILE_SIZE_MB_CEILING = 5000
DEFAULT_MAX_FILE_SIZE_MB = 100
MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "local"
    SERVICE_NAME: str = "pebbledrive"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Object store configuration
    STORAGE_BACKEND: str = "local"  # "s3" or "local"
    LOCAL_STORAGE_PATH: str = "data/objects"
    S3_BUCKET: str = ""
    S3_ENDPOINT_URL: str | None = None  # R2 / MinIO / GCS interoperability endpoint
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "auto"

    # Ephemeral session store configuration
    SESSION_BACKEND: str = "memory"  # "redis" or "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    UPLOAD_SESSION_TTL_SECONDS: int = 86400

    # Durable metadata store
    DATABASE_URL: str = "sqlite:///./pebbledrive.db"

    # Upload constraints
    MAX_FILE_SIZE_MB: int = DEFAULT_MAX_FILE_SIZE_MB
    BLOCKED_EXTENSIONS: str = ".exe,.sh,.bat,.cmd,.com,.scr,.msi,.dll,.vbs,.ps1"
    PART_SIZE_MB: int = 50

    # Auth (tokens are issued by the login service)
    AUTH_TOKEN_SECRET: str = ""
    AUTH_ALGORITHM: str = "HS256"

    CORS_ALLOW_ORIGINS: str = "*"

    @property
    def max_file_size_mb(self) -> int:
        """Per-deployment maximum, clamped to what the object store accepts."""
        if self.MAX_FILE_SIZE_MB > MAX_FILE_SIZE_MB_CEILING:
            logger.warning(
                f"MAX_FILE_SIZE_MB ({self.MAX_FILE_SIZE_MB}MB) exceeds limit, "
                f"using {MAX_FILE_SIZE_MB_CEILING}MB"
            )
            return MAX_FILE_SIZE_MB_CEILING
        if self.MAX_FILE_SIZE_MB <= 0:
            logger.warning(
                f"MAX_FILE_SIZE_MB ({self.MAX_FILE_SIZE_MB}MB) is not positive, "
                f"using default {DEFAULT_MAX_FILE_SIZE_MB}MB"
            )
            return DEFAULT_MAX_FILE_SIZE_MB
        return self.MAX_FILE_SIZE_MB

    @property
    def max_file_size_bytes(self) -> int:
        """Convert max_file_size_mb to bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def part_size_bytes(self) -> int:
        """Convert PART_SIZE_MB to bytes."""
        return self.PART_SIZE_MB * 1024 * 1024

    @property
    def blocked_extensions(self) -> list[str]:
        """Parse BLOCKED_EXTENSIONS into lower-case, dot-prefixed extensions."""
        extensions = []
        for ext in self.BLOCKED_EXTENSIONS.split(","):
            ext = ext.strip().lower()
            if not ext:
                continue
            extensions.append(ext if ext.startswith(".") else f".{ext}")
        return extensions

    @property
    def cors_allow_origins(self) -> list[str]:
        """Parse CORS_ALLOW_ORIGINS into a list."""
        return [origin.strip() for origin in self.CORS_ALLOW_ORIGINS.split(",") if origin.strip()]


# Singleton settings instance
settings = Settings()
