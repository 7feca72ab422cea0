"""Configuration management for the direct upload service."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    ENV: str = "local"
    SERVICE_NAME: str = "directupload"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Upload endpoint
    UPLOAD_API_PATH: str = "/api/upload"

    # Storage Configuration
    S3_PROVIDER: str = "custom"  # aws, cloudflare, backblaze, digitalocean, linode, minio, wasabi, tigris, custom
    S3_BUCKET_NAME: str = ""
    S3_HOSTNAME: str = ""  # custom provider only, without scheme
    S3_REGION: str = ""
    S3_FORCE_PATH_STYLE: bool = False
    S3_SECURE: bool = True

    # Default route served by create_app() when no router is given
    UPLOAD_ROUTE_NAME: str = "default"
    UPLOAD_MAX_FILE_SIZE_MB: int = 5
    UPLOAD_MAX_FILES: int = 3
    UPLOAD_ALLOWED_FILE_TYPES: str = ""  # Comma-separated, empty = allow all
    UPLOAD_MULTIPART: bool = False
    UPLOAD_PART_SIZE_MB: int = 50
    UPLOAD_METHOD: str = "put"  # put or post

    @property
    def allowed_file_types(self) -> list[str]:
        """Parse UPLOAD_ALLOWED_FILE_TYPES into a list."""
        if not self.UPLOAD_ALLOWED_FILE_TYPES:
            return []
        return [
            mt.strip() for mt in self.UPLOAD_ALLOWED_FILE_TYPES.split(",") if mt.strip()
        ]

    @property
    def max_file_size_bytes(self) -> int:
        """Convert UPLOAD_MAX_FILE_SIZE_MB to bytes."""
        return self.UPLOAD_MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def part_size_bytes(self) -> int:
        """Convert UPLOAD_PART_SIZE_MB to bytes."""
        return self.UPLOAD_PART_SIZE_MB * 1024 * 1024


# Singleton settings instance
settings = Settings()
