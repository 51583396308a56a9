from __future__ import annotations

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices, model_validator
from typing import Optional


BASE_DIR = Path(__file__).parent.resolve()

class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    base_dir: Path = BASE_DIR
    db_path: Path = Field(
        default=BASE_DIR / "notes.db",
        validation_alias=AliasChoices('db_path', 'DB_PATH')
    )
    # Committed canonical media, one file per note id
    blob_dir: Path = Field(
        default=BASE_DIR / "blobs",
        validation_alias=AliasChoices('blob_dir', 'BLOB_DIR')
    )
    # Staged uploads and transcoder output live here until the blob is committed
    work_dir: Path = Field(
        default=BASE_DIR / "work",
        validation_alias=AliasChoices('work_dir', 'WORK_DIR')
    )
    # Maximum size (in bytes) for an uploaded media part
    max_upload_size: int = Field(
        default=40 * 1024 * 1024,
        validation_alias=AliasChoices('max_upload_size', 'MAX_UPLOAD_SIZE')
    )

    # Transcoding
    ffmpeg_path: str = Field(
        default="ffmpeg",
        validation_alias=AliasChoices('ffmpeg_path', 'FFMPEG_PATH')
    )
    # Space separated ffmpeg output options; H.264 in MP4 by default
    ffmpeg_output_args: str = Field(
        default="-c:v libx264 -f mp4",
        validation_alias=AliasChoices('ffmpeg_output_args', 'FFMPEG_OUTPUT_ARGS')
    )
    canonical_suffix: str = Field(
        default=".mp4",
        validation_alias=AliasChoices('canonical_suffix', 'CANONICAL_SUFFIX')
    )
    canonical_media_type: str = Field(
        default="video/mp4",
        validation_alias=AliasChoices('canonical_media_type', 'CANONICAL_MEDIA_TYPE')
    )
    # 0 disables the limit
    transcode_timeout_seconds: int = Field(
        default=1800,
        validation_alias=AliasChoices('transcode_timeout_seconds', 'TRANSCODE_TIMEOUT_SECONDS')
    )
    transcode_concurrency: int = Field(
        default=2,
        validation_alias=AliasChoices('transcode_concurrency', 'TRANSCODE_CONCURRENCY')
    )
    shutdown_drain_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices('shutdown_drain_seconds', 'SHUTDOWN_DRAIN_SECONDS')
    )

    # HTTP surface
    route_prefix: str = Field(
        default="/chest-of-notes",
        validation_alias=AliasChoices('route_prefix', 'ROUTE_PREFIX')
    )
    cors_origins: str = Field(
        default="http://localhost:9000,https://chest-of-notes.solarlime.dev",
        validation_alias=AliasChoices('cors_origins', 'CORS_ORIGINS')
    )
    # Requests carrying this header are treated as system (recovery/operator) deletes
    system_delete_header: str = Field(
        default="task",
        validation_alias=AliasChoices('system_delete_header', 'SYSTEM_DELETE_HEADER')
    )
    host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices('host', 'HOST')
    )
    port: int = Field(
        default=3001,
        validation_alias=AliasChoices('port', 'PORT')
    )

    # Notifications
    sse_keepalive_seconds: float = Field(
        default=15.0,
        validation_alias=AliasChoices('sse_keepalive_seconds', 'SSE_KEEPALIVE_SECONDS')
    )
    subscriber_queue_size: int = Field(
        default=100,
        validation_alias=AliasChoices('subscriber_queue_size', 'SUBSCRIBER_QUEUE_SIZE')
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices('log_level', 'LOG_LEVEL')
    )
    error_log_file: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices('error_log_file', 'ERROR_LOG_FILE')
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.cors_origins.split(',') if origin.strip()]

    @property
    def ffmpeg_output_args_list(self) -> list[str]:
        return self.ffmpeg_output_args.split()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"   # prevents crashes if other stray keys exist
    )

    @model_validator(mode='after')
    def normalize(self) -> 'Settings':
        """Normalize the route prefix and reject unusable limits."""
        prefix = self.route_prefix.strip()
        if prefix and not prefix.startswith('/'):
            prefix = '/' + prefix
        self.route_prefix = prefix.rstrip('/')

        if self.transcode_concurrency < 1:
            raise ValueError("TRANSCODE_CONCURRENCY must be at least 1")
        if self.subscriber_queue_size < 1:
            raise ValueError("SUBSCRIBER_QUEUE_SIZE must be at least 1")
        if not self.canonical_suffix.startswith('.'):
            self.canonical_suffix = '.' + self.canonical_suffix
        return self

settings = Settings()

def get_settings() -> Settings:
    """Get application settings instance"""
    return settings
