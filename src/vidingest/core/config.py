"""Configuration management for the vidingest upload service."""

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_VIDEO_MIME_TYPES = (
    "video/mp4,video/quicktime,video/x-msvideo,video/x-matroska,"
    "video/mpeg,video/webm,video/x-ms-wmv,video/3gpp"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "vidingest-engine"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Storage Configuration
    STORAGE_BACKEND: str = "local"  # "b2" or "local"
    THUMBNAIL_STORAGE_BACKEND: str = "local"  # "b2", "gcs" or "local"
    LOCAL_STORAGE_PATH: str = "data/objects"
    UPLOAD_ROOT: str = "uploads"

    # Backblaze B2 Configuration
    B2_ACCOUNT_ID: str = ""
    B2_APPLICATION_KEY: str = ""
    B2_API_URL: str = "https://api.backblazeb2.com"
    B2_VIDEO_BUCKET_ID: str = ""
    B2_VIDEO_BUCKET_NAME: str = "rushes-videos"
    B2_THUMBNAIL_BUCKET_ID: str = ""
    B2_THUMBNAIL_BUCKET_NAME: str = "rushes-thumbnails"
    B2_REQUEST_TIMEOUT: int = 120  # seconds, per HTTP call
    PUBLIC_URL_TEMPLATE: str = "https://{bucket}.s3.eu-central-003.backblazeb2.com/{name}"

    # GCP Configuration (thumbnail storage only)
    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""

    # Multipart Upload Configuration
    ALLOWED_VIDEO_MIME_TYPES: str = DEFAULT_VIDEO_MIME_TYPES
    MAX_PARTS: int = 10_000
    PART_SIZE_MB: int = 50
    MULTIPART_PROGRESS_BASE: int = 10
    MULTIPART_PROGRESS_INCREMENT: int = 2
    SESSION_MAX_AGE_HOURS: int = 24
    SESSION_SWEEP_INTERVAL_SECONDS: int = 3600
    COLLECT_GARBAGE_AFTER_PART: bool = False

    # Retry and Rate Limiting
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_SECONDS: float = 1.0  # linear: backoff * attempt
    CONTROL_PLANE_MIN_INTERVAL_MS: int = 100

    # Status Registry Configuration
    STATUS_RETENTION_HOURS: int = 24
    STATUS_SWEEP_INTERVAL_SECONDS: int = 3600
    STATUS_COMPLETION_REPUBLISH_MS: int = 500  # 0 disables the second publish

    # Background Job Queue Configuration
    JOB_MAX_CONCURRENT: int = 2
    JOB_MAX_ATTEMPTS: int = 3
    JOB_RETRY_DELAY_SECONDS: float = 5.0
    JOB_POLL_INTERVAL_SECONDS: float = 2.0
    JOB_RETENTION_MINUTES: int = 30
    THUMBNAIL_SEEK_SECONDS: float = 5.0

    # FFmpeg Configuration
    FFMPEG_BIN: str = "ffmpeg"
    FFMPEG_TIMEOUT_SECONDS: int = 45

    # Metadata Store (PostgREST-compatible, e.g. Supabase)
    METADATA_STORE_URL: str = ""
    METADATA_STORE_KEY: str = ""
    METADATA_STORE_TABLE: str = "videos"
    METADATA_UPDATE_TIMEOUT: int = 5  # seconds

    @property
    def allowed_video_mime_types(self) -> list[str]:
        """Parse ALLOWED_VIDEO_MIME_TYPES into a list."""
        return [mt.strip() for mt in self.ALLOWED_VIDEO_MIME_TYPES.split(",") if mt.strip()]

    @property
    def part_size_bytes(self) -> int:
        """Convert PART_SIZE_MB to bytes."""
        return self.PART_SIZE_MB * 1024 * 1024

    @property
    def session_max_age_seconds(self) -> int:
        return self.SESSION_MAX_AGE_HOURS * 3600

    @property
    def status_retention_seconds(self) -> int:
        return self.STATUS_RETENTION_HOURS * 3600

    @property
    def job_retention_seconds(self) -> int:
        return self.JOB_RETENTION_MINUTES * 60

    @property
    def control_plane_min_interval_seconds(self) -> float:
        return self.CONTROL_PLANE_MIN_INTERVAL_MS / 1000

    @property
    def completion_republish_seconds(self) -> float:
        return self.STATUS_COMPLETION_REPUBLISH_MS / 1000


# Singleton settings instance
settings = Settings()
