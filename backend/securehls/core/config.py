"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Secure HLS Lesson Video API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database - REQUIRED
    DATABASE_URL: str

    # Redis - REQUIRED
    REDIS_URL: str

    # Security - REQUIRED (no defaults for sensitive values)
    # Also the HMAC secret for encryption key tokens.
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # CORS
    CORS_ORIGINS: list[str] = []

    # Storage layout (relative dirs are resolved against STORAGE_ROOT)
    STORAGE_ROOT: str = "./storage/app"
    TEMP_VIDEO_DIR: str = "temp_videos"
    HLS_OUTPUT_DIR: str = "private_videos/hls"
    MAX_UPLOAD_BYTES: int = 200 * 1024 * 1024

    # Absolute origin used when building playlist/segment/key URLs.
    # Empty means URLs are emitted host-relative.
    PUBLIC_BASE_URL: Optional[str] = None

    # Encoder
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    FFMPEG_CHECK_TIMEOUT_SECONDS: float = 10.0
    FFPROBE_TIMEOUT_SECONDS: float = 30.0
    ENCODE_TIMEOUT_SECONDS: float = 3600.0
    HLS_SEGMENT_SECONDS: int = 6

    # Capability tokens
    SEGMENT_TOKEN_TTL_SECONDS: int = 600
    KEY_TOKEN_TTL_SECONDS: int = 900
    PROCESSING_START_TTL_SECONDS: int = 3600

    # Video processing job
    VIDEO_QUEUE: str = "video-processing"
    VIDEO_JOB_MAX_ATTEMPTS: int = 5
    VIDEO_JOB_RETRY_DELAY_SECONDS: float = 30.0
    VIDEO_JOB_DEADLINE_SECONDS: float = 4 * 3600.0
    VIDEO_JOB_TIME_LIMIT_SECONDS: int = 4 * 3600
    VIDEO_JOB_RETRY_INPUT_ERRORS: bool = True

    # Celery
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
