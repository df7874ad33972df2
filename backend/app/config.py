from __future__ import annotations
import os
from datetime import date
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "bartelopet-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Barteløpet")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/bartelopet_dev")
    s3_endpoint: str = os.getenv("S3_ENDPOINT", "http://minio:9000")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "minioadmin")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "minioadmin")
    s3_bucket_uploads: str = os.getenv("S3_BUCKET_UPLOADS", "completion-photos")
    # Base URL the stored images are publicly served from
    media_public_url: str = os.getenv("MEDIA_PUBLIC_URL", "http://localhost:9000")

    # Identity provider tokens
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_audience: str | None = os.getenv("JWT_AUDIENCE") or None

    # Active edition of the event; mutations always target this year
    event_year: int = int(os.getenv("EVENT_YEAR", str(date.today().year)))

settings = Settings()

# Upload constraints, fixed at build time
MAX_FILE_BYTES = 10 * 1024 * 1024
MIN_FILE_BYTES = 1024
MAX_TOTAL_BYTES = 50 * 1024 * 1024
MAX_IMAGES_PER_COMPLETION = 10
MIN_IMAGES_PER_COMPLETION = 1
MAX_IMAGE_DIMENSION = 4096
MAX_CAPTION_LENGTH = 200
OUTPUT_FORMAT = "JPEG"
OUTPUT_QUALITY = 90
MAX_PROCESSING_SECONDS = 30

# Text limits
MAX_COMMENT_LENGTH = 500
MAX_DURATION_LENGTH = 50

# Gallery paging
GALLERY_PAGE_SIZE = 24
MAX_GALLERY_PAGE_SIZE = 100
