from __future__ import annotations
from fastapi import APIRouter, Request
from datetime import datetime, timezone
from app import config
from app.config import settings

router = APIRouter(tags=["system"])

@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "env": settings.environment,
        "event_year": settings.event_year,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": getattr(request.state, "request_id", None),
    }

@router.get("/version")
async def version():
    return {"name": settings.app_name, "version": settings.app_version, "git_sha": settings.git_sha}

@router.get("/limits")
async def limits():
    """Upload and text limits, so clients can check before sending."""
    return {
        "max_file_bytes": config.MAX_FILE_BYTES,
        "min_file_bytes": config.MIN_FILE_BYTES,
        "max_total_bytes": config.MAX_TOTAL_BYTES,
        "min_images": config.MIN_IMAGES_PER_COMPLETION,
        "max_images": config.MAX_IMAGES_PER_COMPLETION,
        "max_image_dimension": config.MAX_IMAGE_DIMENSION,
        "max_caption_length": config.MAX_CAPTION_LENGTH,
        "max_comment_length": config.MAX_COMMENT_LENGTH,
        "max_duration_length": config.MAX_DURATION_LENGTH,
        "accepted_types": ["image/jpeg", "image/png", "image/webp"],
    }
