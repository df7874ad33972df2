from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import date, datetime
from app.config import MAX_COMMENT_LENGTH, MAX_DURATION_LENGTH

class ImageUpload(BaseModel):
    data: str = Field(description="data:<mime>;base64,<body>")
    caption: str | None = None

class CompletionCreate(BaseModel):
    completed_date: date
    duration_text: str | None = Field(default=None, max_length=MAX_DURATION_LENGTH)
    comment: str | None = Field(default=None, max_length=MAX_COMMENT_LENGTH)
    # the per-image and set limits are enforced by the upload pipeline
    images: list[ImageUpload]
    starred_index: int = Field(default=0, ge=0)

class CompletionUpdate(BaseModel):
    """Allow-listed completion fields; built field by field, never merged from raw input."""
    completed_date: date | None = None
    duration_text: str | None = Field(default=None, max_length=MAX_DURATION_LENGTH)
    comment: str | None = Field(default=None, max_length=MAX_COMMENT_LENGTH)

class ImagesAdd(BaseModel):
    # count and set rules are enforced by the upload pipeline
    images: list[ImageUpload]

class ImageOrder(BaseModel):
    image_ids: list[UUID]

class CaptionUpdate(BaseModel):
    caption: str | None = None

class CompletionImagePublic(BaseModel):
    id: UUID
    completion_id: UUID
    participant_id: UUID
    image_url: str
    is_starred: bool
    display_order: int
    caption: str | None = None
    width: int
    height: int
    uploaded_at: datetime | None = None

class CompletionPublic(BaseModel):
    id: UUID
    participant_id: UUID
    completed_date: date
    duration_text: str | None = None
    comment: str | None = None
    vote_count: int = 0
    comment_count: int = 0
    image_count: int = 0
    event_year: int

class GalleryEntry(CompletionPublic):
    full_name: str
    bib_number: int
    starred_image_url: str | None = None
    created_at: datetime | None = None
