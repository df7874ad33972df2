from __future__ import annotations
from pydantic import BaseModel, EmailStr, Field
from uuid import UUID
from datetime import datetime
from app.schemas.completion import CompletionImagePublic, GalleryEntry

class ParticipantRegister(BaseModel):
    full_name: str = Field(min_length=2, max_length=120)
    email: EmailStr | None = None  # defaults to the identity's email
    phone_number: str | None = Field(default=None, max_length=32)
    postal_address: str | None = Field(default=None, max_length=300)

class ParticipantUpdate(BaseModel):
    """Fields a participant may change on their own profile. Nothing else is ever written."""
    full_name: str | None = Field(default=None, min_length=2, max_length=120)
    phone_number: str | None = Field(default=None, max_length=32)
    postal_address: str | None = Field(default=None, max_length=300)

class ParticipantPublic(BaseModel):
    # 🔒 no email/phone/address/user_id here
    id: UUID
    full_name: str
    bib_number: int
    has_completed: bool
    event_year: int

class ParticipantPrivate(ParticipantPublic):
    email: str
    phone_number: str | None = None
    postal_address: str | None = None
    created_at: datetime | None = None

class ParticipantStats(BaseModel):
    event_year: int
    registered: int
    completed: int

class ParticipantDetail(ParticipantPublic):
    """Public profile for one bib number: the completion (if any) and its images, starred first."""
    completion: GalleryEntry | None = None
    images: list[CompletionImagePublic] = []
