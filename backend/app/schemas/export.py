from __future__ import annotations
from pydantic import BaseModel
from uuid import UUID
from datetime import date, datetime
from app.schemas.comment import CommentPublic
from app.schemas.completion import CompletionImagePublic
from app.schemas.participant import ParticipantPrivate

class ExportedCompletion(BaseModel):
    id: UUID
    participant_id: UUID
    event_year: int
    completed_date: date
    duration_text: str | None = None
    comment: str | None = None
    vote_count: int = 0
    comment_count: int = 0
    created_at: datetime | None = None

class ExportedVote(BaseModel):
    completion_id: UUID
    event_year: int
    created_at: datetime | None = None

class DataExport(BaseModel):
    """Everything stored about one identity, across all event years."""
    exported_at: datetime
    participants: list[ParticipantPrivate]
    completions: list[ExportedCompletion]
    images: list[CompletionImagePublic]
    comments: list[CommentPublic]
    votes: list[ExportedVote]
