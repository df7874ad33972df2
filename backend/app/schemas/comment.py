from __future__ import annotations
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

class CommentCreate(BaseModel):
    # length rules are checked after trimming, see services.completions
    comment_text: str

class CommentPublic(BaseModel):
    id: UUID
    completion_id: UUID
    participant_id: UUID
    comment_text: str
    author_name: str | None = None
    created_at: datetime | None = None
