from __future__ import annotations
from pydantic import BaseModel

class VoteToggle(BaseModel):
    has_voted: bool
    vote_count: int
