from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends
from app.auth_deps import get_current_identity, get_authorizer
from app.schemas.vote import VoteToggle
from app.services.authorization import Identity, OwnershipAuthorizer
from app.services.stores import Stores, get_stores
from app.services.votes import toggle_vote

router = APIRouter(tags=["votes"])

@router.post("/completions/{completion_id}/vote", response_model=VoteToggle)
async def vote(
    completion_id: UUID,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    result = await toggle_vote(authorizer, stores.votes, identity, completion_id)
    return VoteToggle(has_voted=result.has_voted, vote_count=result.vote_count)
