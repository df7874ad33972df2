from __future__ import annotations
from uuid import UUID
import structlog
from fastapi import APIRouter, Depends
from app.auth_deps import get_current_identity, get_authorizer
from app.errors import ResourceMissing
from app.schemas.comment import CommentCreate, CommentPublic
from app.services.authorization import Identity, OwnershipAuthorizer, ResourceKind
from app.services.completions import clean_comment_text
from app.services.stores import Stores, get_stores

router = APIRouter(tags=["comments"])
log = structlog.get_logger()

def _to_public(c, author_name: str | None) -> CommentPublic:
    return CommentPublic(
        id=c.id,
        completion_id=c.completion_id,
        participant_id=c.participant_id,
        comment_text=c.comment_text,
        author_name=author_name,
        created_at=c.created_at,
    )

@router.get("/completions/{completion_id}/comments", response_model=list[CommentPublic])
async def list_comments(completion_id: UUID, stores: Stores = Depends(get_stores)):
    if await stores.completions.get(completion_id) is None:
        raise ResourceMissing("Fant ikke fullføringen")
    return [_to_public(c, name) for c, name in await stores.comments.list_for_completion(completion_id)]

@router.post("/completions/{completion_id}/comments", response_model=CommentPublic, status_code=201)
async def add_comment(
    completion_id: UUID,
    payload: CommentCreate,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    participant_id = (await authorizer.resolve_participant(identity)).require()
    text = clean_comment_text(payload.comment_text)
    if await stores.completions.get(completion_id) is None:
        raise ResourceMissing("Fant ikke fullføringen")
    c = await stores.comments.add(completion_id, participant_id, text)
    await stores.completions.refresh_counts(completion_id)
    author = await stores.participants.get(participant_id)
    return _to_public(c, author.full_name if author else None)

@router.delete("/comments/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: UUID,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    participant_id = (await authorizer.authorize(identity, ResourceKind.COMMENT, comment_id)).require()
    completion_id = await stores.comments.delete(comment_id, participant_id)
    if completion_id is not None:
        await stores.completions.refresh_counts(completion_id)
        log.info("comment.deleted", comment_id=str(comment_id))
