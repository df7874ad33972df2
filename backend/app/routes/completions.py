from __future__ import annotations
from uuid import UUID
import structlog
from fastapi import APIRouter, Depends, Query
from app.auth_deps import get_current_identity, get_authorizer
from app.config import GALLERY_PAGE_SIZE, MAX_GALLERY_PAGE_SIZE, settings
from app.errors import ErrorKind, RequestRejected, ResourceMissing
from app.models.completion import Completion
from app.schemas.completion import CompletionCreate, CompletionUpdate, CompletionPublic, GalleryEntry
from app.services.authorization import Identity, OwnershipAuthorizer, ResourceKind
from app.services.completions import check_completed_date, strip_html
from app.services.storage import ObjectStorage, get_storage
from app.services.stores import Stores, get_stores
from app.services.uploads import discard_objects, prepare_images, store_images

router = APIRouter(prefix="/completions", tags=["completions"])
log = structlog.get_logger()

def _to_public(c: Completion) -> CompletionPublic:
    return CompletionPublic(
        id=c.id,
        participant_id=c.participant_id,
        completed_date=c.completed_date,
        duration_text=c.duration_text,
        comment=c.comment,
        vote_count=c.vote_count or 0,
        comment_count=c.comment_count or 0,
        image_count=c.image_count or 0,
        event_year=c.event_year,
    )

def _clean_duration(text: str | None) -> str | None:
    return (text or "").strip() or None

@router.post("", response_model=CompletionPublic, status_code=201)
async def create_completion(
    payload: CompletionCreate,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
    storage: ObjectStorage = Depends(get_storage),
):
    participant_id = (await authorizer.resolve_participant(identity)).require()
    year = settings.event_year
    if await stores.completions.find_for_participant(participant_id, year):
        raise RequestRejected(ErrorKind.COMPLETION_EXISTS, status=409)
    completed = check_completed_date(payload.completed_date, year)

    prepared = await prepare_images(
        payload.images, participant_id=participant_id, event_year=year, starred_index=payload.starred_index
    )
    stored = await store_images(storage, prepared)
    fields = {
        "completed_date": completed,
        "duration_text": _clean_duration(payload.duration_text),
        "comment": strip_html(payload.comment),
    }
    try:
        c = await stores.completions.create_with_images(participant_id, year, fields, stored)
    except Exception:
        await discard_objects(storage, [s.prepared.key for s in stored])
        raise
    log.info("completion.created", completion_id=str(c.id), participant_id=str(participant_id), images=len(stored))
    return _to_public(c)

@router.get("", response_model=list[GalleryEntry])
async def list_gallery(
    year: int | None = Query(None, ge=2000, le=2100),
    limit: int = Query(GALLERY_PAGE_SIZE, ge=1, le=MAX_GALLERY_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    stores: Stores = Depends(get_stores),
):
    """Gallery for one event year, newest first."""
    return await stores.completions.list_gallery(year or settings.event_year, limit, offset)

@router.get("/{completion_id}", response_model=GalleryEntry)
async def get_completion(completion_id: UUID, stores: Stores = Depends(get_stores)):
    entry = await stores.completions.gallery_entry(completion_id)
    if entry is None:
        raise ResourceMissing("Fant ikke fullføringen")
    return entry

@router.patch("/{completion_id}", response_model=CompletionPublic)
async def update_completion(
    completion_id: UUID,
    payload: CompletionUpdate,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    (await authorizer.authorize(identity, ResourceKind.COMPLETION, completion_id)).require()
    current = await stores.completions.get(completion_id)

    sent = payload.model_fields_set
    fields = {}
    if "completed_date" in sent and payload.completed_date is not None:
        fields["completed_date"] = check_completed_date(payload.completed_date, current.event_year)
    if "duration_text" in sent:
        fields["duration_text"] = _clean_duration(payload.duration_text)
    if "comment" in sent:
        fields["comment"] = strip_html(payload.comment)

    c = await stores.completions.update(completion_id, fields)
    return _to_public(c)
