from __future__ import annotations
from uuid import UUID
import structlog
from fastapi import APIRouter, Depends, Query
from starlette.concurrency import run_in_threadpool
from app.auth_deps import get_current_identity, get_authorizer
from app.errors import AuthorizationError, ErrorKind, ResourceMissing
from app.models.completion import CompletionImage
from app.schemas.completion import CaptionUpdate, CompletionImagePublic, ImageOrder, ImagesAdd
from app.services.authorization import Identity, OwnershipAuthorizer, ResourceKind
from app.services.image_set import ImageCandidate, plan_display_order, validate_caption
from app.services.storage import ObjectStorage, get_storage
from app.services.stores import Stores, get_stores
from app.services.uploads import discard_objects, prepare_images, store_images

router = APIRouter(tags=["photos"])
log = structlog.get_logger()

def _to_public(img: CompletionImage) -> CompletionImagePublic:
    return CompletionImagePublic(
        id=img.id,
        completion_id=img.completion_id,
        participant_id=img.participant_id,
        image_url=img.image_url,
        is_starred=bool(img.is_starred),
        display_order=img.display_order,
        caption=img.caption,
        width=img.width,
        height=img.height,
        uploaded_at=img.uploaded_at,
    )

async def _owned_image(authorizer: OwnershipAuthorizer, stores: Stores, identity: Identity | None,
                       completion_id: UUID, image_id: UUID) -> CompletionImage:
    (await authorizer.authorize(identity, ResourceKind.IMAGE, image_id)).require()
    img = await stores.images.get(image_id)
    if img is None or img.completion_id != completion_id:
        # same answer as for someone else's image
        log.info("authz.denied", reason="image_not_in_completion", image_id=str(image_id))
        raise AuthorizationError(ErrorKind.FORBIDDEN)
    return img

@router.get("/completions/{completion_id}/images", response_model=list[CompletionImagePublic])
async def list_images(completion_id: UUID, stores: Stores = Depends(get_stores)):
    if await stores.completions.get(completion_id) is None:
        raise ResourceMissing("Fant ikke fullføringen")
    return [_to_public(i) for i in await stores.images.list_for_completion(completion_id)]

@router.post("/completions/{completion_id}/images", response_model=list[CompletionImagePublic], status_code=201)
async def add_images(
    completion_id: UUID,
    payload: ImagesAdd,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
    storage: ObjectStorage = Depends(get_storage),
):
    participant_id = (await authorizer.authorize(identity, ResourceKind.COMPLETION, completion_id)).require()
    completion = await stores.completions.get(completion_id)
    existing = await stores.images.list_for_completion(completion_id)
    has_star = any(i.is_starred for i in existing)

    prepared = await prepare_images(
        payload.images,
        participant_id=participant_id,
        event_year=completion.event_year,
        starred_index=None if has_star else 0,
        existing=[ImageCandidate(byte_size=i.byte_size or 0, starred=bool(i.is_starred), caption=i.caption)
                  for i in existing],
    )
    stored = await store_images(storage, prepared)
    start = max((i.display_order for i in existing), default=-1) + 1
    try:
        rows = await stores.images.add(completion_id, participant_id, completion.event_year, stored, start)
    except Exception:
        await discard_objects(storage, [s.prepared.key for s in stored])
        raise
    await stores.completions.refresh_counts(completion_id)
    log.info("images.added", completion_id=str(completion_id), count=len(rows))
    return [_to_public(r) for r in rows]

@router.put("/completions/{completion_id}/images/order", response_model=list[CompletionImagePublic])
async def reorder_images(
    completion_id: UUID,
    payload: ImageOrder,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    (await authorizer.authorize(identity, ResourceKind.COMPLETION, completion_id)).require()
    current = await stores.images.list_for_completion(completion_id)
    ranks = plan_display_order([i.id for i in current], payload.image_ids)
    await stores.images.set_display_order(completion_id, ranks)
    return [_to_public(i) for i in await stores.images.list_for_completion(completion_id)]

@router.put("/completions/{completion_id}/images/{image_id}/star", response_model=list[CompletionImagePublic])
async def star_image(
    completion_id: UUID,
    image_id: UUID,
    reset_votes: bool = Query(True),
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    await _owned_image(authorizer, stores, identity, completion_id, image_id)
    await stores.images.set_starred(completion_id, image_id)
    if reset_votes:
        await stores.votes.clear_for_completion(completion_id)
        await stores.completions.refresh_counts(completion_id)
        log.info("votes.reset", completion_id=str(completion_id))
    return [_to_public(i) for i in await stores.images.list_for_completion(completion_id)]

@router.delete("/completions/{completion_id}/images/{image_id}", status_code=204)
async def delete_image(
    completion_id: UUID,
    image_id: UUID,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
    storage: ObjectStorage = Depends(get_storage),
):
    await _owned_image(authorizer, stores, identity, completion_id, image_id)
    # last-image guard and star promotion run under one row lock
    deleted = await stores.images.delete(completion_id, image_id)
    key, promote = deleted.storage_key, deleted.promoted_id
    await stores.completions.refresh_counts(completion_id)
    try:
        await run_in_threadpool(storage.remove, key)
    except Exception:
        # row is gone already; the orphaned object is only logged
        log.exception("image.object_remove_failed", key=key)
    log.info("image.deleted", image_id=str(image_id), promoted=str(promote) if promote else None)

@router.patch("/images/{image_id}", response_model=CompletionImagePublic)
async def update_caption(
    image_id: UUID,
    payload: CaptionUpdate,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    (await authorizer.authorize(identity, ResourceKind.IMAGE, image_id)).require()
    caption = validate_caption(payload.caption)
    return _to_public(await stores.images.set_caption(image_id, caption))
