from __future__ import annotations
from datetime import datetime, timezone
from uuid import UUID
import structlog
from fastapi import APIRouter, Depends, Query
from app.auth_deps import get_current_identity, get_authorizer
from app.config import settings
from app.errors import AuthorizationError, ErrorKind, RequestRejected, ResourceMissing
from app.models.participant import Participant
from app.schemas.comment import CommentPublic
from app.schemas.completion import CompletionImagePublic
from app.schemas.export import DataExport, ExportedCompletion, ExportedVote
from app.schemas.participant import (
    ParticipantDetail,
    ParticipantPrivate,
    ParticipantPublic,
    ParticipantRegister,
    ParticipantStats,
    ParticipantUpdate,
)
from app.services.authorization import Identity, OwnershipAuthorizer, ResourceKind
from app.services.stores import Stores, get_stores

router = APIRouter(prefix="/participants", tags=["participants"])
log = structlog.get_logger()

def _to_private(p: Participant) -> ParticipantPrivate:
    return ParticipantPrivate(
        id=p.id,
        full_name=p.full_name,
        bib_number=p.bib_number,
        has_completed=p.has_completed,
        event_year=p.event_year,
        email=p.email,
        phone_number=p.phone_number,
        postal_address=p.postal_address,
        created_at=p.created_at,
    )

def _to_public(p: Participant) -> ParticipantPublic:
    return ParticipantPublic(
        id=p.id,
        full_name=p.full_name,
        bib_number=p.bib_number,
        has_completed=p.has_completed,
        event_year=p.event_year,
    )

@router.get("", response_model=list[ParticipantPublic])
async def list_participants(
    year: int | None = Query(None, ge=2000, le=2100),
    stores: Stores = Depends(get_stores),
):
    return [_to_public(p) for p in await stores.participants.list_for_year(year or settings.event_year)]

@router.get("/stats", response_model=ParticipantStats)
async def participant_stats(
    year: int | None = Query(None, ge=2000, le=2100),
    stores: Stores = Depends(get_stores),
):
    event_year = year or settings.event_year
    registered, completed = await stores.participants.stats(event_year)
    return ParticipantStats(event_year=event_year, registered=registered, completed=completed)

@router.post("", response_model=ParticipantPrivate, status_code=201)
async def register(
    payload: ParticipantRegister,
    identity: Identity | None = Depends(get_current_identity),
    stores: Stores = Depends(get_stores),
):
    if identity is None:
        raise AuthorizationError(ErrorKind.UNAUTHENTICATED)
    email = payload.email or identity.email
    if not email:
        raise RequestRejected(ErrorKind.EMAIL_REQUIRED, status=422)
    fields = {
        "full_name": payload.full_name.strip(),
        "email": str(email),
        "phone_number": payload.phone_number,
        "postal_address": payload.postal_address,
    }
    p = await stores.participants.register(identity, fields, settings.event_year)
    log.info("participant.registered", participant_id=str(p.id), bib_number=p.bib_number, event_year=p.event_year)
    return _to_private(p)

@router.get("/me", response_model=ParticipantPrivate)
async def me(
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    participant_id = (await authorizer.resolve_participant(identity)).require()
    return _to_private(await stores.participants.get(participant_id))

@router.get("/me/export", response_model=DataExport)
async def export_my_data(
    identity: Identity | None = Depends(get_current_identity),
    stores: Stores = Depends(get_stores),
):
    """Every record held about the caller, across event years."""
    if identity is None:
        raise AuthorizationError(ErrorKind.UNAUTHENTICATED)
    records = await stores.participants.list_by_identity(identity.id)
    if not records:
        raise AuthorizationError(ErrorKind.NO_PARTICIPANT_RECORD)
    ids = [p.id for p in records]
    completions = await stores.completions.list_for_participants(ids)
    images = await stores.images.list_for_participants(ids)
    comments = await stores.comments.list_by_participants(ids)
    votes = await stores.votes.list_by_voters(ids)
    log.info("participant.exported", identity=identity.id, records=len(records))
    return DataExport(
        exported_at=datetime.now(timezone.utc),
        participants=[_to_private(p) for p in records],
        completions=[ExportedCompletion.model_validate(c, from_attributes=True) for c in completions],
        images=[CompletionImagePublic.model_validate(i, from_attributes=True) for i in images],
        comments=[CommentPublic.model_validate(c, from_attributes=True) for c in comments],
        votes=[ExportedVote.model_validate(v, from_attributes=True) for v in votes],
    )

@router.get("/{year}/{bib_number}", response_model=ParticipantDetail)
async def participant_detail(year: int, bib_number: int, stores: Stores = Depends(get_stores)):
    p = await stores.participants.find_by_bib(year, bib_number)
    if p is None:
        raise ResourceMissing("Fant ikke deltakeren")
    detail = ParticipantDetail(**_to_public(p).model_dump())
    completion = await stores.completions.find_for_participant(p.id, year)
    if completion is not None:
        detail.completion = await stores.completions.gallery_entry(completion.id)
        images = await stores.images.list_for_completion(completion.id)
        images.sort(key=lambda i: (not i.is_starred, i.display_order))
        detail.images = [CompletionImagePublic.model_validate(i, from_attributes=True) for i in images]
    return detail

@router.patch("/{participant_id}", response_model=ParticipantPrivate)
async def update_profile(
    participant_id: UUID,
    payload: ParticipantUpdate,
    identity: Identity | None = Depends(get_current_identity),
    authorizer: OwnershipAuthorizer = Depends(get_authorizer),
    stores: Stores = Depends(get_stores),
):
    (await authorizer.authorize(identity, ResourceKind.PARTICIPANT, participant_id)).require()
    sent = payload.model_fields_set
    fields = {}
    if "full_name" in sent and payload.full_name is not None:
        fields["full_name"] = payload.full_name.strip()
    if "phone_number" in sent:
        fields["phone_number"] = payload.phone_number
    if "postal_address" in sent:
        fields["postal_address"] = payload.postal_address
    p = await stores.participants.update(participant_id, fields)
    return _to_private(p)
