"""
Database-backed implementations of the lookups and writes the routes and
services depend on. Each mutating method commits its own unit of work.
"""
from __future__ import annotations
import re
import uuid
from dataclasses import dataclass
from typing import Any, Sequence

from fastapi import Depends
from sqlalchemy import column, delete, func, select, table, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_session
from app.errors import MESSAGES, AppError, AuthorizationError, ErrorKind, ImageSetInvalid, RequestRejected
from app.models.comment import PhotoComment
from app.models.completion import Completion, CompletionImage
from app.models.participant import Participant
from app.models.vote import Vote
from app.schemas.completion import GalleryEntry
from app.services.authorization import Identity, ResourceKind
from app.services.image_set import next_starred
from app.services.lookup import Found, NotFound, ReadError, read_first
from app.services.uploads import StoredImage
from app.services.votes import DuplicateVote

BIB_ASSIGN_ATTEMPTS = 3
FOREIGN_KEY_VIOLATION = "23503"
_CONSTRAINT_RE = re.compile(r'constraint "([^"]+)"')

# Completions with at least one image, with live counts (see migrations)
gallery_entries = table(
    "gallery_entries",
    column("id"), column("participant_id"), column("completed_date"), column("duration_text"),
    column("comment"), column("vote_count"), column("comment_count"), column("image_count"),
    column("event_year"), column("full_name"), column("bib_number"), column("starred_image_url"),
    column("created_at"),
)


def _db_errors(e: IntegrityError) -> list[Any]:
    # asyncpg's own exception hangs off the DBAPI adapter as its cause
    orig = e.orig
    return [err for err in (orig, getattr(orig, "__cause__", None)) if err is not None]


def violated_constraint(e: IntegrityError) -> str | None:
    """Name of the constraint behind an IntegrityError, when the driver reports one."""
    for err in _db_errors(e):
        name = getattr(err, "constraint_name", None)
        if name:
            return name
    m = _CONSTRAINT_RE.search(str(e.orig))
    return m.group(1) if m else None


def sqlstate(e: IntegrityError) -> str | None:
    for err in _db_errors(e):
        code = getattr(err, "sqlstate", None) or getattr(err, "pgcode", None)
        if code:
            return code
    return None


class SqlParticipantStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_id_by_identity(self, identity_id: str, event_year: int) -> uuid.UUID | None:
        return await self.session.scalar(
            select(Participant.id).where(Participant.user_id == identity_id, Participant.event_year == event_year)
        )

    async def find_by_identity(self, identity_id: str, event_year: int) -> Participant | None:
        return await self.session.scalar(
            select(Participant).where(Participant.user_id == identity_id, Participant.event_year == event_year)
        )

    async def get(self, participant_id: uuid.UUID) -> Participant | None:
        return await self.session.get(Participant, participant_id)

    async def find_by_bib(self, event_year: int, bib_number: int) -> Participant | None:
        return await self.session.scalar(
            select(Participant).where(Participant.event_year == event_year, Participant.bib_number == bib_number)
        )

    async def list_for_year(self, event_year: int) -> list[Participant]:
        rows = await self.session.execute(
            select(Participant).where(Participant.event_year == event_year).order_by(Participant.bib_number.asc())
        )
        return list(rows.scalars().all())

    async def stats(self, event_year: int) -> tuple[int, int]:
        """(registered, completed) for ``event_year``."""
        row = (await self.session.execute(
            select(func.count(), func.count().filter(Participant.has_completed.is_(True)))
            .where(Participant.event_year == event_year)
        )).one()
        return row[0], row[1]

    async def list_by_identity(self, identity_id: str) -> list[Participant]:
        """Every year's record for one identity."""
        rows = await self.session.execute(
            select(Participant).where(Participant.user_id == identity_id).order_by(Participant.event_year.asc())
        )
        return list(rows.scalars().all())

    async def register(self, identity: Identity, fields: dict[str, Any], event_year: int) -> Participant:
        """Create the caller's record for ``event_year`` with the next free bib number."""
        for _ in range(BIB_ASSIGN_ATTEMPTS):
            if await self.find_id_by_identity(identity.id, event_year):
                raise RequestRejected(ErrorKind.ALREADY_REGISTERED, status=409)
            last_bib = await self.session.scalar(
                select(func.max(Participant.bib_number)).where(Participant.event_year == event_year)
            )
            p = Participant(user_id=identity.id, event_year=event_year, bib_number=(last_bib or 0) + 1, **fields)
            self.session.add(p)
            try:
                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                constraint = violated_constraint(e)
                if constraint == "uq_participant_identity_year":
                    raise RequestRejected(ErrorKind.ALREADY_REGISTERED, status=409)
                if constraint != "uq_participant_bib_year":
                    raise
                # lost the race for this bib number; take the next one
                continue
            await self.session.refresh(p)
            return p
        raise AppError(ErrorKind.INTERNAL, status=503)

    async def update(self, participant_id: uuid.UUID, fields: dict[str, Any]) -> Participant:
        if fields:
            await self.session.execute(update(Participant).where(Participant.id == participant_id).values(**fields))
            await self.session.commit()
        p = await self.session.get(Participant, participant_id, populate_existing=True)
        return p


_OWNER_COLUMNS = {
    ResourceKind.COMPLETION: (Completion.participant_id, Completion.id),
    ResourceKind.IMAGE: (CompletionImage.participant_id, CompletionImage.id),
    ResourceKind.COMMENT: (PhotoComment.participant_id, PhotoComment.id),
    ResourceKind.PARTICIPANT: (Participant.id, Participant.id),
}


class SqlOwnerLookup:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_owner_participant_id(self, kind: ResourceKind, resource_id: uuid.UUID) -> uuid.UUID | None:
        owner_col, id_col = _OWNER_COLUMNS[kind]
        return await self.session.scalar(select(owner_col).where(id_col == resource_id))


class SqlCompletionStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, completion_id: uuid.UUID) -> Completion | None:
        return await self.session.get(Completion, completion_id)

    async def find_for_participant(self, participant_id: uuid.UUID, event_year: int) -> Completion | None:
        return await self.session.scalar(
            select(Completion).where(Completion.participant_id == participant_id, Completion.event_year == event_year)
        )

    async def list_for_participants(self, participant_ids: Sequence[uuid.UUID]) -> list[Completion]:
        rows = await self.session.execute(
            select(Completion).where(Completion.participant_id.in_(participant_ids))
            .order_by(Completion.event_year.asc())
        )
        return list(rows.scalars().all())

    async def create_with_images(self, participant_id: uuid.UUID, event_year: int, fields: dict[str, Any],
                                 stored: Sequence[StoredImage]) -> Completion:
        """Completion row, its image rows and the participant's completed flag in one commit."""
        c = Completion(id=uuid.uuid4(), participant_id=participant_id, event_year=event_year,
                       image_count=len(stored), **fields)
        self.session.add(c)
        self.session.add_all(_image_rows(c.id, participant_id, event_year, stored, start_order=0))
        try:
            await self.session.execute(
                update(Participant).where(Participant.id == participant_id).values(has_completed=True)
            )
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if violated_constraint(e) == "uq_completion_one_per_year":
                raise RequestRejected(ErrorKind.COMPLETION_EXISTS, status=409)
            raise
        await self.session.refresh(c)
        return c

    async def update(self, completion_id: uuid.UUID, fields: dict[str, Any]) -> Completion:
        if fields:
            await self.session.execute(update(Completion).where(Completion.id == completion_id).values(**fields))
            await self.session.commit()
        return await self.session.get(Completion, completion_id, populate_existing=True)

    async def refresh_counts(self, completion_id: uuid.UUID) -> None:
        votes = select(func.count()).select_from(Vote).where(Vote.completion_id == completion_id).scalar_subquery()
        comments = (select(func.count()).select_from(PhotoComment)
                    .where(PhotoComment.completion_id == completion_id).scalar_subquery())
        images = (select(func.count()).select_from(CompletionImage)
                  .where(CompletionImage.completion_id == completion_id).scalar_subquery())
        await self.session.execute(
            update(Completion).where(Completion.id == completion_id)
            .values(vote_count=votes, comment_count=comments, image_count=images)
        )
        await self.session.commit()

    async def list_gallery(self, event_year: int, limit: int, offset: int = 0) -> list[GalleryEntry]:
        """Newest first; only completions with images are listed."""
        rows = (await self.session.execute(
            select(gallery_entries).where(gallery_entries.c.event_year == event_year)
            .order_by(gallery_entries.c.created_at.desc(), gallery_entries.c.id)
            .limit(limit).offset(offset)
        )).mappings().all()
        return [GalleryEntry.model_validate(dict(r)) for r in rows]

    async def _entry_from_view(self, completion_id: uuid.UUID):
        try:
            row = (await self.session.execute(
                select(gallery_entries).where(gallery_entries.c.id == completion_id)
            )).mappings().first()
        except SQLAlchemyError as e:
            return ReadError(e)
        return Found(GalleryEntry.model_validate(dict(row))) if row else NotFound()

    async def _entry_from_tables(self, completion_id: uuid.UUID):
        try:
            row = (await self.session.execute(
                select(Completion, Participant.full_name, Participant.bib_number)
                .join(Participant, Participant.id == Completion.participant_id)
                .where(Completion.id == completion_id)
            )).first()
            if row is None:
                return NotFound()
            starred_url = await self.session.scalar(
                select(CompletionImage.image_url)
                .where(CompletionImage.completion_id == completion_id, CompletionImage.is_starred.is_(True))
            )
        except SQLAlchemyError as e:
            return ReadError(e)
        c, full_name, bib_number = row
        return Found(GalleryEntry(
            id=c.id, participant_id=c.participant_id, completed_date=c.completed_date,
            duration_text=c.duration_text, comment=c.comment, vote_count=c.vote_count,
            comment_count=c.comment_count, image_count=c.image_count, event_year=c.event_year,
            full_name=full_name, bib_number=bib_number, starred_image_url=starred_url,
            created_at=c.created_at,
        ))

    async def gallery_entry(self, completion_id: uuid.UUID) -> GalleryEntry | None:
        # the view only lists completions with images; fall back to the tables for the rest
        return await read_first([
            ("gallery_view", lambda: self._entry_from_view(completion_id)),
            ("base_tables", lambda: self._entry_from_tables(completion_id)),
        ])


def _image_rows(completion_id: uuid.UUID, participant_id: uuid.UUID, event_year: int,
                stored: Sequence[StoredImage], start_order: int) -> list[CompletionImage]:
    return [
        CompletionImage(
            id=uuid.uuid4(),
            completion_id=completion_id,
            participant_id=participant_id,
            event_year=event_year,
            storage_key=s.prepared.key,
            image_url=s.url,
            is_starred=s.prepared.starred,
            display_order=start_order + i,
            caption=s.prepared.caption,
            byte_size=s.prepared.sanitized.metadata.byte_size,
            width=s.prepared.sanitized.metadata.width,
            height=s.prepared.sanitized.metadata.height,
        )
        for i, s in enumerate(stored)
    ]


def _too_few_images() -> ImageSetInvalid:
    return ImageSetInvalid([(ErrorKind.TOO_FEW_IMAGES, MESSAGES[ErrorKind.TOO_FEW_IMAGES])])


@dataclass(frozen=True)
class DeletedImage:
    storage_key: str
    promoted_id: uuid.UUID | None


class SqlImageStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _ordered(self, completion_id: uuid.UUID):
        return (select(CompletionImage).where(CompletionImage.completion_id == completion_id)
                .order_by(CompletionImage.display_order.asc(), CompletionImage.uploaded_at.asc()))

    async def list_for_completion(self, completion_id: uuid.UUID) -> list[CompletionImage]:
        rows = await self.session.execute(self._ordered(completion_id))
        return list(rows.scalars().all())

    async def list_for_participants(self, participant_ids: Sequence[uuid.UUID]) -> list[CompletionImage]:
        rows = await self.session.execute(
            select(CompletionImage).where(CompletionImage.participant_id.in_(participant_ids))
            .order_by(CompletionImage.completion_id, CompletionImage.display_order.asc())
        )
        return list(rows.scalars().all())

    async def get(self, image_id: uuid.UUID) -> CompletionImage | None:
        return await self.session.get(CompletionImage, image_id)

    async def add(self, completion_id: uuid.UUID, participant_id: uuid.UUID, event_year: int,
                  stored: Sequence[StoredImage], start_order: int) -> list[CompletionImage]:
        rows = _image_rows(completion_id, participant_id, event_year, stored, start_order)
        self.session.add_all(rows)
        await self.session.commit()
        return rows

    async def set_starred(self, completion_id: uuid.UUID, image_id: uuid.UUID) -> None:
        await self.session.execute(
            update(CompletionImage).where(CompletionImage.completion_id == completion_id)
            .values(is_starred=(CompletionImage.id == image_id))
        )
        await self.session.commit()

    async def set_display_order(self, completion_id: uuid.UUID, ranks: dict[uuid.UUID, int]) -> None:
        for image_id, rank in ranks.items():
            await self.session.execute(
                update(CompletionImage)
                .where(CompletionImage.id == image_id, CompletionImage.completion_id == completion_id)
                .values(display_order=rank)
            )
        await self.session.commit()

    async def set_caption(self, image_id: uuid.UUID, caption: str | None) -> CompletionImage:
        await self.session.execute(update(CompletionImage).where(CompletionImage.id == image_id).values(caption=caption))
        await self.session.commit()
        return await self.session.get(CompletionImage, image_id, populate_existing=True)

    async def delete(self, completion_id: uuid.UUID, image_id: uuid.UUID) -> DeletedImage:
        """
        Delete one image of a completion. If it held the star, the next image in
        display order takes it over in the same commit.

        The completion row is locked first, so concurrent deletes are serialized
        and the last image can never be removed.
        """
        await self.session.execute(
            select(Completion.id).where(Completion.id == completion_id).with_for_update()
        )
        current = list((await self.session.execute(
            self._ordered(completion_id).execution_options(populate_existing=True)
        )).scalars().all())
        target = next((i for i in current if i.id == image_id), None)
        if target is None:
            await self.session.rollback()
            raise AuthorizationError(ErrorKind.NOT_FOUND)
        if len(current) <= 1:
            await self.session.rollback()
            raise _too_few_images()

        promote_id = next_starred([i.id for i in current], image_id) if target.is_starred else None
        storage_key = target.storage_key
        await self.session.execute(delete(CompletionImage).where(CompletionImage.id == image_id))
        if promote_id is not None:
            await self.session.execute(
                update(CompletionImage).where(CompletionImage.id == promote_id).values(is_starred=True)
            )
        await self.session.commit()
        return DeletedImage(storage_key=storage_key, promoted_id=promote_id)


class SqlCommentStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_completion(self, completion_id: uuid.UUID) -> list[tuple[PhotoComment, str]]:
        rows = await self.session.execute(
            select(PhotoComment, Participant.full_name)
            .join(Participant, Participant.id == PhotoComment.participant_id)
            .where(PhotoComment.completion_id == completion_id)
            .order_by(PhotoComment.created_at.asc())
        )
        return [(c, name) for c, name in rows.all()]

    async def list_by_participants(self, participant_ids: Sequence[uuid.UUID]) -> list[PhotoComment]:
        rows = await self.session.execute(
            select(PhotoComment).where(PhotoComment.participant_id.in_(participant_ids))
            .order_by(PhotoComment.created_at.asc())
        )
        return list(rows.scalars().all())

    async def add(self, completion_id: uuid.UUID, participant_id: uuid.UUID, text: str) -> PhotoComment:
        c = PhotoComment(completion_id=completion_id, participant_id=participant_id, comment_text=text)
        self.session.add(c)
        await self.session.commit()
        await self.session.refresh(c)
        return c

    async def delete(self, comment_id: uuid.UUID, participant_id: uuid.UUID) -> uuid.UUID | None:
        """Delete and return the comment's completion id; the owner filter is repeated in the statement."""
        completion_id = await self.session.scalar(
            delete(PhotoComment)
            .where(PhotoComment.id == comment_id, PhotoComment.participant_id == participant_id)
            .returning(PhotoComment.completion_id)
        )
        await self.session.commit()
        return completion_id


class SqlVoteStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_vote_id(self, voter_id: uuid.UUID, completion_id: uuid.UUID) -> uuid.UUID | None:
        return await self.session.scalar(
            select(Vote.id).where(Vote.voter_participant_id == voter_id, Vote.completion_id == completion_id)
        )

    async def list_by_voters(self, voter_ids: Sequence[uuid.UUID]) -> list[Vote]:
        rows = await self.session.execute(
            select(Vote).where(Vote.voter_participant_id.in_(voter_ids)).order_by(Vote.created_at.asc())
        )
        return list(rows.scalars().all())

    async def add_vote(self, voter_id: uuid.UUID, completion_id: uuid.UUID, event_year: int) -> None:
        self.session.add(Vote(voter_participant_id=voter_id, completion_id=completion_id, event_year=event_year))
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if violated_constraint(e) == "uq_vote_once_per_voter":
                raise DuplicateVote()
            if sqlstate(e) == FOREIGN_KEY_VIOLATION:
                # completion deleted between the ownership check and the insert
                raise AuthorizationError(ErrorKind.NOT_FOUND)
            raise

    async def remove_vote(self, vote_id: uuid.UUID) -> bool:
        result = await self.session.execute(delete(Vote).where(Vote.id == vote_id))
        await self.session.commit()
        return result.rowcount > 0

    async def clear_for_completion(self, completion_id: uuid.UUID) -> None:
        await self.session.execute(delete(Vote).where(Vote.completion_id == completion_id))
        await self.session.commit()

    async def refresh_vote_count(self, completion_id: uuid.UUID) -> int:
        count = await self.session.scalar(
            select(func.count()).select_from(Vote).where(Vote.completion_id == completion_id)
        ) or 0
        await self.session.execute(update(Completion).where(Completion.id == completion_id).values(vote_count=count))
        await self.session.commit()
        return count


@dataclass
class Stores:
    participants: Any
    owners: Any
    completions: Any
    images: Any
    comments: Any
    votes: Any


def build_stores(session: AsyncSession) -> Stores:
    return Stores(
        participants=SqlParticipantStore(session),
        owners=SqlOwnerLookup(session),
        completions=SqlCompletionStore(session),
        images=SqlImageStore(session),
        comments=SqlCommentStore(session),
        votes=SqlVoteStore(session),
    )


async def get_stores(session: AsyncSession = Depends(get_session)) -> Stores:
    return build_stores(session)
