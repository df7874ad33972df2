"""
Store tests against a real Postgres (DATABASE_URL). Each test works in its own
random event year and removes it afterwards; skipped when no database answers.
"""
from __future__ import annotations
import asyncio
import importlib.util
import random
import uuid
from datetime import date
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import delete, select, text
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.config import settings
from app.db import Base
from app.errors import AuthorizationError, ErrorKind, ImageSetInvalid
from app.models.completion import Completion, CompletionImage
from app.models.participant import Participant
from app.models.vote import Vote
from app.services.authorization import Identity, OwnershipAuthorizer
from app.services.stores import (
    SqlCompletionStore,
    SqlImageStore,
    SqlOwnerLookup,
    SqlParticipantStore,
    SqlVoteStore,
    gallery_entries,
)
from app.services.votes import DuplicateVote, toggle_vote

MIGRATION = Path(__file__).resolve().parents[1] / "migrations" / "versions" / "20260301_0001_create_event_tables.py"


def _gallery_view_sql() -> str:
    spec = importlib.util.spec_from_file_location("event_tables_migration", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.GALLERY_VIEW


@pytest_asyncio.fixture
async def pg():
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text(_gallery_view_sql()))
    except Exception as e:
        await engine.dispose()
        pytest.skip(f"database unavailable: {e!r}")

    year = random.randint(3000, 9000)
    sessions = async_sessionmaker(engine, expire_on_commit=False)
    yield sessions, year

    async with sessions() as s:
        # completions, images, votes and comments cascade
        await s.execute(delete(Participant).where(Participant.event_year == year))
        await s.commit()
    await engine.dispose()


async def _participant(sessions, year: int, name: str, bib: int) -> Participant:
    async with sessions() as s:
        p = Participant(user_id=f"user-{uuid.uuid4().hex[:12]}", email=f"{name}@example.com",
                        full_name=name, bib_number=bib, event_year=year)
        s.add(p)
        await s.commit()
        return p


async def _completion(sessions, year: int, owner: Participant, images: int) -> tuple[Completion, list[CompletionImage]]:
    async with sessions() as s:
        c = Completion(id=uuid.uuid4(), participant_id=owner.id, event_year=year,
                       completed_date=date(year, 6, 1), image_count=images)
        s.add(c)
        rows = [
            CompletionImage(
                id=uuid.uuid4(), completion_id=c.id, participant_id=owner.id, event_year=year,
                storage_key=f"multi/{year}/{owner.id}/{uuid.uuid4().hex}.jpg",
                image_url=f"http://media.test/{i}.jpg", is_starred=(i == 0), display_order=i,
                byte_size=2048, width=640, height=480,
            )
            for i in range(images)
        ]
        s.add_all(rows)
        await s.commit()
        return c, rows


@pytest.mark.asyncio
async def test_second_vote_insert_is_a_duplicate(pg):
    sessions, year = pg
    owner = await _participant(sessions, year, "eier", 1)
    fan = await _participant(sessions, year, "fan", 2)
    c, _ = await _completion(sessions, year, owner, images=1)

    async with sessions() as s1, sessions() as s2:
        await SqlVoteStore(s1).add_vote(fan.id, c.id, year)
        with pytest.raises(DuplicateVote):
            await SqlVoteStore(s2).add_vote(fan.id, c.id, year)


@pytest.mark.asyncio
async def test_vote_for_missing_completion_is_not_a_duplicate(pg):
    sessions, year = pg
    fan = await _participant(sessions, year, "fan", 1)
    async with sessions() as s:
        with pytest.raises(AuthorizationError) as e:
            await SqlVoteStore(s).add_vote(fan.id, uuid.uuid4(), year)
    assert e.value.kind == ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_concurrent_toggles_leave_one_vote(pg):
    sessions, year = pg
    owner = await _participant(sessions, year, "eier", 1)
    fan = await _participant(sessions, year, "fan", 2)
    c, _ = await _completion(sessions, year, owner, images=1)

    async def toggle():
        async with sessions() as s:
            authorizer = OwnershipAuthorizer(SqlParticipantStore(s), SqlOwnerLookup(s), year)
            return await toggle_vote(authorizer, SqlVoteStore(s), Identity(fan.user_id), c.id)

    results = await asyncio.gather(toggle(), toggle())
    assert all(r.has_voted for r in results)
    async with sessions() as s:
        votes = (await s.execute(select(Vote).where(Vote.completion_id == c.id))).scalars().all()
        assert len(votes) == 1
        assert (await s.get(Completion, c.id)).vote_count == 1


@pytest.mark.asyncio
async def test_concurrent_registrations_get_distinct_bibs(pg):
    sessions, year = pg

    async def register(n: int):
        async with sessions() as s:
            identity = Identity(f"racer-{n}-{uuid.uuid4().hex[:8]}", f"racer{n}@example.com")
            fields = {"full_name": f"Løper {n}", "email": identity.email}
            return await SqlParticipantStore(s).register(identity, fields, year)

    registered = await asyncio.gather(*(register(n) for n in range(3)))
    assert sorted(p.bib_number for p in registered) == [1, 2, 3]


@pytest.mark.asyncio
async def test_gallery_entry_falls_back_to_tables_without_images(pg):
    sessions, year = pg
    owner = await _participant(sessions, year, "tom", 1)
    bare, _ = await _completion(sessions, year, owner, images=0)
    other = await _participant(sessions, year, "full", 2)
    shown, images = await _completion(sessions, year, other, images=2)

    async with sessions() as s:
        in_view = set((await s.execute(
            select(gallery_entries.c.id).where(gallery_entries.c.event_year == year)
        )).scalars().all())
        assert in_view == {shown.id}

        store = SqlCompletionStore(s)
        entry = await store.gallery_entry(bare.id)
        assert entry is not None
        assert entry.full_name == "tom"
        assert entry.starred_image_url is None

        entry = await store.gallery_entry(shown.id)
        assert entry.image_count == 2
        assert entry.starred_image_url == images[0].image_url

        assert [e.id for e in await store.list_gallery(year, limit=10)] == [shown.id]
        assert await store.gallery_entry(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_concurrent_deletes_keep_the_last_image(pg):
    sessions, year = pg
    owner = await _participant(sessions, year, "eier", 1)
    c, images = await _completion(sessions, year, owner, images=2)

    async def remove(image: CompletionImage):
        async with sessions() as s:
            return await SqlImageStore(s).delete(c.id, image.id)

    results = await asyncio.gather(*(remove(i) for i in images), return_exceptions=True)
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], ImageSetInvalid)
    assert failures[0].kind == ErrorKind.TOO_FEW_IMAGES

    async with sessions() as s:
        left = await SqlImageStore(s).list_for_completion(c.id)
    assert len(left) == 1
    assert left[0].is_starred is True
