from __future__ import annotations
import asyncio
import uuid

import pytest

from app.errors import AuthorizationError, ErrorKind
from app.models.completion import Completion
from app.services.authorization import Identity, OwnershipAuthorizer
from app.services.votes import toggle_vote
from conftest import FakeOwnerLookup, FakeParticipantStore, FakeVoteStore, MemoryDB

YEAR = 2026


@pytest.fixture
def setup():
    db = MemoryDB()
    owner = db.add_participant("owner", "Runner", YEAR)
    db.add_participant("fan", "Fan", YEAR)
    c = Completion(id=uuid.uuid4(), participant_id=owner.id, event_year=YEAR, vote_count=0)
    db.completions[c.id] = c
    authorizer = OwnershipAuthorizer(FakeParticipantStore(db), FakeOwnerLookup(db), YEAR)
    return db, c, authorizer, FakeVoteStore(db)


@pytest.mark.asyncio
async def test_toggle_on_then_off(setup):
    db, c, authorizer, votes = setup
    first = await toggle_vote(authorizer, votes, Identity("fan"), c.id)
    assert (first.has_voted, first.vote_count) == (True, 1)
    assert c.vote_count == 1

    second = await toggle_vote(authorizer, votes, Identity("fan"), c.id)
    assert (second.has_voted, second.vote_count) == (False, 0)
    assert not db.votes


@pytest.mark.asyncio
async def test_self_vote_rejected(setup):
    db, c, authorizer, votes = setup
    with pytest.raises(AuthorizationError) as e:
        await toggle_vote(authorizer, votes, Identity("owner"), c.id)
    assert e.value.kind == ErrorKind.SELF_VOTE_FORBIDDEN
    assert not db.votes


@pytest.mark.asyncio
async def test_concurrent_toggles_never_duplicate(setup):
    db, c, authorizer, votes = setup
    results = await asyncio.gather(
        toggle_vote(authorizer, votes, Identity("fan"), c.id),
        toggle_vote(authorizer, votes, Identity("fan"), c.id),
    )
    # both saw no vote; the second insert hit the uniqueness rule and became a no-op
    assert len(db.votes) == 1
    assert votes.duplicates == 1
    assert all(r.has_voted for r in results)
    assert c.vote_count == 1


@pytest.mark.asyncio
async def test_concurrent_removals_settle_on_zero(setup):
    db, c, authorizer, votes = setup
    await toggle_vote(authorizer, votes, Identity("fan"), c.id)
    results = await asyncio.gather(
        toggle_vote(authorizer, votes, Identity("fan"), c.id),
        toggle_vote(authorizer, votes, Identity("fan"), c.id),
    )
    assert not db.votes
    assert [r.vote_count for r in results] == [0, 0]
