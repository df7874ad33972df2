from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Protocol

import structlog

from app.services.authorization import Identity, OwnershipAuthorizer

log = structlog.get_logger()


class DuplicateVote(Exception):
    """The (voter, completion) uniqueness constraint rejected an insert."""


class VoteStore(Protocol):
    async def find_vote_id(self, voter_id: uuid.UUID, completion_id: uuid.UUID) -> uuid.UUID | None: ...
    async def add_vote(self, voter_id: uuid.UUID, completion_id: uuid.UUID, event_year: int) -> None: ...
    async def remove_vote(self, vote_id: uuid.UUID) -> bool: ...
    async def refresh_vote_count(self, completion_id: uuid.UUID) -> int: ...


@dataclass(frozen=True)
class VoteResult:
    has_voted: bool
    vote_count: int


async def toggle_vote(authorizer: OwnershipAuthorizer, votes: VoteStore, identity: Identity | None,
                      completion_id: uuid.UUID) -> VoteResult:
    voter_id = (await authorizer.authorize_vote(identity, completion_id)).require()

    existing = await votes.find_vote_id(voter_id, completion_id)
    if existing is not None:
        removed = await votes.remove_vote(existing)
        if not removed:
            # a concurrent toggle already removed it
            log.info("vote.remove_noop", voter_id=str(voter_id), completion_id=str(completion_id))
        has_voted = False
    else:
        try:
            await votes.add_vote(voter_id, completion_id, authorizer.event_year)
        except DuplicateVote:
            # a concurrent toggle inserted first; the vote exists either way
            log.info("vote.insert_noop", voter_id=str(voter_id), completion_id=str(completion_id))
        has_voted = True

    count = await votes.refresh_vote_count(completion_id)
    return VoteResult(has_voted=has_voted, vote_count=count)
