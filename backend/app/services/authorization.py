"""
Ownership checks for every mutating operation.

Each check resolves the caller to their participant record for the active
event year, loads the owner of the target resource and compares the two.
Both lookups happen on every call; ownership and identity links can change
between requests, so nothing is cached here.
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import structlog

from app.errors import AuthorizationError, ErrorKind

log = structlog.get_logger()


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as reported by the identity provider."""
    id: str
    email: str | None = None


class ResourceKind(str, Enum):
    COMPLETION = "completion"
    IMAGE = "image"
    COMMENT = "comment"
    PARTICIPANT = "participant"


class ParticipantLookup(Protocol):
    async def find_id_by_identity(self, identity_id: str, event_year: int) -> uuid.UUID | None: ...


class OwnerLookup(Protocol):
    async def find_owner_participant_id(self, kind: ResourceKind, resource_id: uuid.UUID) -> uuid.UUID | None: ...


@dataclass(frozen=True)
class AuthorizationResult:
    authorized: bool
    participant_id: uuid.UUID | None = None
    reason: ErrorKind | None = None

    def require(self) -> uuid.UUID:
        """Return the caller's participant id or raise the denial."""
        if not self.authorized:
            raise AuthorizationError(self.reason or ErrorKind.FORBIDDEN)
        return self.participant_id


class OwnershipAuthorizer:
    def __init__(self, participants: ParticipantLookup, owners: OwnerLookup, event_year: int):
        self.participants = participants
        self.owners = owners
        self.event_year = event_year

    async def resolve_participant(self, identity: Identity | None) -> AuthorizationResult:
        if identity is None:
            return self._deny(ErrorKind.UNAUTHENTICATED)
        pid = await self.participants.find_id_by_identity(identity.id, self.event_year)
        if pid is None:
            return self._deny(ErrorKind.NO_PARTICIPANT_RECORD, identity=identity.id)
        return AuthorizationResult(authorized=True, participant_id=pid)

    async def authorize(self, identity: Identity | None, kind: ResourceKind,
                        resource_id: uuid.UUID) -> AuthorizationResult:
        caller = await self.resolve_participant(identity)
        if not caller.authorized:
            return caller
        owner_id = await self.owners.find_owner_participant_id(kind, resource_id)
        if owner_id is None:
            return self._deny(ErrorKind.NOT_FOUND, caller.participant_id, kind=kind.value, resource_id=str(resource_id))
        if owner_id != caller.participant_id:
            return self._deny(ErrorKind.FORBIDDEN, caller.participant_id, kind=kind.value, resource_id=str(resource_id))
        return caller

    async def authorize_vote(self, identity: Identity | None, completion_id: uuid.UUID) -> AuthorizationResult:
        """Any participant may vote, except on their own completion."""
        caller = await self.resolve_participant(identity)
        if not caller.authorized:
            return caller
        owner_id = await self.owners.find_owner_participant_id(ResourceKind.COMPLETION, completion_id)
        if owner_id is None:
            return self._deny(ErrorKind.NOT_FOUND, caller.participant_id, kind="vote", resource_id=str(completion_id))
        if owner_id == caller.participant_id:
            return self._deny(ErrorKind.SELF_VOTE_FORBIDDEN, caller.participant_id, resource_id=str(completion_id))
        return caller

    def _deny(self, reason: ErrorKind, participant_id: uuid.UUID | None = None, **ctx) -> AuthorizationResult:
        log.info("authz.denied", reason=reason.value,
                 participant_id=str(participant_id) if participant_id else None, **ctx)
        return AuthorizationResult(authorized=False, participant_id=participant_id, reason=reason)
