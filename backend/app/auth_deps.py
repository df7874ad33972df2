from __future__ import annotations
import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.config import settings
from app.security import decode_token
from app.services.authorization import Identity, OwnershipAuthorizer
from app.services.stores import Stores, get_stores

log = structlog.get_logger()

# No auto error: a missing session is reported by the authorizer as unauthenticated
security = HTTPBearer(auto_error=False)

async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Identity | None:
    if credentials is None:
        return None
    try:
        data = decode_token(credentials.credentials)
    except jwt.PyJWTError as e:
        log.info("auth.failed", error=type(e).__name__)
        return None
    if data.get("type", "access") != "access" or not data.get("sub"):
        return None
    return Identity(id=str(data["sub"]), email=data.get("email"))

async def get_authorizer(stores: Stores = Depends(get_stores)) -> OwnershipAuthorizer:
    return OwnershipAuthorizer(stores.participants, stores.owners, settings.event_year)
