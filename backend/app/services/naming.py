from __future__ import annotations
import hashlib
import uuid
from datetime import datetime, timezone

DIGEST_PREFIX_LEN = 16
ALLOWED_EXTENSIONS = {"jpg", "png", "webp"}

def derive_key(data: bytes, participant_id: uuid.UUID | str, uploaded_at: datetime | None = None,
               ext: str = "jpg") -> str:
    """
    Content-addressed object name: ``{participant}-{epoch_ms}-{sha256[:16]}.{ext}``.
    Nothing user supplied ends up in the key.
    """
    pid = uuid.UUID(str(participant_id))
    if ext not in ALLOWED_EXTENSIONS:
        raise ValueError(f"unsupported extension {ext!r}")
    ts = uploaded_at or datetime.now(timezone.utc)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    epoch_ms = int(ts.timestamp() * 1000)
    digest = hashlib.sha256(data).hexdigest()[:DIGEST_PREFIX_LEN]
    return f"{pid}-{epoch_ms}-{digest}.{ext}"

def object_path(event_year: int, participant_id: uuid.UUID | str, key: str) -> str:
    return f"multi/{int(event_year)}/{uuid.UUID(str(participant_id))}/{key}"
