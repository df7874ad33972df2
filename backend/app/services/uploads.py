"""
Upload ingestion: validate every image, check the image set, sanitize, name
and only then write to object storage. A failure at any step before storage
leaves nothing behind; a storage failure removes what was already written.
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol, Sequence

import structlog
from starlette.concurrency import run_in_threadpool

from app.errors import MESSAGES, AppError, ErrorKind, ImageRejected, ImageSetInvalid
from app.services.image_set import ImageCandidate, normalize_caption, validate_image_set
from app.services.media import SanitizedImage, ValidatedImage, sanitize_with_deadline, validate_image
from app.services.naming import derive_key, object_path
from app.services.storage import ObjectStorage

log = structlog.get_logger()


class EncodedImage(Protocol):
    data: str
    caption: str | None


@dataclass(frozen=True)
class PreparedImage:
    sanitized: SanitizedImage
    key: str
    caption: str | None
    starred: bool


@dataclass(frozen=True)
class StoredImage:
    prepared: PreparedImage
    url: str


def _check_set(existing, sizes, starred_index, captions) -> None:
    candidates = list(existing) + [
        ImageCandidate(byte_size=size, starred=(i == starred_index), caption=captions[i])
        for i, size in enumerate(sizes)
    ]
    validate_image_set(candidates).raise_for_issues()


def _validate_all(uploads: Sequence[EncodedImage]) -> list[ValidatedImage]:
    validated = []
    for index, upload in enumerate(uploads):
        try:
            validated.append(validate_image(upload.data))
        except ImageRejected as e:
            e.index = index
            log.info("upload.rejected", reason=e.code, index=index)
            raise
    return validated


async def prepare_images(
    uploads: Sequence[EncodedImage],
    *,
    participant_id: uuid.UUID,
    event_year: int,
    starred_index: int | None,
    existing: Sequence[ImageCandidate] = (),
    now: datetime | None = None,
) -> list[PreparedImage]:
    """
    Turn encoded uploads into sanitized, named images ready for storage.

    ``existing`` are the images the completion already has. Count, star and
    caption rules are checked over existing + new before anything is decoded;
    the total size is checked again once the real sizes are known.
    """
    if not uploads:
        raise ImageSetInvalid([(ErrorKind.TOO_FEW_IMAGES, MESSAGES[ErrorKind.TOO_FEW_IMAGES])])
    captions = [normalize_caption(u.caption) for u in uploads]
    _check_set(existing, [0] * len(uploads), starred_index, captions)

    validated = _validate_all(uploads)
    _check_set(existing, [v.metadata.byte_size for v in validated], starred_index, captions)

    base = now or datetime.now(timezone.utc)
    prepared = []
    for index, image in enumerate(validated):
        try:
            sanitized = await sanitize_with_deadline(image)
        except ImageRejected as e:
            e.index = index
            raise
        # one millisecond apart so identical files in a batch never share a key
        key = derive_key(sanitized.data, participant_id, base + timedelta(milliseconds=index), sanitized.extension)
        prepared.append(PreparedImage(
            sanitized=sanitized,
            key=object_path(event_year, participant_id, key),
            caption=captions[index],
            starred=(index == starred_index),
        ))
    return prepared


async def discard_objects(storage: ObjectStorage, keys: Sequence[str]) -> None:
    for key in keys:
        try:
            await run_in_threadpool(storage.remove, key)
        except Exception:
            log.exception("upload.cleanup_failed", key=key)


async def store_images(storage: ObjectStorage, prepared: Sequence[PreparedImage]) -> list[StoredImage]:
    stored: list[StoredImage] = []
    try:
        for item in prepared:
            url = await run_in_threadpool(storage.put, item.key, item.sanitized.data, item.sanitized.content_type)
            stored.append(StoredImage(prepared=item, url=url))
    except Exception as e:
        log.exception("upload.storage_failed", stored=len(stored), total=len(prepared))
        await discard_objects(storage, [s.prepared.key for s in stored])
        raise AppError(ErrorKind.INTERNAL, status=502) from e
    for s in stored:
        log.info("upload.stored", key=s.prepared.key, byte_size=s.prepared.sanitized.metadata.byte_size)
    return stored
