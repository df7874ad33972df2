from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from typing import Sequence

from app.config import (
    MAX_CAPTION_LENGTH,
    MAX_IMAGES_PER_COMPLETION,
    MAX_TOTAL_BYTES,
    MIN_IMAGES_PER_COMPLETION,
)
from app.errors import MESSAGES, ErrorKind, ImageSetInvalid


@dataclass(frozen=True)
class ImageCandidate:
    byte_size: int
    starred: bool
    caption: str | None = None


@dataclass
class ImageSetValidation:
    issues: list[tuple[ErrorKind, str]] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues

    @property
    def kinds(self) -> list[ErrorKind]:
        return [k for k, _ in self.issues]

    def raise_for_issues(self) -> None:
        if self.issues:
            raise ImageSetInvalid(self.issues)

    def add(self, kind: ErrorKind) -> None:
        self.issues.append((kind, MESSAGES[kind]))


def normalize_caption(caption: str | None) -> str | None:
    """Trimmed caption, or None when blank."""
    if caption is None:
        return None
    trimmed = caption.strip()
    return trimmed or None


def validate_caption(caption: str | None) -> str | None:
    trimmed = normalize_caption(caption)
    if trimmed is not None and len(trimmed) > MAX_CAPTION_LENGTH:
        raise ImageSetInvalid([(ErrorKind.CAPTION_TOO_LONG, MESSAGES[ErrorKind.CAPTION_TOO_LONG])])
    return trimmed


def validate_image_set(images: Sequence[ImageCandidate]) -> ImageSetValidation:
    """Check every image-set rule and report all violations at once."""
    result = ImageSetValidation()

    if len(images) < MIN_IMAGES_PER_COMPLETION:
        result.add(ErrorKind.TOO_FEW_IMAGES)
    elif len(images) > MAX_IMAGES_PER_COMPLETION:
        result.add(ErrorKind.TOO_MANY_IMAGES)

    if sum(img.byte_size for img in images) > MAX_TOTAL_BYTES:
        result.add(ErrorKind.TOTAL_SIZE_EXCEEDED)

    starred = sum(1 for img in images if img.starred)
    if images and starred == 0:
        result.add(ErrorKind.NO_STARRED_IMAGE)
    elif starred > 1:
        result.add(ErrorKind.MULTIPLE_STARRED_IMAGES)

    if any(len(normalize_caption(img.caption) or "") > MAX_CAPTION_LENGTH for img in images):
        result.add(ErrorKind.CAPTION_TOO_LONG)

    return result


def plan_display_order(current_ids: Sequence[uuid.UUID], requested_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, int]:
    """
    Map each image id to its new rank. ``requested_ids`` must be a permutation of
    the completion's current images, so ranks stay a total order without gaps.
    """
    if len(requested_ids) != len(set(requested_ids)) or set(requested_ids) != set(current_ids):
        raise ImageSetInvalid([(ErrorKind.INVALID_IMAGE_ORDER, MESSAGES[ErrorKind.INVALID_IMAGE_ORDER])])
    return {image_id: rank for rank, image_id in enumerate(requested_ids)}


def next_starred(ordered_ids: Sequence[uuid.UUID], removed_id: uuid.UUID) -> uuid.UUID | None:
    """The image that takes over the star when ``removed_id`` is deleted."""
    for image_id in ordered_ids:
        if image_id != removed_id:
            return image_id
    return None
