from __future__ import annotations
import asyncio
import base64
import binascii
import io
import math
import re
from dataclasses import dataclass
from typing import Callable

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from app.config import (
    MAX_FILE_BYTES,
    MIN_FILE_BYTES,
    MAX_IMAGE_DIMENSION,
    MAX_PROCESSING_SECONDS,
    OUTPUT_FORMAT,
    OUTPUT_QUALITY,
)
from app.errors import ErrorKind, ImageRejected

log = structlog.get_logger()

DATA_URI_RE = re.compile(r"^data:([\w.+-]+/[\w.+-]+);base64,(.+)$", re.DOTALL)

# Declared types are advisory; the sniffed format decides
DECLARED_MIME = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic", "image/heif"}
ALLOWED_FORMATS = frozenset({"JPEG", "PNG", "WEBP"})
# JPEGs with an MPF second frame (gain or depth maps) open as MPO
FORMAT_ALIASES = {"MPO": "JPEG"}
MIME_FOR_FORMAT = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}
EXT_FOR_FORMAT = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    format: str
    byte_size: int


@dataclass(frozen=True)
class ValidatedImage:
    data: bytes
    metadata: ImageMetadata
    declared_mime: str


@dataclass(frozen=True)
class SanitizedImage:
    data: bytes
    metadata: ImageMetadata

    @property
    def content_type(self) -> str:
        return MIME_FOR_FORMAT[self.metadata.format]

    @property
    def extension(self) -> str:
        return EXT_FOR_FORMAT[self.metadata.format]


@dataclass(frozen=True)
class ValidationConstraints:
    max_bytes: int = MAX_FILE_BYTES
    min_bytes: int = MIN_FILE_BYTES
    max_dimension: int = MAX_IMAGE_DIMENSION
    allowed_formats: frozenset[str] = ALLOWED_FORMATS


@dataclass(frozen=True)
class SanitizeTarget:
    max_dimension: int = MAX_IMAGE_DIMENSION
    output_format: str = OUTPUT_FORMAT
    output_quality: int = OUTPUT_QUALITY


DEFAULT_CONSTRAINTS = ValidationConstraints()
DEFAULT_TARGET = SanitizeTarget()


def parse_data_uri(payload: str, max_bytes: int = MAX_FILE_BYTES) -> tuple[str, bytes]:
    """
    Split a ``data:<mime>;base64,<body>`` string into (declared_mime, raw bytes).

    The decoded size is bounded from the encoded length first, so an oversized
    body is rejected without being decoded.
    """
    m = DATA_URI_RE.match(payload or "")
    if not m:
        raise ImageRejected(ErrorKind.INVALID_ENCODING)
    declared, body = m.group(1).lower(), m.group(2).strip()
    if declared not in DECLARED_MIME:
        raise ImageRejected(ErrorKind.INVALID_ENCODING)
    # every 4 base64 chars carry 3 bytes; padding costs at most 2
    if (len(body) // 4) * 3 - 2 > max_bytes:
        raise ImageRejected(ErrorKind.TOO_LARGE)
    try:
        data = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        raise ImageRejected(ErrorKind.INVALID_ENCODING)
    return declared, data


def identify_image(data: bytes) -> tuple[str, int, int]:
    """Return (format, width, height) from the byte stream itself."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt, (width, height) = img.format, img.size
        with Image.open(io.BytesIO(data)) as img:
            img.verify()  # structural integrity
    except Image.DecompressionBombError:
        raise ImageRejected(ErrorKind.DIMENSION_EXCEEDED)
    except UnidentifiedImageError:
        raise ImageRejected(ErrorKind.NOT_AN_IMAGE)
    except Exception as e:
        # corrupt streams surface as whatever the decoder trips over
        log.info("upload.identify_failed", error=type(e).__name__)
        raise ImageRejected(ErrorKind.NOT_AN_IMAGE)
    if not fmt:
        raise ImageRejected(ErrorKind.NOT_AN_IMAGE)
    return FORMAT_ALIASES.get(fmt, fmt), width, height


def validate_image(payload: str, constraints: ValidationConstraints = DEFAULT_CONSTRAINTS) -> ValidatedImage:
    declared, data = parse_data_uri(payload, constraints.max_bytes)

    if len(data) > constraints.max_bytes:
        raise ImageRejected(ErrorKind.TOO_LARGE)
    if len(data) < constraints.min_bytes:
        raise ImageRejected(ErrorKind.TOO_SMALL)

    fmt, width, height = identify_image(data)
    if fmt not in constraints.allowed_formats:
        log.warning("upload.rejected", reason="unsupported_format", detected=fmt, declared=declared)
        raise ImageRejected(ErrorKind.UNSUPPORTED_FORMAT)
    if MIME_FOR_FORMAT.get(fmt) != declared.replace("image/jpg", "image/jpeg"):
        log.warning("upload.mime_mismatch", detected=fmt, declared=declared)
    if width > constraints.max_dimension or height > constraints.max_dimension:
        raise ImageRejected(ErrorKind.DIMENSION_EXCEEDED)

    return ValidatedImage(
        data=data,
        metadata=ImageMetadata(width=width, height=height, format=fmt, byte_size=len(data)),
        declared_mime=declared,
    )


def _flatten(img: Image.Image) -> Image.Image:
    """Copy pixels onto a fresh RGB canvas; nothing from ``img.info`` survives."""
    canvas = Image.new("RGB", img.size, (255, 255, 255))
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        canvas.paste(rgba, mask=rgba.getchannel("A"))
    else:
        canvas.paste(img.convert("RGB"))
    return canvas


def sanitize_image(data: bytes, target: SanitizeTarget = DEFAULT_TARGET) -> SanitizedImage:
    """
    Re-encode validated bytes into the canonical output format.

    Orientation is applied to the pixels before metadata is dropped, the image
    is only ever shrunk to ``target.max_dimension``, and the output carries no
    EXIF/ICC/GPS data.
    """
    try:
        with Image.open(io.BytesIO(data)) as src:
            upright = ImageOps.exif_transpose(src)
            clean = _flatten(upright)
        clean.thumbnail((target.max_dimension, target.max_dimension), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        clean.save(out, format=target.output_format, quality=target.output_quality, optimize=True)
    except Exception as e:
        log.warning("upload.rejected", reason="sanitization_failed", error=repr(e))
        raise ImageRejected(ErrorKind.SANITIZATION_FAILED) from e

    encoded = out.getvalue()
    return SanitizedImage(
        data=encoded,
        metadata=ImageMetadata(
            width=clean.width, height=clean.height, format=target.output_format, byte_size=len(encoded)
        ),
    )


def processing_budget(byte_size: int) -> float:
    """Seconds allowed for sanitizing ``byte_size`` bytes: 1s per started MiB, capped."""
    started_mib = max(1, math.ceil(byte_size / (1024 * 1024)))
    return float(min(started_mib, MAX_PROCESSING_SECONDS))


async def sanitize_with_deadline(
    validated: ValidatedImage,
    target: SanitizeTarget = DEFAULT_TARGET,
    *,
    timeout: float | None = None,
    sanitizer: Callable[[bytes, SanitizeTarget], SanitizedImage] = sanitize_image,
) -> SanitizedImage:
    budget = timeout if timeout is not None else processing_budget(validated.metadata.byte_size)
    try:
        return await asyncio.wait_for(run_in_threadpool(sanitizer, validated.data, target), timeout=budget)
    except asyncio.TimeoutError:
        log.warning("upload.rejected", reason="sanitization_timeout", budget=budget,
                    byte_size=validated.metadata.byte_size)
        raise ImageRejected(ErrorKind.SANITIZATION_TIMEOUT)
