"""
Error taxonomy shared by the upload pipeline, the ownership checks and the
image-set rules.

Every expected failure is an ``AppError`` carrying a kind, a short user-facing
message (Norwegian, like the rest of the site) and an HTTP status. Nothing in
here ever carries decoder or storage internals; those are logged server-side
and replaced by ``INTERNAL``.
"""
from __future__ import annotations
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    # validation / sanitization
    INVALID_ENCODING = "invalid_encoding"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    NOT_AN_IMAGE = "not_an_image"
    UNSUPPORTED_FORMAT = "unsupported_format"
    DIMENSION_EXCEEDED = "dimension_exceeded"
    SANITIZATION_FAILED = "sanitization_failed"
    SANITIZATION_TIMEOUT = "sanitization_timeout"
    # authorization
    UNAUTHENTICATED = "unauthenticated"
    NO_PARTICIPANT_RECORD = "no_participant_record"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    SELF_VOTE_FORBIDDEN = "self_vote_forbidden"
    # image set
    TOO_FEW_IMAGES = "too_few_images"
    TOO_MANY_IMAGES = "too_many_images"
    TOTAL_SIZE_EXCEEDED = "total_size_exceeded"
    NO_STARRED_IMAGE = "no_starred_image"
    MULTIPLE_STARRED_IMAGES = "multiple_starred_images"
    CAPTION_TOO_LONG = "caption_too_long"
    INVALID_IMAGE_ORDER = "invalid_image_order"
    # request level
    INVALID_COMPLETION_DATE = "invalid_completion_date"
    EMPTY_COMMENT = "empty_comment"
    COMMENT_TOO_LONG = "comment_too_long"
    ALREADY_REGISTERED = "already_registered"
    EMAIL_REQUIRED = "email_required"
    COMPLETION_EXISTS = "completion_exists"
    INTERNAL = "internal_error"


MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INVALID_ENCODING: "Ugyldig filformat. Last opp et bilde (JPEG, PNG eller WebP).",
    ErrorKind.TOO_SMALL: "Filen er for liten eller korrupt.",
    ErrorKind.TOO_LARGE: "Filen er for stor (maks 10MB).",
    ErrorKind.NOT_AN_IMAGE: "Ugyldig bildefil. Filen ser ikke ut til å være et gyldig bilde.",
    ErrorKind.UNSUPPORTED_FORMAT: "Ugyldig format. Kun JPEG, PNG og WebP er tillatt.",
    ErrorKind.DIMENSION_EXCEEDED: "Bildet er for stort (maks 4096px).",
    ErrorKind.SANITIZATION_FAILED: "Kunne ikke behandle bildefilen. Prøv et annet bilde.",
    ErrorKind.SANITIZATION_TIMEOUT: "Behandlingen av bildet tok for lang tid. Prøv et mindre bilde.",
    ErrorKind.UNAUTHENTICATED: "Ikke autentisert",
    ErrorKind.NO_PARTICIPANT_RECORD: "Deltakerprofil ikke funnet",
    ErrorKind.NOT_FOUND: "Ikke autorisert",
    ErrorKind.FORBIDDEN: "Ikke autorisert",
    ErrorKind.SELF_VOTE_FORBIDDEN: "Du kan ikke stemme på ditt eget bilde",
    ErrorKind.TOO_FEW_IMAGES: "Minst ett bilde er påkrevd",
    ErrorKind.TOO_MANY_IMAGES: "Maksimalt 10 bilder tillatt",
    ErrorKind.TOTAL_SIZE_EXCEEDED: "Total filstørrelse overstiger 50MB",
    ErrorKind.NO_STARRED_IMAGE: "Du må velge ett hovedbilde",
    ErrorKind.MULTIPLE_STARRED_IMAGES: "Kun ett bilde kan være hovedbilde",
    ErrorKind.CAPTION_TOO_LONG: "Bildetekst kan ikke være lengre enn 200 tegn",
    ErrorKind.INVALID_IMAGE_ORDER: "Ugyldig rekkefølge på bildene",
    ErrorKind.INVALID_COMPLETION_DATE: "Datoen må være i arrangementsåret og ikke i fremtiden",
    ErrorKind.EMPTY_COMMENT: "Kommentaren kan ikke være tom",
    ErrorKind.COMMENT_TOO_LONG: "Kommentaren kan ikke være lengre enn 500 tegn",
    ErrorKind.ALREADY_REGISTERED: "Du er allerede påmeldt for dette året",
    ErrorKind.EMAIL_REQUIRED: "E-postadresse mangler",
    ErrorKind.COMPLETION_EXISTS: "Du har allerede sendt inn en fullføring for dette året",
    ErrorKind.INTERNAL: "En feil oppstod. Prøv igjen senere.",
}


class AppError(Exception):
    """Expected, user-correctable failure. Never retried automatically."""

    status: int = 400

    def __init__(self, kind: ErrorKind, message: str | None = None, status: int | None = None):
        self.kind = kind
        self.message = message or MESSAGES[kind]
        if status is not None:
            self.status = status
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.kind.value

    def to_response(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


_IMAGE_STATUS = {
    ErrorKind.TOO_LARGE: 413,
    ErrorKind.UNSUPPORTED_FORMAT: 415,
    ErrorKind.SANITIZATION_TIMEOUT: 408,
}


class ImageRejected(AppError):
    """A single uploaded image failed validation or sanitization."""

    def __init__(self, kind: ErrorKind, message: str | None = None, *, index: int | None = None):
        super().__init__(kind, message, status=_IMAGE_STATUS.get(kind, 422))
        self.index = index

    def to_response(self) -> dict[str, Any]:
        body = super().to_response()
        if self.index is not None:
            body["index"] = self.index
        return body


_AUTH_STATUS = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NO_PARTICIPANT_RECORD: 403,
    ErrorKind.NOT_FOUND: 403,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.SELF_VOTE_FORBIDDEN: 403,
}


class AuthorizationError(AppError):
    def __init__(self, kind: ErrorKind):
        super().__init__(kind, status=_AUTH_STATUS[kind])

    @property
    def code(self) -> str:
        # Missing and foreign resources look the same to the client
        if self.kind in (ErrorKind.NOT_FOUND, ErrorKind.FORBIDDEN):
            return "not_authorized"
        return self.kind.value


class ImageSetInvalid(AppError):
    """One or more image-set rules failed; ``issues`` lists all of them."""

    def __init__(self, issues: list[tuple[ErrorKind, str]]):
        kind, message = issues[0]
        super().__init__(kind, message, status=422)
        self.issues = issues

    def to_response(self) -> dict[str, Any]:
        body = super().to_response()
        body["errors"] = [{"code": k.value, "message": m} for k, m in self.issues]
        return body


class RequestRejected(AppError):
    """Plain request-level rule failure (dates, comments, duplicates)."""


class ResourceMissing(AppError):
    """Read of a public resource that does not exist."""

    def __init__(self, message: str = "Finner ikke det du leter etter."):
        super().__init__(ErrorKind.NOT_FOUND, message, status=404)
