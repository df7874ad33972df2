from __future__ import annotations
import html
import re
from datetime import date

from app.config import MAX_COMMENT_LENGTH
from app.errors import ErrorKind, RequestRejected

_TAG_RE = re.compile(r"<[^>]*>")

def strip_html(text: str | None) -> str | None:
    """Drop markup from free text; blank results become None."""
    if text is None:
        return None
    cleaned = html.unescape(_TAG_RE.sub("", text))
    cleaned = _TAG_RE.sub("", cleaned).strip()
    return cleaned or None

def check_completed_date(completed: date, event_year: int, today: date | None = None) -> date:
    today = today or date.today()
    if completed.year != event_year or completed > today:
        raise RequestRejected(ErrorKind.INVALID_COMPLETION_DATE, status=422)
    return completed

def clean_comment_text(text: str) -> str:
    trimmed = (text or "").strip()
    if not trimmed:
        raise RequestRejected(ErrorKind.EMPTY_COMMENT, status=422)
    if len(trimmed) > MAX_COMMENT_LENGTH:
        raise RequestRejected(ErrorKind.COMMENT_TOO_LONG, status=422)
    return trimmed
