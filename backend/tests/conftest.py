from __future__ import annotations
import asyncio
import base64
import io
import uuid
from datetime import date, datetime, timezone

import piexif
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.config import settings
from app.errors import MESSAGES, AuthorizationError, ErrorKind, ImageSetInvalid, RequestRejected
from app.main import app
from app.models.comment import PhotoComment
from app.models.completion import Completion
from app.models.participant import Participant
from app.models.vote import Vote
from app.schemas.completion import GalleryEntry
from app.security import make_access_token
from app.services.authorization import ResourceKind
from app.services.storage import get_storage
from app.services.image_set import next_starred
from app.services.stores import DeletedImage, Stores, _image_rows, get_stores
from app.services.votes import DuplicateVote


def _now():
    return datetime.now(timezone.utc)


# --- image factories -------------------------------------------------------

def make_image(fmt: str = "JPEG", size: tuple[int, int] = (128, 128), mode: str = "RGB",
               exif: bytes | None = None) -> bytes:
    """Noisy image so even small sizes stay above the minimum file size."""
    noise = Image.effect_noise(size, 64)
    img = Image.merge("RGB", (noise, noise.transpose(Image.Transpose.FLIP_LEFT_RIGHT),
                              noise.transpose(Image.Transpose.FLIP_TOP_BOTTOM)))
    if mode != "RGB":
        img = img.convert(mode)
    kwargs = {}
    if exif is not None:
        kwargs["exif"] = exif
    if fmt == "JPEG":
        kwargs["quality"] = 95
    out = io.BytesIO()
    img.save(out, format=fmt, **kwargs)
    return out.getvalue()


def data_uri(data: bytes, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


def gps_exif(orientation: int | None = None) -> bytes:
    zeroth = {piexif.ImageIFD.Make: b"TestCam", piexif.ImageIFD.Model: b"Phone 1"}
    if orientation is not None:
        zeroth[piexif.ImageIFD.Orientation] = orientation
    gps = {
        piexif.GPSIFD.GPSLatitudeRef: b"N",
        piexif.GPSIFD.GPSLatitude: ((59, 1), (54, 1), (0, 1)),
        piexif.GPSIFD.GPSLongitudeRef: b"E",
        piexif.GPSIFD.GPSLongitude: ((10, 1), (45, 1), (0, 1)),
    }
    return piexif.dump({"0th": zeroth, "Exif": {}, "GPS": gps, "1st": {}, "thumbnail": None})


def run_date() -> date:
    today = date.today()
    return today if today.year == settings.event_year else date(settings.event_year, 6, 1)


# --- in-memory stores --------------------------------------------------------

class MemoryDB:
    def __init__(self):
        self.participants: dict[uuid.UUID, Participant] = {}
        self.completions: dict[uuid.UUID, Completion] = {}
        self.images: dict = {}
        self.comments: dict[uuid.UUID, PhotoComment] = {}
        self.votes: dict[uuid.UUID, Vote] = {}

    def add_participant(self, identity_id: str, full_name: str = "Ola Nordmann",
                        event_year: int | None = None) -> Participant:
        year = event_year or settings.event_year
        bib = max((p.bib_number for p in self.participants.values() if p.event_year == year), default=0) + 1
        p = Participant(
            id=uuid.uuid4(), user_id=identity_id, email=f"{identity_id}@example.com", full_name=full_name,
            bib_number=bib, has_completed=False, event_year=year, created_at=_now(), updated_at=_now(),
        )
        self.participants[p.id] = p
        return p


class FakeParticipantStore:
    def __init__(self, db: MemoryDB):
        self.db = db

    async def find_by_identity(self, identity_id, event_year):
        return next((p for p in self.db.participants.values()
                     if p.user_id == identity_id and p.event_year == event_year), None)

    async def find_id_by_identity(self, identity_id, event_year):
        p = await self.find_by_identity(identity_id, event_year)
        return p.id if p else None

    async def get(self, participant_id):
        return self.db.participants.get(participant_id)

    async def find_by_bib(self, event_year, bib_number):
        return next((p for p in self.db.participants.values()
                     if p.event_year == event_year and p.bib_number == bib_number), None)

    async def list_for_year(self, event_year):
        return sorted((p for p in self.db.participants.values() if p.event_year == event_year),
                      key=lambda p: p.bib_number)

    async def stats(self, event_year):
        year = await self.list_for_year(event_year)
        return len(year), sum(1 for p in year if p.has_completed)

    async def list_by_identity(self, identity_id):
        return sorted((p for p in self.db.participants.values() if p.user_id == identity_id),
                      key=lambda p: p.event_year)

    async def register(self, identity, fields, event_year):
        if await self.find_id_by_identity(identity.id, event_year):
            raise RequestRejected(ErrorKind.ALREADY_REGISTERED, status=409)
        p = self.db.add_participant(identity.id, fields["full_name"], event_year)
        for k, v in fields.items():
            setattr(p, k, v)
        return p

    async def update(self, participant_id, fields):
        p = self.db.participants[participant_id]
        for k, v in fields.items():
            setattr(p, k, v)
        return p


class FakeOwnerLookup:
    def __init__(self, db: MemoryDB):
        self.db = db

    async def find_owner_participant_id(self, kind, resource_id):
        if kind == ResourceKind.PARTICIPANT:
            return resource_id if resource_id in self.db.participants else None
        table = {
            ResourceKind.COMPLETION: self.db.completions,
            ResourceKind.IMAGE: self.db.images,
            ResourceKind.COMMENT: self.db.comments,
        }[kind]
        row = table.get(resource_id)
        return row.participant_id if row else None


class FakeCompletionStore:
    def __init__(self, db: MemoryDB):
        self.db = db

    async def get(self, completion_id):
        return self.db.completions.get(completion_id)

    async def find_for_participant(self, participant_id, event_year):
        return next((c for c in self.db.completions.values()
                     if c.participant_id == participant_id and c.event_year == event_year), None)

    async def list_for_participants(self, participant_ids):
        return [c for c in self.db.completions.values() if c.participant_id in participant_ids]

    async def create_with_images(self, participant_id, event_year, fields, stored):
        if await self.find_for_participant(participant_id, event_year):
            raise RequestRejected(ErrorKind.COMPLETION_EXISTS, status=409)
        c = Completion(
            id=uuid.uuid4(), participant_id=participant_id, event_year=event_year, vote_count=0,
            comment_count=0, image_count=len(stored), created_at=_now(), updated_at=_now(), **fields,
        )
        self.db.completions[c.id] = c
        for row in _image_rows(c.id, participant_id, event_year, stored, 0):
            row.uploaded_at = _now()
            self.db.images[row.id] = row
        self.db.participants[participant_id].has_completed = True
        return c

    async def update(self, completion_id, fields):
        c = self.db.completions[completion_id]
        for k, v in fields.items():
            setattr(c, k, v)
        return c

    async def refresh_counts(self, completion_id):
        c = self.db.completions[completion_id]
        c.vote_count = sum(1 for v in self.db.votes.values() if v.completion_id == completion_id)
        c.comment_count = sum(1 for m in self.db.comments.values() if m.completion_id == completion_id)
        c.image_count = sum(1 for i in self.db.images.values() if i.completion_id == completion_id)

    async def gallery_entry(self, completion_id):
        c = self.db.completions.get(completion_id)
        if c is None:
            return None
        p = self.db.participants[c.participant_id]
        starred = next((i.image_url for i in self.db.images.values()
                        if i.completion_id == completion_id and i.is_starred), None)
        return GalleryEntry(
            id=c.id, participant_id=c.participant_id, completed_date=c.completed_date,
            duration_text=c.duration_text, comment=c.comment, vote_count=c.vote_count,
            comment_count=c.comment_count, image_count=c.image_count, event_year=c.event_year,
            full_name=p.full_name, bib_number=p.bib_number, starred_image_url=starred,
            created_at=c.created_at,
        )

    async def list_gallery(self, event_year, limit, offset=0):
        with_images = {i.completion_id for i in self.db.images.values()}
        rows = sorted((c for c in self.db.completions.values()
                       if c.event_year == event_year and c.id in with_images),
                      key=lambda c: c.created_at, reverse=True)
        return [await self.gallery_entry(c.id) for c in rows[offset:offset + limit]]


class FakeImageStore:
    def __init__(self, db: MemoryDB):
        self.db = db

    async def list_for_completion(self, completion_id):
        rows = [i for i in self.db.images.values() if i.completion_id == completion_id]
        return sorted(rows, key=lambda i: i.display_order)

    async def get(self, image_id):
        return self.db.images.get(image_id)

    async def add(self, completion_id, participant_id, event_year, stored, start_order):
        rows = _image_rows(completion_id, participant_id, event_year, stored, start_order)
        for row in rows:
            row.uploaded_at = _now()
            self.db.images[row.id] = row
        return rows

    async def set_starred(self, completion_id, image_id):
        for i in await self.list_for_completion(completion_id):
            i.is_starred = i.id == image_id

    async def set_display_order(self, completion_id, ranks):
        for image_id, rank in ranks.items():
            self.db.images[image_id].display_order = rank

    async def set_caption(self, image_id, caption):
        self.db.images[image_id].caption = caption
        return self.db.images[image_id]

    async def list_for_participants(self, participant_ids):
        return [i for i in self.db.images.values() if i.participant_id in participant_ids]

    async def delete(self, completion_id, image_id):
        current = await self.list_for_completion(completion_id)
        target = next((i for i in current if i.id == image_id), None)
        if target is None:
            raise AuthorizationError(ErrorKind.NOT_FOUND)
        if len(current) <= 1:
            raise ImageSetInvalid([(ErrorKind.TOO_FEW_IMAGES, MESSAGES[ErrorKind.TOO_FEW_IMAGES])])
        promote_id = next_starred([i.id for i in current], image_id) if target.is_starred else None
        del self.db.images[image_id]
        if promote_id is not None:
            self.db.images[promote_id].is_starred = True
        return DeletedImage(storage_key=target.storage_key, promoted_id=promote_id)


class FakeCommentStore:
    def __init__(self, db: MemoryDB):
        self.db = db

    async def list_for_completion(self, completion_id):
        rows = sorted((c for c in self.db.comments.values() if c.completion_id == completion_id),
                      key=lambda c: c.created_at)
        return [(c, self.db.participants[c.participant_id].full_name) for c in rows]

    async def add(self, completion_id, participant_id, text):
        c = PhotoComment(id=uuid.uuid4(), completion_id=completion_id, participant_id=participant_id,
                         comment_text=text, created_at=_now(), updated_at=_now())
        self.db.comments[c.id] = c
        return c

    async def delete(self, comment_id, participant_id):
        c = self.db.comments.get(comment_id)
        if c is None or c.participant_id != participant_id:
            return None
        del self.db.comments[comment_id]
        return c.completion_id

    async def list_by_participants(self, participant_ids):
        return [c for c in self.db.comments.values() if c.participant_id in participant_ids]


class FakeVoteStore:
    """Yields on every call so concurrent toggles interleave like separate requests."""

    def __init__(self, db: MemoryDB):
        self.db = db
        self.duplicates = 0

    async def find_vote_id(self, voter_id, completion_id):
        await asyncio.sleep(0)
        return next((v.id for v in self.db.votes.values()
                     if v.voter_participant_id == voter_id and v.completion_id == completion_id), None)

    async def add_vote(self, voter_id, completion_id, event_year):
        await asyncio.sleep(0)
        if await self.find_vote_id(voter_id, completion_id) is not None:
            self.duplicates += 1
            raise DuplicateVote()
        v = Vote(id=uuid.uuid4(), completion_id=completion_id, voter_participant_id=voter_id,
                 event_year=event_year, created_at=_now())
        self.db.votes[v.id] = v

    async def list_by_voters(self, voter_ids):
        return [v for v in self.db.votes.values() if v.voter_participant_id in voter_ids]

    async def remove_vote(self, vote_id):
        await asyncio.sleep(0)
        return self.db.votes.pop(vote_id, None) is not None

    async def clear_for_completion(self, completion_id):
        for vote_id in [v.id for v in self.db.votes.values() if v.completion_id == completion_id]:
            del self.db.votes[vote_id]

    async def refresh_vote_count(self, completion_id):
        count = sum(1 for v in self.db.votes.values() if v.completion_id == completion_id)
        if completion_id in self.db.completions:
            self.db.completions[completion_id].vote_count = count
        return count


class FakeStorage:
    def __init__(self, fail_on: int | None = None):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.removed: list[str] = []
        self.fail_on = fail_on
        self.puts = 0

    def put(self, key, data, content_type):
        self.puts += 1
        if self.fail_on is not None and self.puts == self.fail_on:
            raise ConnectionError("storage unavailable")
        self.objects[key] = (data, content_type)
        return f"http://media.test/completion-photos/{key}"

    def remove(self, key):
        self.removed.append(key)
        self.objects.pop(key, None)


# --- fixtures ----------------------------------------------------------------

@pytest.fixture
def db():
    return MemoryDB()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def stores(db):
    return Stores(
        participants=FakeParticipantStore(db),
        owners=FakeOwnerLookup(db),
        completions=FakeCompletionStore(db),
        images=FakeImageStore(db),
        comments=FakeCommentStore(db),
        votes=FakeVoteStore(db),
    )


@pytest.fixture
def client(stores, storage):
    app.dependency_overrides[get_stores] = lambda: stores
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth(sub: str, email: str | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_access_token(sub, email=email)}"}


@pytest.fixture
def register(client):
    def _register(name: str = "Kari Nordmann") -> tuple[dict[str, str], dict]:
        sub = f"user-{uuid.uuid4().hex[:12]}"
        headers = auth(sub, email=f"{sub}@example.com")
        r = client.post("/participants", headers=headers, json={"full_name": name})
        assert r.status_code == 201, r.text
        return headers, r.json()
    return _register


@pytest.fixture
def completion_payload():
    def _payload(count: int = 2, starred_index: int = 0, **extra) -> dict:
        payload = {
            "completed_date": run_date().isoformat(),
            "duration_text": "1t 23m",
            "comment": "Fin tur!",
            "images": [{"data": data_uri(make_image()), "caption": f"bilde {i}"} for i in range(count)],
            "starred_index": starred_index,
        }
        payload.update(extra)
        return payload
    return _payload
