from __future__ import annotations
import io
from functools import lru_cache
from typing import Protocol
from minio import Minio
from minio.error import S3Error
from app.config import settings

class ObjectStorage(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str: ...
    def remove(self, key: str) -> None: ...

def _parse_endpoint(ep: str) -> tuple[str, bool]:
    # Return (host:port, secure)
    secure = ep.startswith("https://")
    host = ep.replace("http://", "").replace("https://", "")
    return host, secure

class MinioStorage:
    """S3-compatible object storage (MinIO in dev)."""

    def __init__(self, client: Minio, bucket: str, public_url: str):
        self.client = client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self._bucket_checked = False

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
        except S3Error as e:
            # creation may race with another worker
            if e.code not in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                raise
        self._bucket_checked = True

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self._ensure_bucket()
        self.client.put_object(
            self.bucket, key, io.BytesIO(data), length=len(data), content_type=content_type,
            metadata={"Cache-Control": "public, max-age=31536000"},
        )
        return f"{self.public_url}/{self.bucket}/{key}"

    def remove(self, key: str) -> None:
        self.client.remove_object(self.bucket, key)

@lru_cache(maxsize=1)
def get_storage() -> ObjectStorage:
    host, secure = _parse_endpoint(settings.s3_endpoint)
    client = Minio(host, access_key=settings.s3_access_key, secret_key=settings.s3_secret_key, secure=secure)
    return MinioStorage(client, settings.s3_bucket_uploads, settings.media_public_url)
