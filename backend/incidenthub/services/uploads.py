import io
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from minio import Minio
from minio.error import MinioException

from ..core.config import Settings

log = logging.getLogger("uvicorn.error").getChild("uploads")


@dataclass
class UploadResult:
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.url is not None


class BlobUploader:
    """Stores report images in a MinIO/S3 bucket."""

    def __init__(self, client: Minio, bucket: str, public_url: str, prefix: str = "incidents"):
        self.client = client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self.prefix = prefix

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["BlobUploader"]:
        if not (settings.MINIO_ENDPOINT and settings.MINIO_ACCESS_KEY and settings.MINIO_SECRET_KEY):
            return None
        client = Minio(
            endpoint=settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        scheme = "https" if settings.MINIO_SECURE else "http"
        public_url = settings.MINIO_PUBLIC_URL or f"{scheme}://{settings.MINIO_ENDPOINT}"
        return cls(client, settings.MINIO_BUCKET, public_url)

    def _put(self, data: bytes, content_type: str, filename: str) -> str:
        suffix = ""
        if filename and "." in filename:
            suffix = "." + filename.rsplit(".", 1)[-1].lower()
        object_name = f"{self.prefix}/{uuid.uuid4().hex}{suffix}"
        self.client.put_object(
            bucket_name=self.bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        return f"{self.public_url}/{self.bucket}/{object_name}"

    async def upload(self, data: bytes, content_type: str = "application/octet-stream",
                     filename: str = "") -> UploadResult:
        if not data:
            return UploadResult(error="empty upload")
        try:
            url = await run_in_threadpool(self._put, data, content_type, filename)
        except (MinioException, OSError) as e:
            log.warning("[upload] failed for %s: %s", filename or "<unnamed>", e)
            return UploadResult(error=str(e))
        log.info("[upload] stored %d bytes at %s", len(data), url)
        return UploadResult(url=url)
