"""
Blob storage for uploaded documents and extracted images.

Two backends, picked once from the explicit ``storage_backend`` setting:
- local: files under ``upload_dir``, addressed as ``{upload_base_url}/{name}``
- blob:  objects in a MinIO/S3 bucket, addressed as ``s3://{bucket}/{key}``
"""

import io
import random
import re
import string
import time
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import structlog
from minio import Minio
from minio.error import S3Error

from sop_reconciler.config import Settings, StorageBackend
from sop_reconciler.errors import ConfigurationError, NotFoundError

logger = structlog.get_logger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".png": "image/png",
    ".jpeg": "image/jpeg",
    ".jpg": "image/jpeg",
    ".gif": "image/gif",
}


def generate_unique_filename(original_name: str) -> str:
    """Build ``{millis}-{random6}-{clean stem}{ext}`` from an uploaded name."""
    path = Path(original_name)
    stem = _UNSAFE_NAME_CHARS.sub("-", path.stem)[:50]
    token = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{int(time.time() * 1000)}-{token}-{stem}{path.suffix}"


def get_file_mime_type(filename: str) -> str:
    return MIME_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


@runtime_checkable
class BlobStore(Protocol):
    """Byte storage addressed by URL."""

    def put(self, data: bytes, filename: str, content_type: str) -> str:
        ...

    def get(self, url: str) -> bytes:
        ...

    def delete(self, url: str) -> None:
        ...


class LocalBlobStore:
    """Stores blobs as files in a local directory."""

    def __init__(self, root: str | Path, base_url: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path_for(self, url: str) -> Path:
        # Only the final path component is honored so URLs cannot escape root.
        return self.root / Path(url).name

    def put(self, data: bytes, filename: str, content_type: str) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path_for(filename)
        path.write_bytes(data)
        logger.debug("blob_saved", backend="local", path=str(path), bytes=len(data))
        return f"{self.base_url}/{path.name}"

    def get(self, url: str) -> bytes:
        path = self._path_for(url)
        if not path.exists():
            raise NotFoundError(f"Blob not found: {url}")
        return path.read_bytes()

    def delete(self, url: str) -> None:
        path = self._path_for(url)
        if path.exists():
            path.unlink()
            logger.debug("blob_deleted", backend="local", path=str(path))


class MinioBlobStore:
    """Stores blobs in a MinIO/S3 bucket."""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        secure: bool = False,
        client: Optional[Minio] = None,
    ):
        self.bucket = bucket
        self._client = client or Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
        )
        self._ensure_bucket()

    def _ensure_bucket(self) -> None:
        try:
            if not self._client.bucket_exists(self.bucket):
                self._client.make_bucket(self.bucket)
        except S3Error as e:
            raise ConfigurationError(f"Cannot access bucket {self.bucket}: {e}") from e

    def _key_for(self, url: str) -> str:
        prefix = f"s3://{self.bucket}/"
        return url[len(prefix):] if url.startswith(prefix) else url

    def put(self, data: bytes, filename: str, content_type: str) -> str:
        self._client.put_object(
            bucket_name=self.bucket,
            object_name=filename,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        logger.debug("blob_saved", backend="minio", key=filename, bytes=len(data))
        return f"s3://{self.bucket}/{filename}"

    def get(self, url: str) -> bytes:
        key = self._key_for(url)
        try:
            response = self._client.get_object(self.bucket, key)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise NotFoundError(f"Blob not found: {url}") from e
            raise

    def delete(self, url: str) -> None:
        self._client.remove_object(self.bucket, self._key_for(url))
        logger.debug("blob_deleted", backend="minio", key=self._key_for(url))


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the configured backend."""
    if settings.storage_backend == StorageBackend.BLOB:
        if not settings.minio_endpoint:
            raise ConfigurationError("storage_backend=blob requires MINIO_ENDPOINT")
        return MinioBlobStore(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            bucket=settings.minio_bucket,
            secure=settings.minio_secure,
        )

    return LocalBlobStore(settings.upload_dir, settings.upload_base_url)
