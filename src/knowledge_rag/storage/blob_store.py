"""
Blob storage for raw uploads.

Keys follow ``{owner}/{category}/{name}`` where category is one of
``docs``, ``audio`` or ``video``.  :class:`S3BlobStore` is the production
implementation; anything satisfying :class:`BlobStore` can be injected.
"""

from __future__ import annotations

import logging
import re
from typing import Protocol, runtime_checkable

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from knowledge_rag.config import Settings, get_settings
from knowledge_rag.errors import NotFoundError, PersistenceFailure
from knowledge_rag.ingestion.extractor import file_extension

logger = logging.getLogger(__name__)

_AUDIO_EXTENSIONS = {"mp3", "wav", "flac", "m4a"}
_VIDEO_EXTENSIONS = {"mp4", "avi", "mov", "mkv", "webm"}
_DOC_EXTENSIONS = {"pdf", "docx", "doc", "txt", "md", "html", "htm"}


class BlobLocation(BaseModel):
    key: str
    url: str | None = None


@runtime_checkable
class BlobStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str | None) -> BlobLocation: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...


def blob_category(mimetype: str | None, filename: str) -> str:
    """Folder for an upload: ``docs``, ``audio`` or ``video``."""
    mime = (mimetype or "").lower()
    ext = file_extension(filename)
    if any(token in mime for token in ("pdf", "document", "text")) or ext in _DOC_EXTENSIONS:
        return "docs"
    if "audio" in mime or ext in _AUDIO_EXTENSIONS:
        return "audio"
    if "video" in mime or ext in _VIDEO_EXTENSIONS:
        return "video"
    return "docs"


def sanitize_filename(filename: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", filename)


def build_blob_key(owner: str, mimetype: str | None, filename: str, document_id: str | None = None) -> str:
    """Build ``{owner}/{category}/{[document_id_]sanitized_filename}``."""
    name = sanitize_filename(filename)
    if document_id:
        name = f"{document_id}_{name}"
    return f"{owner}/{blob_category(mimetype, filename)}/{name}"


class S3BlobStore:
    """S3 (or S3-compatible) blob store.

    Parameters
    ----------
    bucket:
        Target bucket.
    region:
        AWS region.
    endpoint_url:
        Custom endpoint for S3-compatible services; empty for AWS.
    public_base_url:
        Base for public object URLs; defaults to the virtual-hosted AWS URL.
    """

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        public_base_url: str | None = None,
        client=None,  # noqa: ANN001
    ) -> None:
        self._bucket = bucket
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
        )
        self._public_base_url = (public_base_url or f"https://{bucket}.s3.{region}.amazonaws.com").rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> S3BlobStore:
        settings = settings or get_settings()
        return cls(
            settings.s3_bucket_name,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            public_base_url=settings.s3_public_base_url,
        )

    def put(self, key: str, data: bytes, content_type: str | None) -> BlobLocation:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure(f"Blob upload failed: {exc}", {"key": key}) from exc
        logger.debug("Uploaded %d bytes to s3://%s/%s", len(data), self._bucket, key)
        return BlobLocation(key=key, url=f"{self._public_base_url}/{key}")

    def get(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                raise NotFoundError("Blob", key) from exc
            raise
        return response["Body"].read()

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceFailure(f"Blob delete failed: {exc}", {"key": key}) from exc
        logger.debug("Deleted s3://%s/%s", self._bucket, key)
