"""
Object Store
============
Uniform interface over the buckets that hold evidence files and reports.

Backends:
  - S3ObjectStore: MinIO / AWS S3 via boto3 (production).
  - LocalObjectStore: local filesystem (development and tests).

Every ``put`` is no-clobber: an existing object is never overwritten, the
write fails with ``UploadConflict`` instead. Deletes are idempotent.
"""

from __future__ import annotations

import abc
import io
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from bluhatch.core.config import settings
from bluhatch.core.errors import StorageError, UploadConflict

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
# Raised when a conditional put finds an object already at the key
_EXISTS_CODES = {"412", "PreconditionFailed", "409", "ConditionalRequestConflict"}


class ObjectStore(abc.ABC):
    """Keys are slash-delimited paths relative to the bucket."""

    bucket: str

    @abc.abstractmethod
    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Write *data* at *path* unless something is already there. Returns the path."""

    @abc.abstractmethod
    def get(self, path: str) -> bytes:
        """Read the full object."""

    @abc.abstractmethod
    def delete(self, paths: list[str]) -> None:
        """Remove the objects. Missing objects are not an error."""

    @abc.abstractmethod
    def exists(self, path: str) -> bool:
        """Return True if an object is stored at *path*."""

    @abc.abstractmethod
    def size(self, path: str) -> Optional[int]:
        """Return the size in bytes, or None if nothing is stored at *path*."""

    @abc.abstractmethod
    def ping(self) -> None:
        """Raise StorageError if the bucket cannot be reached."""


# ---------------------------------------------------------------------------
# S3 / MinIO
# ---------------------------------------------------------------------------


def _s3_client():
    return boto3.client(
        "s3",
        endpoint_url=settings.s3_endpoint_url,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        region_name=settings.s3_region,
        config=BotoConfig(
            signature_version="s3v4",
            connect_timeout=5,
            read_timeout=30,
            retries={"max_attempts": 1},
        ),
    )


class S3ObjectStore(ObjectStore):
    def __init__(self, bucket: str, client=None):
        self.bucket = bucket
        self._client = client or _s3_client()

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        if self.exists(path):
            raise UploadConflict(f"Object already exists: {path}")
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=io.BytesIO(data),
                ContentLength=len(data),
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _EXISTS_CODES:
                raise UploadConflict(f"Object already exists: {path}") from exc
            raise StorageError(f"Upload failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Upload failed: {exc}") from exc
        logger.info("Stored s3://%s/%s (%d bytes)", self.bucket, path, len(data))
        return path

    def get(self, path: str) -> bytes:
        try:
            resp = self._client.get_object(Bucket=self.bucket, Key=path)
            return resp["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Download failed for {path}: {exc}") from exc

    def delete(self, paths: list[str]) -> None:
        if not paths:
            return
        try:
            resp = self._client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": p} for p in paths], "Quiet": True},
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Delete failed: {exc}") from exc
        errors = resp.get("Errors") or []
        if errors:
            keys = ", ".join(e.get("Key", "?") for e in errors)
            raise StorageError(f"Delete failed for: {keys}")
        logger.info("Deleted %d object(s) from s3://%s", len(paths), self.bucket)

    def _head(self, path: str) -> Optional[dict]:
        try:
            return self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise StorageError(f"Could not stat {path}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Could not stat {path}: {exc}") from exc

    def exists(self, path: str) -> bool:
        return self._head(path) is not None

    def size(self, path: str) -> Optional[int]:
        head = self._head(path)
        return None if head is None else int(head["ContentLength"])

    def ping(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Bucket {self.bucket} unreachable: {exc}") from exc

    def ensure_bucket(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            logger.info("Bucket '%s' already exists.", self.bucket)
        except ClientError:
            self._client.create_bucket(Bucket=self.bucket)
            logger.info("Created bucket '%s'.", self.bucket)


# ---------------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------------


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store: ``<root>/<bucket>/<path>``."""

    def __init__(self, root: str | os.PathLike, bucket: str):
        self.bucket = bucket
        self.root = (Path(root) / bucket).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        # Prevent directory traversal
        resolved = (self.root / path).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise StorageError(f"Path escapes store root: {path}")
        return resolved

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        try:
            tmp.write_bytes(data)
            # link() refuses to replace an existing file
            os.link(tmp, target)
        except FileExistsError:
            raise UploadConflict(f"Object already exists: {path}") from None
        except OSError as exc:
            raise StorageError(f"Upload failed: {exc}") from exc
        finally:
            tmp.unlink(missing_ok=True)
        logger.info("Stored %s/%s (%d bytes)", self.bucket, path, len(data))
        return path

    def get(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except OSError as exc:
            raise StorageError(f"Download failed for {path}: {exc}") from exc

    def delete(self, paths: list[str]) -> None:
        for path in paths:
            try:
                self._resolve(path).unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Delete failed for {path}: {exc}") from exc

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def size(self, path: str) -> Optional[int]:
        target = self._resolve(path)
        return target.stat().st_size if target.is_file() else None

    def ping(self) -> None:
        if not self.root.is_dir():
            raise StorageError(f"Store root missing: {self.root}")

    def list_keys(self, prefix: str = "") -> list[str]:
        return sorted(
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file() and p.relative_to(self.root).as_posix().startswith(prefix)
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@lru_cache(maxsize=None)
def get_object_store(bucket: str) -> ObjectStore:
    """Return the configured store for *bucket* (selected by settings, not by import)."""
    backend = settings.storage_backend.lower()
    if backend == "s3":
        return S3ObjectStore(bucket)
    if backend == "local":
        return LocalObjectStore(settings.storage_root, bucket)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


def ensure_buckets() -> None:
    """Create the evidence and reports buckets if they do not exist."""
    for bucket in (settings.evidence_bucket, settings.reports_bucket):
        store = get_object_store(bucket)
        if isinstance(store, S3ObjectStore):
            store.ensure_bucket()
