"""
Evidence Ingest Pipeline
========================
validate -> resolve job -> hash -> upload (no-clobber) -> insert + rescore
-> audit -> dispatch timestamp request

Validation happens before any side effect. Once the object is uploaded, a
failure to record it triggers a compensating delete so the store never holds
an object without a row. Audit and dispatch run after the commit and are
best-effort.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from bluhatch.core.config import settings
from bluhatch.core.errors import BluhatchError, StorageError, ValidationError
from bluhatch.models.evidence_item import EvidenceItem, EvidenceType
from bluhatch.services.audit import AuditContext, record_audit
from bluhatch.services.hashing import sha256_hex
from bluhatch.services.protection import recompute_job_protection
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^\w\-. ]")

# Allowed MIME types for upload
_ALLOWED_MIME_PREFIXES = ("image/", "video/", "application/pdf")

UPLOAD_MESSAGE = "Evidence uploaded successfully. Blockchain timestamping initiated."
TEXT_ONLY_MESSAGE = "Evidence recorded successfully."


@dataclass(frozen=True)
class GpsFix:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    @classmethod
    def from_parts(
        cls,
        latitude: Optional[float],
        longitude: Optional[float],
        accuracy: Optional[float] = None,
    ) -> Optional["GpsFix"]:
        """Build a fix from optional form fields; all-absent means no fix."""
        if latitude is None and longitude is None:
            if accuracy is not None:
                raise ValidationError("GPS accuracy given without coordinates")
            return None
        if latitude is None or longitude is None:
            raise ValidationError("GPS latitude and longitude must be supplied together")
        return cls(latitude=latitude, longitude=longitude, accuracy=accuracy)


@dataclass
class EvidenceUpload:
    job_id: uuid.UUID
    evidence_type: str
    description: str
    data: Optional[bytes] = None
    filename: Optional[str] = None
    content_type: Optional[str] = None
    gps: Optional[GpsFix] = None
    client_approval: Optional[bool] = None
    client_signature: Optional[str] = None
    device_timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class IngestResult:
    evidence_id: uuid.UUID
    file_hash: Optional[str]
    file_path: Optional[str]
    message: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "evidence_id": str(self.evidence_id),
            "file_hash": self.file_hash,
            "file_path": self.file_path,
            "message": self.message,
        }


@dataclass(frozen=True)
class BatchFileResult:
    filename: str
    success: bool
    evidence_id: Optional[uuid.UUID] = None
    file_hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"filename": self.filename, "success": self.success}
        if self.success:
            out["evidence_id"] = str(self.evidence_id)
            out["file_hash"] = self.file_hash
        else:
            out["error"] = self.error
        return out


@dataclass
class BatchIngestResult:
    results: list[BatchFileResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "total": len(self.results),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


def safe_filename(name: Optional[str]) -> str:
    name = (name or "").replace("/", "_").replace("\\", "_").strip()
    name = _UNSAFE_FILENAME_CHARS.sub("_", name)
    return name or "upload"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvidenceIngestPipeline:
    """Turns one upload into one stored object plus one evidence row."""

    def __init__(
        self,
        repo: ScopedRepository,
        store: ObjectStore,
        dispatcher=None,
        audit_ctx: Optional[AuditContext] = None,
        clock: Callable[[], datetime] = _utcnow,
        max_upload_bytes: Optional[int] = None,
        max_description_length: Optional[int] = None,
    ):
        self.repo = repo
        self.store = store
        self.dispatcher = dispatcher
        self.audit_ctx = audit_ctx or AuditContext(user_id=repo.owner_id)
        self.clock = clock
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes
        self.max_description_length = max_description_length or settings.max_description_length

    # ── validation ───────────────────────────────────────────────────

    def _validate(self, upload: EvidenceUpload) -> EvidenceType:
        try:
            evidence_type = EvidenceType(upload.evidence_type)
        except ValueError:
            allowed = ", ".join(t.value for t in EvidenceType)
            raise ValidationError(
                f"Invalid evidence type: {upload.evidence_type}. Allowed: {allowed}"
            ) from None

        description = (upload.description or "").strip()
        if not description:
            raise ValidationError("Description is required")
        if len(description) > self.max_description_length:
            raise ValidationError(
                f"Description too long (max {self.max_description_length} characters)"
            )

        if upload.data is not None:
            content_type = upload.content_type or ""
            if not content_type.startswith(_ALLOWED_MIME_PREFIXES):
                raise ValidationError(
                    f"Unsupported content type: {content_type or 'unknown'}. "
                    f"Allowed: {', '.join(_ALLOWED_MIME_PREFIXES)}"
                )
            if len(upload.data) == 0:
                raise ValidationError("Uploaded file is empty")
            if len(upload.data) > self.max_upload_bytes:
                raise ValidationError(
                    f"File too large (max {self.max_upload_bytes // (1024 * 1024)}MB)"
                )

        gps = upload.gps
        if gps is not None:
            if not -90.0 <= gps.latitude <= 90.0:
                raise ValidationError("GPS latitude must be between -90 and 90")
            if not -180.0 <= gps.longitude <= 180.0:
                raise ValidationError("GPS longitude must be between -180 and 180")
            if gps.accuracy is not None and gps.accuracy < 0:
                raise ValidationError("GPS accuracy cannot be negative")

        return evidence_type

    def object_path(self, job_id: uuid.UUID, filename: Optional[str]) -> str:
        epoch_ms = int(self.clock().timestamp() * 1000)
        return f"{self.repo.owner_id}/{job_id}/{epoch_ms}-{safe_filename(filename)}"

    # ── pipeline ─────────────────────────────────────────────────────

    def ingest(self, upload: EvidenceUpload) -> IngestResult:
        evidence_type = self._validate(upload)
        job = self.repo.get_job(upload.job_id)

        file_hash = file_path = None
        if upload.data is not None:
            # Hash the exact buffer that is about to be uploaded
            file_hash = sha256_hex(upload.data)
            file_path = self.store.put(
                self.object_path(job.id, upload.filename),
                upload.data,
                content_type=upload.content_type,
            )

        gps = upload.gps
        try:
            item = self.repo.add_evidence(
                EvidenceItem(
                    id=uuid.uuid4(),
                    job_id=job.id,
                    evidence_type=evidence_type,
                    description=upload.description.strip(),
                    file_path=file_path,
                    file_hash=file_hash,
                    file_size=len(upload.data) if upload.data is not None else 0,
                    content_type=upload.content_type if upload.data is not None else None,
                    original_filename=upload.filename if upload.data is not None else None,
                    gps_latitude=gps.latitude if gps else None,
                    gps_longitude=gps.longitude if gps else None,
                    gps_accuracy=gps.accuracy if gps else None,
                    client_approval=upload.client_approval,
                    client_signature=upload.client_signature or None,
                    device_timestamp=upload.device_timestamp,
                    server_timestamp=self.clock(),
                )
            )
            recompute_job_protection(self.repo, job)
            self.repo.commit()
        except Exception as exc:
            self.repo.rollback()
            if file_path is not None:
                self._discard(file_path)
            logger.error("Evidence insert failed for job %s: %s", upload.job_id, exc)
            raise StorageError(f"Evidence record creation failed: {exc}") from exc

        logger.info(
            "Evidence %s captured for job %s (type=%s, bytes=%d)",
            item.id,
            job.id,
            evidence_type.value,
            item.file_size,
        )

        record_audit(
            self.repo.db,
            self.audit_ctx,
            "evidence_captured",
            job_id=job.id,
            details={
                "evidence_id": str(item.id),
                "evidence_type": evidence_type.value,
                "file_hash": file_hash,
                "has_gps": gps is not None,
                "file_size": item.file_size,
            },
        )

        if file_hash is None:
            return IngestResult(item.id, None, None, TEXT_ONLY_MESSAGE)

        if self.dispatcher is not None:
            self.dispatcher.dispatch(item.id)
        return IngestResult(item.id, file_hash, file_path, UPLOAD_MESSAGE)

    def ingest_batch(self, uploads: list[EvidenceUpload]) -> BatchIngestResult:
        """Run every upload through ``ingest`` independently; partial success is reported."""
        if not uploads:
            raise ValidationError("No files provided")

        batch = BatchIngestResult()
        for upload in uploads:
            name = upload.filename or "upload"
            try:
                result = self.ingest(upload)
            except BluhatchError as exc:
                logger.warning("Batch item %s failed: %s", name, exc.message)
                batch.results.append(BatchFileResult(filename=name, success=False, error=exc.message))
                continue
            batch.results.append(
                BatchFileResult(
                    filename=name,
                    success=True,
                    evidence_id=result.evidence_id,
                    file_hash=result.file_hash,
                )
            )
        return batch

    def _discard(self, file_path: str) -> None:
        try:
            self.store.delete([file_path])
        except StorageError as cleanup_exc:
            # Never mask the original failure
            logger.error("Could not remove orphaned object %s: %s", file_path, cleanup_exc)
