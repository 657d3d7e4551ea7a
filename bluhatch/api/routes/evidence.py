"""Evidence endpoints — upload (single and batch), list, anchor, verify."""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, UploadFile

from bluhatch.api.deps import (
    get_audit_context,
    get_dispatcher,
    get_evidence_store,
    get_repository,
    get_timestamp_client,
)
from bluhatch.api.schemas import EvidenceOut, envelope
from bluhatch.core.config import settings
from bluhatch.services.audit import AuditContext
from bluhatch.services.ingest import EvidenceIngestPipeline, EvidenceUpload, GpsFix
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore
from bluhatch.services.timestamping import (
    OpenTimestampsClient,
    TimestampDispatcher,
    anchor_evidence_on_request,
    verification_info,
)

router = APIRouter(tags=["evidence"])


def _read(upload: UploadFile | None) -> tuple[bytes | None, str | None, str | None]:
    if upload is None or not upload.filename:
        return None, None, None
    # One byte past the limit is enough for the size check to reject it
    data = upload.file.read(settings.max_upload_bytes + 1)
    return data, upload.filename, upload.content_type


@router.post("/evidence")
def upload_evidence(
    job_id: uuid.UUID = Form(..., alias="jobId"),
    evidence_type: str = Form(..., alias="evidenceType"),
    description: str = Form(...),
    file: UploadFile | None = File(None),
    gps_latitude: float | None = Form(None, alias="gpsLatitude"),
    gps_longitude: float | None = Form(None, alias="gpsLongitude"),
    gps_accuracy: float | None = Form(None, alias="gpsAccuracy"),
    client_approval: bool | None = Form(None, alias="clientApproval"),
    client_signature: str | None = Form(None, alias="clientSignature"),
    device_timestamp: datetime | None = Form(None, alias="deviceTimestamp"),
    repo: ScopedRepository = Depends(get_repository),
    store: ObjectStore = Depends(get_evidence_store),
    dispatcher: TimestampDispatcher = Depends(get_dispatcher),
    audit_ctx: AuditContext = Depends(get_audit_context),
):
    data, filename, content_type = _read(file)
    pipeline = EvidenceIngestPipeline(repo, store, dispatcher=dispatcher, audit_ctx=audit_ctx)
    result = pipeline.ingest(
        EvidenceUpload(
            job_id=job_id,
            evidence_type=evidence_type,
            description=description,
            data=data,
            filename=filename,
            content_type=content_type,
            gps=GpsFix.from_parts(gps_latitude, gps_longitude, gps_accuracy),
            client_approval=client_approval,
            client_signature=client_signature,
            device_timestamp=device_timestamp,
        )
    )
    return result.to_dict()


@router.post("/evidence/batch")
def upload_evidence_batch(
    job_id: uuid.UUID = Form(..., alias="jobId"),
    evidence_type: str = Form(..., alias="evidenceType"),
    description: str = Form(...),
    files: list[UploadFile] = File(...),
    gps_latitude: float | None = Form(None, alias="gpsLatitude"),
    gps_longitude: float | None = Form(None, alias="gpsLongitude"),
    gps_accuracy: float | None = Form(None, alias="gpsAccuracy"),
    repo: ScopedRepository = Depends(get_repository),
    store: ObjectStore = Depends(get_evidence_store),
    dispatcher: TimestampDispatcher = Depends(get_dispatcher),
    audit_ctx: AuditContext = Depends(get_audit_context),
):
    gps = GpsFix.from_parts(gps_latitude, gps_longitude, gps_accuracy)
    uploads = []
    for upload in files:
        data, filename, content_type = _read(upload)
        if data is None:
            continue
        uploads.append(
            EvidenceUpload(
                job_id=job_id,
                evidence_type=evidence_type,
                description=description,
                data=data,
                filename=filename,
                content_type=content_type,
                gps=gps,
            )
        )
    pipeline = EvidenceIngestPipeline(repo, store, dispatcher=dispatcher, audit_ctx=audit_ctx)
    return pipeline.ingest_batch(uploads).to_dict()


@router.get("/jobs/{job_id}/evidence")
def list_job_evidence(job_id: uuid.UUID, repo: ScopedRepository = Depends(get_repository)):
    job = repo.get_job(job_id)
    items = repo.list_evidence(job.id)
    return envelope(
        evidence=[EvidenceOut.model_validate(i).model_dump(mode="json") for i in items],
        count=len(items),
    )


@router.post("/evidence/{evidence_id}/timestamp")
def create_timestamp(
    evidence_id: uuid.UUID,
    repo: ScopedRepository = Depends(get_repository),
    client: OpenTimestampsClient = Depends(get_timestamp_client),
    audit_ctx: AuditContext = Depends(get_audit_context),
):
    """Anchor now. Safe to call repeatedly; an existing proof is never replaced."""
    return anchor_evidence_on_request(repo, client, evidence_id, audit_ctx).to_dict()


@router.get("/evidence/{evidence_id}/verification")
def get_verification(evidence_id: uuid.UUID, repo: ScopedRepository = Depends(get_repository)):
    item = repo.get_evidence(evidence_id)
    return verification_info(item, repo.latest_timestamp_request(item.id))
