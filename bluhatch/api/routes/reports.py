"""Reports API — generate, list and download protection reports."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from bluhatch.api.deps import (
    get_audit_context,
    get_evidence_store,
    get_report_store,
    get_repository,
)
from bluhatch.api.schemas import ReportCreate, ReportOut, envelope
from bluhatch.services.audit import AuditContext
from bluhatch.services.report_render import CONTENT_TYPES
from bluhatch.services.reports import ReportService
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("")
def generate_report(
    body: ReportCreate,
    repo: ScopedRepository = Depends(get_repository),
    report_store: ObjectStore = Depends(get_report_store),
    evidence_store: ObjectStore = Depends(get_evidence_store),
    audit_ctx: AuditContext = Depends(get_audit_context),
):
    service = ReportService(repo, report_store, evidence_store, audit_ctx)
    return service.generate(body.job_id, body.report_type).to_dict()


@router.get("")
def list_reports(
    job_id: uuid.UUID | None = Query(default=None),
    repo: ScopedRepository = Depends(get_repository),
):
    reports = repo.list_reports(job_id)
    return envelope(
        reports=[ReportOut.model_validate(r).model_dump(mode="json") for r in reports],
        count=len(reports),
    )


@router.get("/{report_id}/download")
def download_report(
    report_id: uuid.UUID,
    repo: ScopedRepository = Depends(get_repository),
    report_store: ObjectStore = Depends(get_report_store),
    evidence_store: ObjectStore = Depends(get_evidence_store),
):
    report, data = ReportService(repo, report_store, evidence_store).download(report_id)
    return Response(
        content=data,
        media_type=CONTENT_TYPES.get(report.report_type, "application/octet-stream"),
        headers={"Content-Disposition": f'attachment; filename="{report.filename}"'},
    )
