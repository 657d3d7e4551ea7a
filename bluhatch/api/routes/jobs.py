"""Jobs API — minimal create / read / delete plus the protection score."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from bluhatch.api.deps import (
    get_audit_context,
    get_evidence_store,
    get_report_store,
    get_repository,
)
from bluhatch.api.schemas import JobCreate, JobOut, envelope
from bluhatch.services import jobs as job_service
from bluhatch.services.audit import AuditContext
from bluhatch.services.protection import protection_level, recompute_job_protection
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore

router = APIRouter(prefix="/jobs", tags=["jobs"])


def _out(job) -> dict:
    return JobOut.model_validate(job).model_dump(mode="json")


@router.post("")
def create_job(
    body: JobCreate,
    repo: ScopedRepository = Depends(get_repository),
    audit_ctx: AuditContext = Depends(get_audit_context),
):
    job = job_service.create_job(repo, body.model_dump(), audit_ctx)
    return envelope(job=_out(job))


@router.get("")
def list_jobs(repo: ScopedRepository = Depends(get_repository)):
    jobs = repo.list_jobs()
    return envelope(jobs=[_out(j) for j in jobs], count=len(jobs))


@router.get("/{job_id}")
def get_job(job_id: uuid.UUID, repo: ScopedRepository = Depends(get_repository)):
    return envelope(job=_out(repo.get_job(job_id)))


@router.delete("/{job_id}")
def delete_job(
    job_id: uuid.UUID,
    repo: ScopedRepository = Depends(get_repository),
    evidence_store: ObjectStore = Depends(get_evidence_store),
    report_store: ObjectStore = Depends(get_report_store),
    audit_ctx: AuditContext = Depends(get_audit_context),
):
    return job_service.delete_job(repo, evidence_store, report_store, job_id, audit_ctx)


@router.get("/{job_id}/protection")
def get_protection(job_id: uuid.UUID, repo: ScopedRepository = Depends(get_repository)):
    job = repo.get_job(job_id)
    score = recompute_job_protection(repo, job)
    repo.commit()
    return envelope(
        job_id=str(job.id),
        protection_status=score,
        protection_level=protection_level(score),
    )
