"""Job lifecycle — the minimal create and delete operations evidence hangs off."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from bluhatch.core.errors import StorageError, ValidationError
from bluhatch.models.job import Job, JobType
from bluhatch.services.audit import AuditContext, record_audit
from bluhatch.services.quota import refresh_cached_usage
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore

logger = logging.getLogger(__name__)


def create_job(repo: ScopedRepository, fields: dict, audit_ctx: Optional[AuditContext] = None) -> Job:
    fields = dict(fields)
    job_type = JobType(fields.pop("job_type"))
    if job_type == JobType.other and not (fields.get("custom_job_type") or "").strip():
        raise ValidationError("custom_job_type is required when job_type is 'other'")

    job = repo.add_job(Job(id=uuid.uuid4(), job_type=job_type, protection_status=0, **fields))
    repo.commit()
    logger.info("Job %s created", job.id)

    record_audit(
        repo.db,
        audit_ctx or AuditContext(user_id=repo.owner_id),
        "job_created",
        job_id=job.id,
        details={"client_name": job.client_name, "job_type": job_type.value},
    )
    return job


def delete_job(
    repo: ScopedRepository,
    evidence_store: ObjectStore,
    report_store: ObjectStore,
    job_id: uuid.UUID,
    audit_ctx: Optional[AuditContext] = None,
) -> dict:
    """
    Delete a job and everything under it.

    The row delete (cascading to evidence, reports and timestamp requests)
    commits first. Object removal afterwards is best-effort: a failure is
    logged and the job stays deleted.
    """
    job = repo.get_job(job_id)
    client_name = job.client_name
    evidence_paths = [i.file_path for i in repo.list_evidence(job.id) if i.file_path]
    report_paths = [r.file_path for r in repo.list_reports(job.id)]

    repo.delete_job(job)
    repo.commit()

    for store, paths in ((evidence_store, evidence_paths), (report_store, report_paths)):
        try:
            store.delete(paths)
        except StorageError as exc:
            logger.error("Job %s deleted but %d object(s) remain: %s", job_id, len(paths), exc)

    refresh_cached_usage(repo)
    record_audit(
        repo.db,
        audit_ctx or AuditContext(user_id=repo.owner_id),
        "job_deleted",
        job_id=job_id,
        details={
            "client_name": client_name,
            "evidence_files_cleaned": len(evidence_paths),
            "reports_cleaned": len(report_paths),
        },
    )
    return {
        "success": True,
        "job_id": str(job_id),
        "evidence_files_cleaned": len(evidence_paths),
        "reports_cleaned": len(report_paths),
        "message": "Job and all associated evidence deleted successfully",
    }
