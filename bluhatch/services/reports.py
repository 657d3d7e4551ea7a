"""Report generation — lay out, render, store and record a job's protection report."""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bluhatch.core.errors import StorageError, ValidationError
from bluhatch.models.report import REPORT_TYPES, Report
from bluhatch.services.audit import AuditContext, record_audit
from bluhatch.services.protection import recompute_job_protection
from bluhatch.services.report_layout import (
    ReportIssuer,
    ReportLayoutEngine,
    apply_footers,
    report_number,
)
from bluhatch.services.report_render import CONTENT_TYPES, render_html, render_pdf
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^\w\-.]")


@dataclass(frozen=True)
class GeneratedReport:
    id: uuid.UUID
    report_number: str
    filename: str
    file_path: str
    file_size: int
    report_type: str
    page_count: int
    metadata: dict

    def to_dict(self) -> dict:
        return {
            "success": True,
            "report_id": str(self.id),
            "report_number": self.report_number,
            "filename": self.filename,
            "file_path": self.file_path,
            "file_size": self.file_size,
            "report_type": self.report_type,
            "page_count": self.page_count,
            "metadata": self.metadata,
            "message": "Report generated successfully",
        }


def report_filename(brand: str, client_name: str, generated_at: datetime, report_type: str) -> str:
    client = _UNSAFE_NAME_CHARS.sub("", re.sub(r"\s+", "_", client_name.strip())) or "Client"
    return f"{brand.title()}-Report-{client}-{generated_at.strftime('%Y-%m-%d-%H%M%S')}.{report_type}"


class ReportService:
    def __init__(
        self,
        repo: ScopedRepository,
        report_store: ObjectStore,
        evidence_store: ObjectStore,
        audit_ctx: Optional[AuditContext] = None,
        layout: Optional[ReportLayoutEngine] = None,
    ):
        self.repo = repo
        self.report_store = report_store
        self.evidence_store = evidence_store
        self.audit_ctx = audit_ctx or AuditContext(user_id=repo.owner_id)
        self.layout = layout or ReportLayoutEngine()

    def generate(
        self,
        job_id: uuid.UUID,
        report_type: str = "pdf",
        generated_at: Optional[datetime] = None,
    ) -> GeneratedReport:
        if report_type not in REPORT_TYPES:
            raise ValidationError(
                f"Invalid report type: {report_type}. Allowed: {', '.join(REPORT_TYPES)}"
            )
        generated_at = generated_at or datetime.now(timezone.utc)

        job = self.repo.get_job(job_id)
        evidence = self.repo.list_evidence(job.id)
        score = recompute_job_protection(self.repo, job)
        issuer = ReportIssuer.from_profile(self.repo.get_profile())

        document = self.layout.build(
            job,
            evidence,
            issuer,
            generated_at,
            fetch_image=self.evidence_store.get,
            protection_score=score,
        )
        apply_footers(document)
        data = render_pdf(document) if report_type == "pdf" else render_html(document)

        filename = report_filename(self.layout.brand, job.client_name, generated_at, report_type)
        file_path = self.report_store.put(
            f"{self.repo.owner_id}/{filename}",
            data,
            content_type=CONTENT_TYPES[report_type],
        )

        # Snapshot, not a live view of the job
        metadata = {
            "evidence_count": len(evidence),
            "protection_status": score,
            "client_name": job.client_name,
            "job_type": job.job_type.value,
            "generated_at": generated_at.isoformat(),
        }
        try:
            report = self.repo.add_report(
                Report(
                    id=uuid.uuid4(),
                    job_id=job.id,
                    filename=filename,
                    file_path=file_path,
                    file_size=len(data),
                    report_type=report_type,
                    status="generated",
                    report_metadata=metadata,
                )
            )
            self.repo.commit()
        except Exception as exc:
            self.repo.rollback()
            try:
                self.report_store.delete([file_path])
            except StorageError as cleanup_exc:
                logger.error("Could not remove orphaned report %s: %s", file_path, cleanup_exc)
            raise StorageError(f"Report record creation failed: {exc}") from exc

        logger.info(
            "Generated %s report %s for job %s (%d pages, %d bytes)",
            report_type,
            report.id,
            job_id,
            document.page_count,
            len(data),
        )
        record_audit(
            self.repo.db,
            self.audit_ctx,
            "report_generated",
            job_id=job_id,
            details={
                "report_id": str(report.id),
                "report_type": report_type,
                "filename": filename,
                "evidence_count": len(evidence),
                "protection_status": score,
            },
        )

        return GeneratedReport(
            id=report.id,
            report_number=report_number(job_id, self.layout.report_id_prefix),
            filename=filename,
            file_path=file_path,
            file_size=len(data),
            report_type=report_type,
            page_count=document.page_count,
            metadata=metadata,
        )

    def download(self, report_id: uuid.UUID) -> tuple[Report, bytes]:
        report = self.repo.get_report(report_id)
        return report, self.report_store.get(report.file_path)
