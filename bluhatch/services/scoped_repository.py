"""
Tenant-scoped data access
=========================
Every read and write of tenant data goes through a ``ScopedRepository``
constructed with the caller's user id. Each query it builds carries
``user_id == owner_id``; there is no unscoped accessor.

A record owned by someone else is reported exactly like a missing one
(``NotFoundOrForbidden``), so callers cannot discover other tenants' ids.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from bluhatch.core.errors import MissingCallerIdentity, NotFoundOrForbidden
from bluhatch.models import (
    EvidenceItem,
    Job,
    Profile,
    Report,
    TimestampRequest,
    TimestampRequestStatus,
)

logger = logging.getLogger(__name__)


class ScopedRepository:
    """Query layer bound to one owner."""

    def __init__(self, db: Session, owner_id: Optional[uuid.UUID]):
        if owner_id is None:
            raise MissingCallerIdentity("Data access requires an authenticated caller")
        self.db = db
        self.owner_id = owner_id

    def _select(self, model):
        return select(model).where(model.user_id == self.owner_id)

    # ── transaction control ──────────────────────────────────────────

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    # ── jobs ─────────────────────────────────────────────────────────

    def get_job(self, job_id: uuid.UUID) -> Job:
        job = self.db.scalars(self._select(Job).where(Job.id == job_id)).first()
        if job is None:
            raise NotFoundOrForbidden("Job not found or access denied")
        return job

    def list_jobs(self) -> list[Job]:
        return list(self.db.scalars(self._select(Job).order_by(Job.created_at.desc())))

    def add_job(self, job: Job) -> Job:
        job.user_id = self.owner_id
        self.db.add(job)
        self.db.flush()
        return job

    def delete_job(self, job: Job) -> None:
        if job.user_id != self.owner_id:
            raise NotFoundOrForbidden("Job not found or access denied")
        self.db.delete(job)
        self.db.flush()

    # ── evidence ─────────────────────────────────────────────────────

    def list_evidence(self, job_id: uuid.UUID) -> list[EvidenceItem]:
        stmt = (
            self._select(EvidenceItem)
            .where(EvidenceItem.job_id == job_id)
            .order_by(EvidenceItem.created_at.asc())
        )
        return list(self.db.scalars(stmt))

    def get_evidence(self, evidence_id: uuid.UUID) -> EvidenceItem:
        item = self.db.scalars(
            self._select(EvidenceItem).where(EvidenceItem.id == evidence_id)
        ).first()
        if item is None:
            raise NotFoundOrForbidden("Evidence not found or access denied")
        return item

    def add_evidence(self, item: EvidenceItem) -> EvidenceItem:
        item.user_id = self.owner_id
        self.db.add(item)
        self.db.flush()
        return item

    def set_blockchain_timestamp(self, evidence_id: uuid.UUID, proof: str) -> bool:
        """Write the proof only if none is recorded yet. Returns True if this call wrote it."""
        stmt = (
            update(EvidenceItem)
            .where(
                EvidenceItem.id == evidence_id,
                EvidenceItem.user_id == self.owner_id,
                EvidenceItem.blockchain_timestamp.is_(None),
            )
            .values(blockchain_timestamp=proof)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        cached = self.db.identity_map.get(self.db.identity_key(EvidenceItem, evidence_id))
        if cached is not None:
            self.db.expire(cached, ["blockchain_timestamp"])
        return result.rowcount == 1

    def delete_evidence(self, items: list[EvidenceItem]) -> None:
        for item in items:
            if item.user_id != self.owner_id:
                raise NotFoundOrForbidden("Evidence not found or access denied")
            self.db.delete(item)
        self.db.flush()

    def oldest_evidence(self, before: datetime, limit: int) -> list[EvidenceItem]:
        stmt = (
            self._select(EvidenceItem)
            .where(EvidenceItem.created_at < before)
            .order_by(EvidenceItem.created_at.asc())
            .limit(limit)
        )
        return list(self.db.scalars(stmt))

    # ── reports ──────────────────────────────────────────────────────

    def add_report(self, report: Report) -> Report:
        report.user_id = self.owner_id
        self.db.add(report)
        self.db.flush()
        return report

    def list_reports(self, job_id: Optional[uuid.UUID] = None) -> list[Report]:
        stmt = self._select(Report)
        if job_id is not None:
            stmt = stmt.where(Report.job_id == job_id)
        return list(self.db.scalars(stmt.order_by(Report.created_at.desc())))

    def get_report(self, report_id: uuid.UUID) -> Report:
        report = self.db.scalars(self._select(Report).where(Report.id == report_id)).first()
        if report is None:
            raise NotFoundOrForbidden("Report not found or access denied")
        return report

    # ── storage accounting ───────────────────────────────────────────

    def storage_totals(self) -> dict:
        """Byte and file totals across the owner's evidence and reports."""
        evidence_bytes, evidence_files = self.db.execute(
            select(
                func.coalesce(func.sum(EvidenceItem.file_size), 0),
                func.count(EvidenceItem.file_path),
            ).where(EvidenceItem.user_id == self.owner_id)
        ).one()
        report_bytes, report_files = self.db.execute(
            select(
                func.coalesce(func.sum(Report.file_size), 0),
                func.count(Report.id),
            ).where(Report.user_id == self.owner_id)
        ).one()
        return {
            "evidence_bytes": int(evidence_bytes),
            "reports_bytes": int(report_bytes),
            "file_count": int(evidence_files) + int(report_files),
        }

    def get_profile(self) -> Optional[Profile]:
        return self.db.get(Profile, self.owner_id)

    def upsert_profile(self, **fields) -> Profile:
        profile = self.get_profile()
        if profile is None:
            profile = Profile(user_id=self.owner_id)
            self.db.add(profile)
        for key, value in fields.items():
            setattr(profile, key, value)
        self.db.flush()
        return profile

    # ── timestamp requests ───────────────────────────────────────────

    def add_timestamp_request(self, evidence_id: uuid.UUID) -> TimestampRequest:
        request = TimestampRequest(
            evidence_id=evidence_id,
            user_id=self.owner_id,
            status=TimestampRequestStatus.pending,
        )
        self.db.add(request)
        self.db.flush()
        return request

    def get_timestamp_request(self, request_id: uuid.UUID) -> Optional[TimestampRequest]:
        return self.db.scalars(
            self._select(TimestampRequest).where(TimestampRequest.id == request_id)
        ).first()

    def latest_timestamp_request(self, evidence_id: uuid.UUID) -> Optional[TimestampRequest]:
        stmt = (
            self._select(TimestampRequest)
            .where(TimestampRequest.evidence_id == evidence_id)
            .order_by(TimestampRequest.created_at.desc())
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def failed_timestamp_requests(self, limit: int = 100) -> list[TimestampRequest]:
        stmt = (
            self._select(TimestampRequest)
            .where(TimestampRequest.status == TimestampRequestStatus.failed)
            .order_by(TimestampRequest.created_at.asc())
            .limit(limit)
        )
        return list(self.db.scalars(stmt))
