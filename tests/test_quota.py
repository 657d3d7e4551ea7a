"""
Tests for storage quota and cleanup
===================================
  - Usage figures derive from evidence + report sizes and the tenant limit.
  - Cleanup deletes the oldest items, objects first, then rows and scores.
  - Job deletion cascades to evidence, reports and their objects.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from bluhatch.core.errors import StorageError, ValidationError
from bluhatch.models import AuditLog, EvidenceItem, EvidenceType, Report, TimestampRequest
from bluhatch.services import jobs as job_service
from bluhatch.services.quota import (
    StorageUsage,
    calculate_storage_usage,
    cleanup_storage,
    refresh_cached_usage,
)
from bluhatch.services.scoped_repository import ScopedRepository

from conftest import FIXED_NOW, make_evidence, make_job


def _report(repo, job, size, path="r.pdf") -> Report:
    report = repo.add_report(
        Report(
            id=uuid.uuid4(),
            job_id=job.id,
            filename=path,
            file_path=f"{repo.owner_id}/{path}",
            file_size=size,
            report_type="pdf",
            report_metadata={},
        )
    )
    repo.commit()
    return report


# ===========================================================================
# Usage
# ===========================================================================


class TestStorageUsage:
    @pytest.mark.parametrize(
        "evidence, reports, limit",
        [
            (0, 0, 1000),
            (300, 200, 1000),
            (999, 1, 1000),
            (1500, 250, 1000),
            (123_456_789, 987_654, 50 * 1024**3),
        ],
    )
    def test_derived_figures(self, evidence, reports, limit):
        usage = StorageUsage(evidence, reports, file_count=3, limit_bytes=limit)
        total = evidence + reports
        assert usage.total_size_bytes == total
        assert usage.usage_percentage == 100 * total / limit
        assert usage.is_over_limit == (total > limit)
        assert usage.remaining_bytes == limit - total

    def test_exactly_at_limit_is_not_over(self):
        assert StorageUsage(600, 400, 2, 1000).is_over_limit is False

    def test_sums_owner_rows_only(self, repo, db, other_owner_id, sample_job):
        make_evidence(repo, sample_job, file_size=300, file_path="a.jpg")
        make_evidence(repo, sample_job, file_size=0)
        _report(repo, sample_job, 200)

        other = ScopedRepository(db, other_owner_id)
        make_evidence(other, make_job(other), file_size=10_000, file_path="b.jpg")

        usage = calculate_storage_usage(repo, default_limit=1000)
        assert usage.evidence_size_bytes == 300
        assert usage.reports_size_bytes == 200
        assert usage.file_count == 2
        assert usage.usage_percentage == 50.0
        assert usage.to_dict()["is_over_limit"] is False

    def test_profile_limit_overrides_default(self, repo, sample_job):
        make_evidence(repo, sample_job, file_size=800, file_path="a.jpg")
        repo.upsert_profile(storage_limit_bytes=500)
        repo.commit()

        usage = calculate_storage_usage(repo, default_limit=10_000)
        assert usage.limit_bytes == 500
        assert usage.is_over_limit is True
        assert usage.remaining_bytes == -300

    def test_refresh_writes_cached_total(self, repo, sample_job):
        make_evidence(repo, sample_job, file_size=700, file_path="a.jpg")
        refresh_cached_usage(repo)
        assert repo.get_profile().storage_used_bytes == 700

    def test_refresh_failure_is_swallowed(self, repo, monkeypatch):
        monkeypatch.setattr(
            repo, "storage_totals", MagicMock(side_effect=OperationalError("SELECT", {}, Exception("db gone")))
        )
        assert refresh_cached_usage(repo) is None


# ===========================================================================
# Cleanup
# ===========================================================================


@pytest.fixture
def aged_items(repo, evidence_store, sample_job):
    """Three items 60, 45 and 5 days old; the two oldest carry files."""
    items = []
    for days, name in ((60, "old.jpg"), (45, "older.jpg"), (5, None)):
        path = None
        if name:
            path = evidence_store.put(f"{repo.owner_id}/{sample_job.id}/{name}", b"x" * 100)
        items.append(
            make_evidence(
                repo,
                sample_job,
                evidence_type=EvidenceType.before if days > 5 else EvidenceType.after,
                file_path=path,
                file_size=100 if path else 0,
                created_at=FIXED_NOW - timedelta(days=days),
            )
        )
    return items


class TestCleanup:
    def test_removes_items_older_than_threshold(self, repo, db, evidence_store, sample_job, aged_items):
        result = cleanup_storage(repo, evidence_store, older_than_days=30, limit=10, now=FIXED_NOW)

        assert result.deleted_count == 2
        assert result.freed_bytes == 200
        assert result.affected_job_ids == [sample_job.id]
        assert evidence_store.list_keys() == []

        remaining = repo.list_evidence(sample_job.id)
        assert [i.id for i in remaining] == [aged_items[2].id]
        assert repo.get_job(sample_job.id).protection_status == 21

        audit = db.scalars(select(AuditLog).where(AuditLog.action == "storage_cleanup")).one()
        assert audit.details["deleted_count"] == 2

    def test_limit_takes_oldest_first(self, repo, evidence_store, aged_items):
        result = cleanup_storage(repo, evidence_store, older_than_days=1, limit=1, now=FIXED_NOW)
        assert result.deleted_count == 1
        assert evidence_store.list_keys() == [aged_items[1].file_path]

    def test_nothing_old_enough(self, repo, evidence_store, aged_items):
        result = cleanup_storage(repo, evidence_store, older_than_days=365, now=FIXED_NOW)
        assert result.to_dict()["deleted_count"] == 0
        assert len(evidence_store.list_keys()) == 2

    def test_storage_failure_leaves_rows(self, repo, evidence_store, sample_job, aged_items, monkeypatch):
        monkeypatch.setattr(evidence_store, "delete", MagicMock(side_effect=StorageError("Delete failed")))
        with pytest.raises(StorageError):
            cleanup_storage(repo, evidence_store, older_than_days=30, now=FIXED_NOW)
        assert len(repo.list_evidence(sample_job.id)) == 3

    def test_row_delete_failure_raises(self, repo, evidence_store, aged_items, monkeypatch):
        monkeypatch.setattr(
            repo, "delete_evidence", MagicMock(side_effect=OperationalError("DELETE", {}, Exception("locked")))
        )
        with pytest.raises(StorageError, match="Cleanup record deletion failed"):
            cleanup_storage(repo, evidence_store, older_than_days=30, now=FIXED_NOW)

    def test_other_owner_untouched(self, db, other_owner_id, evidence_store, aged_items):
        other = ScopedRepository(db, other_owner_id)
        result = cleanup_storage(other, evidence_store, older_than_days=0, now=FIXED_NOW)
        assert result.deleted_count == 0
        assert len(db.scalars(select(EvidenceItem)).all()) == 3

    @pytest.mark.parametrize("kwargs", [{"older_than_days": -1}, {"limit": 0}])
    def test_rejects_bad_arguments(self, repo, evidence_store, kwargs):
        with pytest.raises(ValidationError):
            cleanup_storage(repo, evidence_store, **kwargs)


# ===========================================================================
# Job deletion
# ===========================================================================


class TestDeleteJob:
    def test_cascades_rows_and_objects(self, repo, db, evidence_store, report_store, sample_job):
        path = evidence_store.put(f"{repo.owner_id}/{sample_job.id}/a.jpg", b"img")
        item = make_evidence(repo, sample_job, file_path=path, file_size=3)
        repo.add_timestamp_request(item.id)
        repo.commit()
        report = _report(repo, sample_job, 50)
        report_store.put(report.file_path, b"%PDF-")

        body = job_service.delete_job(repo, evidence_store, report_store, sample_job.id)

        assert body["message"] == "Job and all associated evidence deleted successfully"
        assert body["evidence_files_cleaned"] == 1
        assert body["reports_cleaned"] == 1
        assert evidence_store.list_keys() == []
        assert report_store.list_keys() == []

        db.expire_all()
        assert db.scalars(select(EvidenceItem)).all() == []
        assert db.scalars(select(Report)).all() == []
        assert db.scalars(select(TimestampRequest)).all() == []
        assert repo.get_profile().storage_used_bytes == 0

        audit = db.scalars(select(AuditLog).where(AuditLog.action == "job_deleted")).one()
        assert audit.job_id == sample_job.id

    def test_object_failure_keeps_job_deleted(self, repo, evidence_store, report_store, sample_job, monkeypatch):
        make_evidence(repo, sample_job, file_path="gone.jpg")
        monkeypatch.setattr(evidence_store, "delete", MagicMock(side_effect=StorageError("Delete failed")))

        job_service.delete_job(repo, evidence_store, report_store, sample_job.id)
        assert repo.list_jobs() == []

    def test_cannot_delete_other_owners_job(self, db, other_owner_id, evidence_store, report_store, sample_job):
        from bluhatch.core.errors import NotFoundOrForbidden

        other = ScopedRepository(db, other_owner_id)
        with pytest.raises(NotFoundOrForbidden):
            job_service.delete_job(other, evidence_store, report_store, sample_job.id)


class TestCreateJob:
    def test_other_requires_custom_type(self, repo):
        with pytest.raises(ValidationError, match="custom_job_type"):
            job_service.create_job(
                repo, {"client_name": "A", "client_address": "B", "job_type": "other"}
            )

    def test_creates_with_zero_score(self, repo, db):
        job = job_service.create_job(
            repo, {"client_name": "A", "client_address": "B", "job_type": "roofing"}
        )
        assert job.protection_status == 0
        assert job.user_id == repo.owner_id
        assert db.scalars(select(AuditLog).where(AuditLog.action == "job_created")).one()
