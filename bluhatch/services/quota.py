"""Storage quota tracking and age-based evidence cleanup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from bluhatch.core.config import settings
from bluhatch.core.errors import StorageError, ValidationError
from bluhatch.services.audit import AuditContext, record_audit
from bluhatch.services.protection import recompute_job_protection
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageUsage:
    evidence_size_bytes: int
    reports_size_bytes: int
    file_count: int
    limit_bytes: int

    @property
    def total_size_bytes(self) -> int:
        return self.evidence_size_bytes + self.reports_size_bytes

    @property
    def usage_percentage(self) -> float:
        return 100.0 * self.total_size_bytes / self.limit_bytes if self.limit_bytes else 0.0

    @property
    def remaining_bytes(self) -> int:
        # Negative once over the limit
        return self.limit_bytes - self.total_size_bytes

    @property
    def is_over_limit(self) -> bool:
        return self.total_size_bytes > self.limit_bytes

    def to_dict(self) -> dict:
        return {
            "total_size_bytes": self.total_size_bytes,
            "evidence_size_bytes": self.evidence_size_bytes,
            "reports_size_bytes": self.reports_size_bytes,
            "file_count": self.file_count,
            "limit_bytes": self.limit_bytes,
            "usage_percentage": self.usage_percentage,
            "remaining_bytes": self.remaining_bytes,
            "is_over_limit": self.is_over_limit,
        }


def storage_limit(repo: ScopedRepository, default_limit: Optional[int] = None) -> int:
    profile = repo.get_profile()
    if profile is not None and profile.storage_limit_bytes:
        return profile.storage_limit_bytes
    return default_limit or settings.storage_limit_bytes


def calculate_storage_usage(
    repo: ScopedRepository, default_limit: Optional[int] = None
) -> StorageUsage:
    totals = repo.storage_totals()
    return StorageUsage(
        evidence_size_bytes=totals["evidence_bytes"],
        reports_size_bytes=totals["reports_bytes"],
        file_count=totals["file_count"],
        limit_bytes=storage_limit(repo, default_limit),
    )


def refresh_cached_usage(
    repo: ScopedRepository, default_limit: Optional[int] = None
) -> Optional[StorageUsage]:
    """Write the current total onto the profile. Failures are logged, never raised."""
    try:
        usage = calculate_storage_usage(repo, default_limit)
        repo.upsert_profile(storage_used_bytes=usage.total_size_bytes)
        repo.commit()
    except SQLAlchemyError as exc:
        repo.rollback()
        logger.warning("Could not refresh cached storage usage for %s: %s", repo.owner_id, exc)
        return None
    return usage


@dataclass
class CleanupResult:
    deleted_count: int = 0
    freed_bytes: int = 0
    affected_job_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "deleted_count": self.deleted_count,
            "freed_bytes": self.freed_bytes,
            "affected_jobs": [str(j) for j in self.affected_job_ids],
            "message": f"Cleaned up {self.deleted_count} old evidence items",
        }


def cleanup_storage(
    repo: ScopedRepository,
    store: ObjectStore,
    older_than_days: Optional[int] = None,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
    audit_ctx: Optional[AuditContext] = None,
) -> CleanupResult:
    """
    Delete the oldest evidence items created before the age threshold.

    Storage objects go first: if that fails nothing in the database is
    touched. Rows are then deleted and the affected jobs rescored in one
    transaction.
    """
    older_than_days = older_than_days if older_than_days is not None else settings.cleanup_older_than_days
    limit = limit if limit is not None else settings.cleanup_batch_limit
    if older_than_days < 0:
        raise ValidationError("older_than_days cannot be negative")
    if limit < 1:
        raise ValidationError("limit must be at least 1")

    now = now or datetime.now(timezone.utc)
    threshold = now - timedelta(days=older_than_days)

    items = repo.oldest_evidence(before=threshold, limit=limit)
    if not items:
        return CleanupResult()

    paths = [i.file_path for i in items if i.file_path]
    store.delete(paths)

    result = CleanupResult(
        deleted_count=len(items),
        freed_bytes=sum(i.file_size or 0 for i in items),
    )
    job_ids = []
    for item in items:
        if item.job_id not in job_ids:
            job_ids.append(item.job_id)
    result.affected_job_ids = job_ids

    try:
        repo.delete_evidence(items)
        for job_id in job_ids:
            recompute_job_protection(repo, repo.get_job(job_id))
        repo.commit()
    except SQLAlchemyError as exc:
        repo.rollback()
        logger.error("Cleanup removed %d object(s) but row deletion failed: %s", len(paths), exc)
        raise StorageError(f"Cleanup record deletion failed: {exc}") from exc

    logger.info(
        "Cleanup for %s removed %d item(s), %d bytes",
        repo.owner_id,
        result.deleted_count,
        result.freed_bytes,
    )
    refresh_cached_usage(repo)
    record_audit(
        repo.db,
        audit_ctx or AuditContext(user_id=repo.owner_id),
        "storage_cleanup",
        details={
            "deleted_count": result.deleted_count,
            "freed_bytes": result.freed_bytes,
            "older_than_days": older_than_days,
        },
    )
    return result
