"""ORM models package — re-exports all models for Alembic auto-detection."""

from bluhatch.models.job import Job, JobType  # noqa: F401
from bluhatch.models.evidence_item import EvidenceItem, EvidenceType  # noqa: F401
from bluhatch.models.report import Report  # noqa: F401
from bluhatch.models.audit_log import AuditLog  # noqa: F401
from bluhatch.models.profile import Profile  # noqa: F401
from bluhatch.models.timestamp_request import (  # noqa: F401
    TimestampRequest,
    TimestampRequestStatus,
)
