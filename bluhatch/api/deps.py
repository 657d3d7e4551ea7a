"""FastAPI dependencies — caller identity and per-request service wiring."""

from __future__ import annotations

import uuid

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from bluhatch.core.config import settings
from bluhatch.core.database import get_db
from bluhatch.core.security import parse_authorization_header
from bluhatch.services.audit import AuditContext
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore, get_object_store
from bluhatch.services.timestamping import OpenTimestampsClient, TimestampDispatcher


def get_caller(authorization: str | None = Header(default=None)) -> uuid.UUID:
    return parse_authorization_header(authorization)


def get_repository(
    db: Session = Depends(get_db),
    caller: uuid.UUID = Depends(get_caller),
) -> ScopedRepository:
    return ScopedRepository(db, caller)


def get_evidence_store() -> ObjectStore:
    return get_object_store(settings.evidence_bucket)


def get_report_store() -> ObjectStore:
    return get_object_store(settings.reports_bucket)


def get_timestamp_client() -> OpenTimestampsClient:
    return OpenTimestampsClient()


def get_dispatcher(repo: ScopedRepository = Depends(get_repository)) -> TimestampDispatcher:
    return TimestampDispatcher(repo)


def get_audit_context(
    request: Request,
    caller: uuid.UUID = Depends(get_caller),
) -> AuditContext:
    return AuditContext.from_headers(caller, request.headers)
