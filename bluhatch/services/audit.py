"""Audit log — append-only write to the audit_logs table, optionally mirrored to JSONL."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bluhatch.core.config import settings
from bluhatch.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditContext:
    """Who performed an action, and from where."""

    user_id: uuid.UUID
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_headers(cls, user_id: uuid.UUID, headers) -> "AuditContext":
        forwarded = headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else headers.get("x-real-ip")
        return cls(user_id=user_id, ip_address=ip or None, user_agent=headers.get("user-agent"))


def record_audit(
    db: Session,
    ctx: AuditContext,
    action: str,
    job_id: Optional[uuid.UUID] = None,
    details: Optional[dict] = None,
) -> Optional[AuditLog]:
    """
    Best-effort audit write, committed in its own transaction.

    Audit failures are logged and never propagate: the operation being
    audited has already committed by the time this runs.
    """
    now = datetime.now(timezone.utc)
    details = details or {}

    row = AuditLog(
        id=uuid.uuid4(),
        user_id=ctx.user_id,
        job_id=job_id,
        action=action,
        details=details,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        created_at=now,
    )
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Audit write failed for %s: %s", action, exc)
        return None

    if settings.audit_log_path:
        _append_jsonl(Path(settings.audit_log_path), row, now)
    return row


def _append_jsonl(path: Path, row: AuditLog, now: datetime) -> None:
    line = {
        "id": str(row.id),
        "user_id": str(row.user_id),
        "job_id": str(row.job_id) if row.job_id else None,
        "action": row.action,
        "details": row.details,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "created_at": now.isoformat(),
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(line, separators=(",", ":"), sort_keys=True, default=str) + "\n")
    except OSError as exc:
        # DB is authoritative
        logger.warning("Could not append to %s: %s", path, exc)
