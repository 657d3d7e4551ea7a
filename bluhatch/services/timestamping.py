"""
Timestamp anchoring
===================
Submits evidence hashes to OpenTimestamps calendar servers and records the
returned proof on the evidence row.

  - OpenTimestampsClient: POST the raw 32-byte digest to ``{calendar}/digest``.
  - anchor_evidence: idempotent; the proof is written at most once.
  - anchor_evidence_on_request: as above, recording a failed request on outage.
  - TimestampDispatcher: records a TimestampRequest and hands it to Celery.
  - verification_info: what a caller can show about an item's proof.

A stored proof means "a calendar accepted this hash". It is not a claim that
the hash has reached a Bitcoin block.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from bluhatch.core.config import settings
from bluhatch.core.errors import ExternalServiceUnavailable, ValidationError
from bluhatch.models.evidence_item import EvidenceItem
from bluhatch.models.timestamp_request import TimestampRequest, TimestampRequestStatus
from bluhatch.services.audit import AuditContext, record_audit
from bluhatch.services.hashing import is_sha256_hex
from bluhatch.services.scoped_repository import ScopedRepository

logger = logging.getLogger(__name__)

ANCHOR_TASK_NAME = "bluhatch.anchor_evidence_timestamp"


class OpenTimestampsClient:
    """Minimal calendar client: submit a digest, get back the pending proof bytes."""

    def __init__(
        self,
        calendar_urls: Optional[list[str]] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.calendar_urls = list(calendar_urls or settings.timestamp_calendar_urls)
        self.timeout = timeout or settings.timestamp_timeout_seconds
        self._transport = transport

    def submit(self, hash_hex: str) -> str:
        """Return the calendar's response as lowercase hex."""
        if not is_sha256_hex(hash_hex):
            raise ValidationError("Timestamp submission requires a SHA-256 hex digest")
        digest = bytes.fromhex(hash_hex)

        failures = []
        for calendar in self.calendar_urls:
            url = f"{calendar.rstrip('/')}/digest"
            try:
                with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                    resp = client.post(
                        url,
                        content=digest,
                        headers={
                            "Content-Type": "application/octet-stream",
                            "Accept": "application/vnd.opentimestamps.v1",
                        },
                    )
                    resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.warning("Calendar %s rejected digest: %s", calendar, exc.response.status_code)
                failures.append(f"{calendar}: HTTP {exc.response.status_code}")
                continue
            except httpx.HTTPError as exc:
                logger.warning("Calendar %s unreachable: %s", calendar, exc)
                failures.append(f"{calendar}: {exc.__class__.__name__}")
                continue

            if not resp.content:
                failures.append(f"{calendar}: empty response")
                continue
            logger.info("Digest %s accepted by %s", hash_hex[:16], calendar)
            return resp.content.hex()

        raise ExternalServiceUnavailable(
            "Timestamp service unavailable: " + ("; ".join(failures) or "no calendars configured")
        )


@dataclass(frozen=True)
class AnchorOutcome:
    evidence_id: uuid.UUID
    proof: str
    already_timestamped: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "success": True,
            "evidence_id": str(self.evidence_id),
            "timestamp_hash": self.proof,
            "already_timestamped": self.already_timestamped,
            "message": self.message,
        }


def anchor_evidence(
    repo: ScopedRepository,
    client: OpenTimestampsClient,
    evidence_id: uuid.UUID,
    audit_ctx: Optional[AuditContext] = None,
) -> AnchorOutcome:
    item = repo.get_evidence(evidence_id)
    if item.blockchain_timestamp:
        return AnchorOutcome(item.id, item.blockchain_timestamp, True, "Timestamp already exists")
    if not item.file_hash:
        raise ValidationError("Evidence has no file hash to timestamp")

    proof = client.submit(item.file_hash)

    written = repo.set_blockchain_timestamp(item.id, proof)
    repo.commit()
    if not written:
        # Another worker got there first; its proof stands
        repo.db.refresh(item)
        return AnchorOutcome(item.id, item.blockchain_timestamp, True, "Timestamp already exists")

    logger.info("Evidence %s anchored (proof %d bytes)", item.id, len(proof) // 2)
    record_audit(
        repo.db,
        audit_ctx or AuditContext(user_id=repo.owner_id),
        "blockchain_timestamp_created",
        job_id=item.job_id,
        details={
            "evidence_id": str(item.id),
            "file_hash": item.file_hash,
            "timestamp_hash": proof[:64],
        },
    )
    return AnchorOutcome(item.id, proof, False, "Blockchain timestamp created successfully")


def anchor_evidence_on_request(
    repo: ScopedRepository,
    client: OpenTimestampsClient,
    evidence_id: uuid.UUID,
    audit_ctx: Optional[AuditContext] = None,
) -> AnchorOutcome:
    """Caller-triggered anchor. A calendar outage leaves a failed request row."""
    try:
        return anchor_evidence(repo, client, evidence_id, audit_ctx)
    except ExternalServiceUnavailable as exc:
        request = repo.add_timestamp_request(evidence_id)
        request.status = TimestampRequestStatus.failed
        request.error_detail = exc.message[:2000]
        repo.commit()
        raise


def _celery_send(name: str, args: list) -> None:
    from bluhatch.workers.celery_app import celery_app

    celery_app.send_task(name, args=args)


class TimestampDispatcher:
    """Fire-and-forget hand-off of anchoring work to the Celery worker."""

    def __init__(self, repo: ScopedRepository, send: Optional[Callable[[str, list], None]] = None):
        self.repo = repo
        self._send = send or _celery_send

    def dispatch(self, evidence_id: uuid.UUID) -> Optional[TimestampRequest]:
        try:
            request = self.repo.add_timestamp_request(evidence_id)
            self.repo.commit()
        except SQLAlchemyError as exc:
            self.repo.rollback()
            logger.error("Could not record timestamp request for %s: %s", evidence_id, exc)
            return None
        self._enqueue(request)
        return request

    def requeue(self, request: TimestampRequest) -> TimestampRequest:
        request.status = TimestampRequestStatus.pending
        request.error_detail = None
        self.repo.commit()
        self._enqueue(request)
        return request

    def _enqueue(self, request: TimestampRequest) -> None:
        try:
            self._send(
                ANCHOR_TASK_NAME,
                [str(request.id), str(request.evidence_id), str(self.repo.owner_id)],
            )
        except Exception as exc:
            # Broker down: leave a failed row behind so the requeue task can pick it up
            logger.error("Timestamp dispatch failed for %s: %s", request.evidence_id, exc)
            request.status = TimestampRequestStatus.failed
            request.error_detail = f"Dispatch failed: {exc}"
            try:
                self.repo.commit()
            except SQLAlchemyError as db_exc:
                self.repo.rollback()
                logger.error("Could not mark request %s failed: %s", request.id, db_exc)


def verification_info(
    item: EvidenceItem,
    last_request: Optional[TimestampRequest] = None,
    url_template: Optional[str] = None,
) -> dict:
    template = url_template or settings.timestamp_verify_url_template
    if item.blockchain_timestamp:
        status = "timestamped"
        message = "A timestamp proof exists for this file hash."
    elif last_request is not None and last_request.status == TimestampRequestStatus.failed:
        status = "error"
        message = last_request.error_detail or "Timestamp request failed"
    else:
        status = "pending"
        message = "Timestamping in progress."

    verification_url = None
    if item.blockchain_timestamp and item.file_hash:
        verification_url = template.format(file_hash=item.file_hash, proof=item.blockchain_timestamp)

    return {
        "success": True,
        "evidence_id": str(item.id),
        "status": status,
        "file_hash": item.file_hash,
        "blockchain_timestamp": item.blockchain_timestamp,
        "verification_url": verification_url,
        "message": message,
    }
