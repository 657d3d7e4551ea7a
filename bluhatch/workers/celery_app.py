import logging
import uuid

from celery import Celery
from celery.signals import setup_logging

from bluhatch.core.config import settings

celery_app = Celery(
    "bluhatch",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)

logger = logging.getLogger(__name__)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    from bluhatch.core.logging import configure_logging

    configure_logging()


def _get_db():
    from bluhatch.core.database import SessionLocal
    return SessionLocal()


@celery_app.task(name="bluhatch.ping")
def ping():
    return {"ok": True}


@celery_app.task(name="bluhatch.anchor_evidence_timestamp", bind=True, max_retries=0)
def anchor_evidence_timestamp(self, request_id: str, evidence_id: str, owner_id: str):
    """Submit one evidence hash to the timestamp calendars and record the proof."""
    from bluhatch.models.timestamp_request import TimestampRequestStatus
    from bluhatch.services.scoped_repository import ScopedRepository
    from bluhatch.services.timestamping import OpenTimestampsClient, anchor_evidence

    db = _get_db()
    try:
        repo = ScopedRepository(db, uuid.UUID(owner_id))
        request = repo.get_timestamp_request(uuid.UUID(request_id))
        if request is None:
            logger.error("TimestampRequest %s not found", request_id)
            return {"error": "not_found"}

        request.status = TimestampRequestStatus.running
        db.commit()

        try:
            outcome = anchor_evidence(repo, OpenTimestampsClient(), uuid.UUID(evidence_id))
        except Exception as exc:
            db.rollback()
            logger.error("Anchoring failed for evidence %s: %s", evidence_id, exc)
            request = repo.get_timestamp_request(uuid.UUID(request_id))
            if request is not None:
                request.status = TimestampRequestStatus.failed
                request.error_detail = str(getattr(exc, "message", exc))[:2000]
                db.commit()
            return {"error": str(exc)}

        request.status = TimestampRequestStatus.complete
        request.error_detail = None
        db.commit()
        return {
            "evidence_id": evidence_id,
            "already_timestamped": outcome.already_timestamped,
        }
    except Exception:
        db.rollback()
        logger.exception("anchor_evidence_timestamp crashed for request %s", request_id)
        raise
    finally:
        db.close()


@celery_app.task(name="bluhatch.requeue_failed_timestamps", bind=True, max_retries=0)
def requeue_failed_timestamps(self, limit: int = 100):
    """Re-dispatch failed timestamp requests; items anchored meanwhile are closed out."""
    from sqlalchemy import select

    from bluhatch.models.timestamp_request import TimestampRequest, TimestampRequestStatus
    from bluhatch.services.scoped_repository import ScopedRepository
    from bluhatch.services.timestamping import TimestampDispatcher

    db = _get_db()
    requeued = closed = 0
    try:
        owners = db.scalars(
            select(TimestampRequest.user_id)
            .where(TimestampRequest.status == TimestampRequestStatus.failed)
            .distinct()
        ).all()
        for owner_id in owners:
            repo = ScopedRepository(db, owner_id)
            dispatcher = TimestampDispatcher(repo)
            for request in repo.failed_timestamp_requests(limit):
                item = repo.get_evidence(request.evidence_id)
                if item.blockchain_timestamp:
                    request.status = TimestampRequestStatus.complete
                    request.error_detail = None
                    db.commit()
                    closed += 1
                    continue
                dispatcher.requeue(request)
                requeued += 1
        logger.info("Requeued %d timestamp request(s), closed %d", requeued, closed)
        return {"requeued": requeued, "closed": closed}
    except Exception:
        db.rollback()
        logger.exception("requeue_failed_timestamps failed")
        raise
    finally:
        db.close()
