"""Storage API — quota usage and age-based cleanup."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends

from bluhatch.api.deps import get_audit_context, get_evidence_store, get_repository
from bluhatch.api.schemas import CleanupRequest, envelope
from bluhatch.services.audit import AuditContext
from bluhatch.services.quota import calculate_storage_usage, cleanup_storage
from bluhatch.services.scoped_repository import ScopedRepository
from bluhatch.services.storage import ObjectStore

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/usage")
def storage_usage(repo: ScopedRepository = Depends(get_repository)):
    return envelope(**calculate_storage_usage(repo).to_dict())


@router.post("/cleanup")
def storage_cleanup(
    body: CleanupRequest | None = Body(default=None),
    repo: ScopedRepository = Depends(get_repository),
    store: ObjectStore = Depends(get_evidence_store),
    audit_ctx: AuditContext = Depends(get_audit_context),
):
    body = body or CleanupRequest()
    result = cleanup_storage(
        repo,
        store,
        older_than_days=body.older_than_days,
        limit=body.limit,
        audit_ctx=audit_ctx,
    )
    return result.to_dict()
