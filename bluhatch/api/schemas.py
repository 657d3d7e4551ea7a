"""Pydantic request / response schemas for the API layer."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from bluhatch.models.evidence_item import EvidenceType
from bluhatch.models.job import JobType


def envelope(**data) -> dict:
    """Success envelope shared by every endpoint."""
    return {"success": True, **data}


# ── Jobs ─────────────────────────────────────────────────────────────


class JobCreate(BaseModel):
    client_name: str = Field(..., min_length=1, max_length=256)
    client_phone: str | None = Field(default=None, max_length=64)
    client_address: str = Field(..., min_length=1)
    job_type: JobType
    custom_job_type: str | None = Field(default=None, max_length=128)
    job_description: str | None = Field(default=None, max_length=10000)
    contract_value: Decimal | None = Field(default=None, ge=0)
    start_date: date | None = None
    completion_date: date | None = None


class JobOut(BaseModel):
    id: uuid.UUID
    client_name: str
    client_phone: str | None
    client_address: str
    job_type: JobType
    custom_job_type: str | None
    job_description: str | None
    contract_value: Decimal | None
    start_date: date | None
    completion_date: date | None
    protection_status: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ── Evidence ─────────────────────────────────────────────────────────


class EvidenceOut(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    evidence_type: EvidenceType
    description: str
    file_path: str | None
    file_hash: str | None
    file_size: int
    content_type: str | None
    original_filename: str | None
    blockchain_timestamp: str | None
    gps_latitude: float | None
    gps_longitude: float | None
    gps_accuracy: float | None
    client_approval: bool | None
    client_signature: str | None
    device_timestamp: datetime | None
    server_timestamp: datetime
    created_at: datetime

    class Config:
        from_attributes = True


# ── Reports ──────────────────────────────────────────────────────────


class ReportCreate(BaseModel):
    job_id: uuid.UUID
    report_type: Literal["pdf", "html"] = "pdf"


class ReportOut(BaseModel):
    id: uuid.UUID
    job_id: uuid.UUID
    filename: str
    file_path: str
    file_size: int
    report_type: str
    status: str
    metadata: dict = Field(validation_alias="report_metadata")
    created_at: datetime

    class Config:
        from_attributes = True


# ── Storage ──────────────────────────────────────────────────────────


class CleanupRequest(BaseModel):
    older_than_days: int | None = Field(default=None, ge=0)
    limit: int | None = Field(default=None, ge=1, le=100)
