"""Job model — one unit of work for one client, owned by one user."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bluhatch.core.database import Base


class JobType(str, enum.Enum):
    plumbing = "plumbing"
    electrical = "electrical"
    construction = "construction"
    roofing = "roofing"
    painting = "painting"
    flooring = "flooring"
    kitchen_fitting = "kitchen_fitting"
    bathroom_fitting = "bathroom_fitting"
    heating = "heating"
    other = "other"


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    client_name: Mapped[str] = mapped_column(String(256), nullable=False)
    client_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_address: Mapped[str] = mapped_column(Text, nullable=False)
    job_type: Mapped[JobType] = mapped_column(
        Enum(JobType, name="job_type", create_constraint=True),
        nullable=False,
    )
    custom_job_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    job_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contract_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completion_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    protection_status: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Derived 0-100 score; rewritten whenever the evidence set changes.",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    evidence_items = relationship(
        "EvidenceItem",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EvidenceItem.created_at",
    )
    reports = relationship(
        "Report",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def job_type_label(self) -> str:
        if self.job_type == JobType.other and self.custom_job_type:
            return self.custom_job_type
        return self.job_type.value.replace("_", " ").upper()
