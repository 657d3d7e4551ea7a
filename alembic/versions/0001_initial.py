"""Initial schema — jobs, evidence_items, reports, audit_logs, profiles, timestamp_requests

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_TYPES = (
    "plumbing",
    "electrical",
    "construction",
    "roofing",
    "painting",
    "flooring",
    "kitchen_fitting",
    "bathroom_fitting",
    "heating",
    "other",
)
EVIDENCE_TYPES = ("before", "progress", "after", "defect", "approval", "contract", "receipt")


def upgrade() -> None:
    # -- jobs --
    op.create_table(
        "jobs",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("client_name", sa.String(256), nullable=False),
        sa.Column("client_phone", sa.String(64), nullable=True),
        sa.Column("client_address", sa.Text, nullable=False),
        sa.Column(
            "job_type",
            sa.Enum(*JOB_TYPES, name="job_type", create_constraint=True),
            nullable=False,
        ),
        sa.Column("custom_job_type", sa.String(128), nullable=True),
        sa.Column("job_description", sa.Text, nullable=True),
        sa.Column("contract_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("start_date", sa.Date, nullable=True),
        sa.Column("completion_date", sa.Date, nullable=True),
        sa.Column("protection_status", sa.Integer, server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "protection_status BETWEEN 0 AND 100", name="ck_jobs_protection_status_range"
        ),
    )

    # -- evidence_items --
    op.create_table(
        "evidence_items",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "job_id",
            UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column(
            "evidence_type",
            sa.Enum(*EVIDENCE_TYPES, name="evidence_type", create_constraint=True),
            nullable=False,
        ),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=True),
        sa.Column("file_hash", sa.String(64), nullable=True),
        sa.Column("file_size", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("content_type", sa.String(256), nullable=True),
        sa.Column("original_filename", sa.String(1024), nullable=True),
        sa.Column("blockchain_timestamp", sa.Text, nullable=True),
        sa.Column("gps_latitude", sa.Float, nullable=True),
        sa.Column("gps_longitude", sa.Float, nullable=True),
        sa.Column("gps_accuracy", sa.Float, nullable=True),
        sa.Column("client_approval", sa.Boolean, nullable=True),
        sa.Column("client_signature", sa.Text, nullable=True),
        sa.Column("device_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("server_timestamp", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_evidence_items_user_created", "evidence_items", ["user_id", "created_at"])

    # -- reports --
    op.create_table(
        "reports",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "job_id",
            UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("filename", sa.String(512), nullable=False),
        sa.Column("file_path", sa.String(1024), nullable=False),
        sa.Column("file_size", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("report_type", sa.String(16), server_default="pdf", nullable=False),
        sa.Column("status", sa.String(32), server_default="generated", nullable=False),
        sa.Column("metadata", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    # -- audit_logs (no FK: rows outlive deleted jobs) --
    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("job_id", UUID(as_uuid=True), nullable=True, index=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("details", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("ip_address", sa.String(128), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    # -- profiles --
    op.create_table(
        "profiles",
        sa.Column("user_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("company_name", sa.String(256), nullable=True),
        sa.Column("contact_email", sa.String(256), nullable=True),
        sa.Column("contact_phone", sa.String(64), nullable=True),
        sa.Column("storage_limit_bytes", sa.BigInteger, nullable=True),
        sa.Column("storage_used_bytes", sa.BigInteger, server_default="0", nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    # -- timestamp_requests --
    op.create_table(
        "timestamp_requests",
        sa.Column("id", UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), primary_key=True),
        sa.Column(
            "evidence_id",
            UUID(as_uuid=True),
            sa.ForeignKey("evidence_items.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False, index=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "running", "complete", "failed",
                name="timestamp_request_status", create_constraint=True,
            ),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("error_detail", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("timestamp_requests")
    op.drop_table("profiles")
    op.drop_table("audit_logs")
    op.drop_table("reports")
    op.drop_index("ix_evidence_items_user_created", table_name="evidence_items")
    op.drop_table("evidence_items")
    op.drop_table("jobs")
    op.execute("DROP TYPE IF EXISTS timestamp_request_status")
    op.execute("DROP TYPE IF EXISTS evidence_type")
    op.execute("DROP TYPE IF EXISTS job_type")
