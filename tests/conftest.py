"""Pytest configuration — in-memory SQLite database, filesystem object stores & FastAPI TestClient."""

from __future__ import annotations

import io
import os
import tempfile
import uuid
from datetime import date, datetime, timezone
from typing import Generator

import httpx
import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Override env BEFORE importing bluhatch modules so Settings picks up test values.
os.environ.update(
    {
        "APP_ENV": "test",
        "DATABASE_URL": "sqlite://",
        "RUN_MIGRATIONS_ON_STARTUP": "false",
        "REDIS_URL": "redis://localhost:6379/0",
        "STORAGE_BACKEND": "local",
        "STORAGE_ROOT": tempfile.mkdtemp(prefix="bluhatch-test-store-"),
        "AUTH_TOKEN_SECRET": "test-token-secret-for-pytest",
        "AUDIT_LOG_PATH": "",
        "TIMESTAMP_CALENDAR_URLS": '["https://calendar.test"]',
    }
)

from bluhatch.api import deps  # noqa: E402
from bluhatch.core.database import Base, get_db  # noqa: E402
from bluhatch.core.security import issue_access_token  # noqa: E402
from bluhatch.main import app  # noqa: E402
from bluhatch.services.scoped_repository import ScopedRepository  # noqa: E402
from bluhatch.services.storage import LocalObjectStore  # noqa: E402
from bluhatch.services.timestamping import OpenTimestampsClient, TimestampDispatcher  # noqa: E402

# ── Force all models to register on Base.metadata ──────────────────
import bluhatch.models  # noqa: E402, F401
from bluhatch.models import EvidenceItem, EvidenceType, Job, JobType  # noqa: E402

# ── In-memory SQLite engine (one connection shared across threads) ──

_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)


# SQLite doesn't enforce FK by default
@event.listens_for(_engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


_TestSession = sessionmaker(bind=_engine, class_=Session, expire_on_commit=False)

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
PROOF_BYTES = b"\xf0\x10ots-pending-proof"


@pytest.fixture(autouse=True)
def _create_tables():
    """Create all tables before each test and drop after."""
    Base.metadata.create_all(bind=_engine)
    yield
    Base.metadata.drop_all(bind=_engine)


@pytest.fixture()
def session_factory():
    return _TestSession


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Yield a test DB session."""
    session = _TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def other_owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def repo(db: Session, owner_id: uuid.UUID) -> ScopedRepository:
    return ScopedRepository(db, owner_id)


@pytest.fixture()
def evidence_store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects", "evidence")


@pytest.fixture()
def report_store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects", "reports")


@pytest.fixture()
def sent_tasks() -> list:
    return []


def make_jpeg(width: int = 64, height: int = 48, pad_to: int | None = None) -> bytes:
    """A decodable JPEG, optionally padded after the EOI marker to an exact size."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), (30, 60, 140)).save(buf, format="JPEG")
    data = buf.getvalue()
    if pad_to is not None and pad_to > len(data):
        data += b"\x00" * (pad_to - len(data))
    return data


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return make_jpeg()


def make_job(repo: ScopedRepository, **overrides) -> Job:
    fields = dict(
        id=uuid.uuid4(),
        client_name="Jane Smith",
        client_phone="07700 900123",
        client_address="12 High Street, Leeds",
        job_type=JobType.plumbing,
        job_description="Replace kitchen sink and taps",
        contract_value=1250,
        start_date=date(2026, 10, 1),
        protection_status=0,
    )
    fields.update(overrides)
    job = repo.add_job(Job(**fields))
    repo.commit()
    return job


def make_evidence(repo: ScopedRepository, job: Job, **overrides) -> EvidenceItem:
    fields = dict(
        id=uuid.uuid4(),
        job_id=job.id,
        evidence_type=EvidenceType.before,
        description="Existing pipework before work started",
        file_size=0,
        server_timestamp=FIXED_NOW,
        created_at=FIXED_NOW,
    )
    fields.update(overrides)
    item = repo.add_evidence(EvidenceItem(**fields))
    repo.commit()
    return item


@pytest.fixture()
def sample_job(repo: ScopedRepository) -> Job:
    return make_job(repo)


def _calendar_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=PROOF_BYTES)


@pytest.fixture()
def calendar_transport() -> httpx.MockTransport:
    return httpx.MockTransport(_calendar_handler)


def auth_headers_for(user_id: uuid.UUID) -> dict:
    return {"Authorization": f"Bearer {issue_access_token(user_id)}"}


@pytest.fixture()
def auth_headers(owner_id: uuid.UUID) -> dict:
    return auth_headers_for(owner_id)


@pytest.fixture()
def client(
    db: Session,
    evidence_store: LocalObjectStore,
    report_store: LocalObjectStore,
    sent_tasks: list,
    calendar_transport: httpx.MockTransport,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the in-memory DB and temp-dir object stores."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    def _override_dispatcher(repo: ScopedRepository = Depends(deps.get_repository)):
        return TimestampDispatcher(repo, send=lambda name, args: sent_tasks.append((name, args)))

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[deps.get_evidence_store] = lambda: evidence_store
    app.dependency_overrides[deps.get_report_store] = lambda: report_store
    app.dependency_overrides[deps.get_dispatcher] = _override_dispatcher
    app.dependency_overrides[deps.get_timestamp_client] = lambda: OpenTimestampsClient(
        calendar_urls=["https://calendar.test"], transport=calendar_transport
    )

    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc

    app.dependency_overrides.clear()
