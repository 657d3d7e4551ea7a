"""Tests for the HTTP surface: health, auth, error envelope and end-to-end flows."""

from __future__ import annotations

import io
import uuid
from unittest.mock import MagicMock, patch

import httpx
import pytest
from fastapi import UploadFile

from bluhatch.api import deps
from bluhatch.api.routes.evidence import _read
from bluhatch.core.config import settings
from bluhatch.services.timestamping import ANCHOR_TASK_NAME, OpenTimestampsClient

from conftest import PROOF_BYTES, auth_headers_for, make_jpeg

API = "/api/v1"


@pytest.fixture
def job_id(client, auth_headers) -> str:
    resp = client.post(
        f"{API}/jobs",
        json={
            "client_name": "Jane Smith",
            "client_phone": "07700 900123",
            "client_address": "12 High Street, Leeds",
            "job_type": "plumbing",
            "job_description": "Replace kitchen sink",
            "contract_value": 1250,
        },
        headers=auth_headers,
    )
    assert resp.status_code == 200
    return resp.json()["job"]["id"]


def _upload(client, headers, job_id, data=None, filename="photo.jpg", content_type="image/jpeg", **form):
    fields = {"jobId": job_id, "evidenceType": "before", "description": "Kitchen pre-work"}
    fields.update(form)
    files = {"file": (filename, data, content_type)} if data is not None else None
    return client.post(f"{API}/evidence", data=fields, files=files, headers=headers)


class TestHealthEndpoint:
    """Health check should report service status."""

    def test_health_returns_200(self, client):
        with (
            patch("bluhatch.main.Redis") as mock_redis_cls,
            patch("bluhatch.main.engine") as mock_engine,
        ):
            mock_redis = MagicMock()
            mock_redis.ping.return_value = True
            mock_redis_cls.from_url.return_value = mock_redis

            mock_conn = MagicMock()
            mock_engine.connect.return_value.__enter__ = lambda s: mock_conn
            mock_engine.connect.return_value.__exit__ = MagicMock(return_value=False)

            resp = client.get("/health")
            assert resp.status_code == 200
            body = resp.json()
            assert body["status"] == "healthy"
            assert body["database"] == "connected"
            assert body["redis"] == "connected"
            assert body["object_store"] == "connected"
            assert "version" in body

    def test_health_degraded_when_redis_down(self, client):
        with (
            patch("bluhatch.main.Redis") as mock_redis_cls,
            patch("bluhatch.main.engine") as mock_engine,
        ):
            mock_redis_cls.from_url.side_effect = ConnectionError("refused")
            mock_engine.connect.return_value.__enter__ = lambda s: MagicMock()
            mock_engine.connect.return_value.__exit__ = MagicMock(return_value=False)

            body = client.get("/health").json()
            assert body["status"] == "degraded"
            assert body["redis"] == "disconnected"


class TestEnvelope:
    def test_preflight(self, client):
        resp = client.options(f"{API}/evidence")
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"
        assert resp.content == b""

    def test_browser_preflight_has_empty_body(self, client):
        resp = client.options(
            f"{API}/evidence",
            headers={
                "Origin": "https://app.example.test",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "authorization, content-type",
            },
        )
        assert resp.status_code == 200
        assert resp.content == b""
        assert resp.headers["access-control-allow-origin"] == "*"
        assert "POST" in resp.headers["access-control-allow-methods"]

    def test_missing_token(self, client):
        resp = client.get(f"{API}/jobs")
        assert resp.status_code == 500
        assert resp.json() == {"error": "No authorization header provided", "kind": "unauthorized"}
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_forged_token(self, client):
        resp = client.get(f"{API}/jobs", headers={"Authorization": f"Bearer {uuid.uuid4()}.deadbeef"})
        assert resp.json()["kind"] == "unauthorized"

    def test_request_validation(self, client, auth_headers):
        resp = client.post(f"{API}/jobs", json={"job_type": "plumbing"}, headers=auth_headers)
        assert resp.status_code == 500
        body = resp.json()
        assert body["kind"] == "validation_error"
        assert "client_name" in body["error"]

    def test_unexpected_error(self, client, auth_headers):
        with patch(
            "bluhatch.api.routes.storage.calculate_storage_usage",
            side_effect=RuntimeError("boom"),
        ):
            resp = client.get(f"{API}/storage/usage", headers=auth_headers)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}

    def test_request_id_echoed(self, client, auth_headers):
        resp = client.get(f"{API}/jobs", headers={**auth_headers, "X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


class TestJobs:
    def test_create_and_get(self, client, auth_headers, job_id):
        resp = client.get(f"{API}/jobs/{job_id}", headers=auth_headers)
        body = resp.json()
        assert body["success"] is True
        assert body["job"]["client_name"] == "Jane Smith"
        assert body["job"]["protection_status"] == 0

    def test_list(self, client, auth_headers, job_id):
        body = client.get(f"{API}/jobs", headers=auth_headers).json()
        assert body["count"] == 1
        assert body["jobs"][0]["id"] == job_id

    def test_other_tenant_sees_not_found(self, client, job_id):
        resp = client.get(f"{API}/jobs/{job_id}", headers=auth_headers_for(uuid.uuid4()))
        assert resp.json() == {"error": "Job not found or access denied", "kind": "not_found"}

    def test_other_job_type_needs_label(self, client, auth_headers):
        resp = client.post(
            f"{API}/jobs",
            json={"client_name": "A", "client_address": "B", "job_type": "other"},
            headers=auth_headers,
        )
        assert resp.json()["kind"] == "validation_error"

    def test_description_length_capped(self, client, auth_headers):
        resp = client.post(
            f"{API}/jobs",
            json={
                "client_name": "A",
                "client_address": "B",
                "job_type": "plumbing",
                "job_description": "x" * 10001,
            },
            headers=auth_headers,
        )
        body = resp.json()
        assert body["kind"] == "validation_error"
        assert "job_description" in body["error"]

    def test_protection(self, client, auth_headers, job_id):
        _upload(client, auth_headers, job_id, make_jpeg())
        body = client.get(f"{API}/jobs/{job_id}/protection", headers=auth_headers).json()
        assert body["protection_status"] == 21
        assert body["protection_level"] == "Limited Protection"

    def test_delete(self, client, auth_headers, job_id, evidence_store):
        _upload(client, auth_headers, job_id, make_jpeg())
        body = client.delete(f"{API}/jobs/{job_id}", headers=auth_headers).json()
        assert body["message"] == "Job and all associated evidence deleted successfully"
        assert body["evidence_files_cleaned"] == 1
        assert evidence_store.list_keys() == []
        assert client.get(f"{API}/jobs/{job_id}", headers=auth_headers).json()["kind"] == "not_found"


class TestEvidenceFlow:
    def test_upload_then_list(self, client, auth_headers, job_id, sent_tasks):
        resp = _upload(client, auth_headers, job_id, make_jpeg(pad_to=100 * 1024))
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert len(body["file_hash"]) == 64
        assert body["file_hash"] == body["file_hash"].lower()

        listing = client.get(f"{API}/jobs/{job_id}/evidence", headers=auth_headers).json()
        assert listing["count"] == 1
        assert listing["evidence"][0]["file_hash"] == body["file_hash"]
        assert listing["evidence"][0]["blockchain_timestamp"] is None

        assert len(sent_tasks) == 1
        name, args = sent_tasks[0]
        assert name == ANCHOR_TASK_NAME
        assert args[1] == body["evidence_id"]

    def test_upload_with_gps_and_signature(self, client, auth_headers, job_id):
        resp = _upload(
            client,
            auth_headers,
            job_id,
            make_jpeg(),
            evidenceType="approval",
            gpsLatitude="53.8008",
            gpsLongitude="-1.5491",
            gpsAccuracy="5",
            clientApproval="true",
            clientSignature="data:image/png;base64,iVBORw0KGgo=",
            deviceTimestamp="2026-10-19T11:58:00Z",
        )
        assert resp.json()["success"] is True
        item = client.get(f"{API}/jobs/{job_id}/evidence", headers=auth_headers).json()["evidence"][0]
        assert item["gps_latitude"] == pytest.approx(53.8008)
        assert item["client_approval"] is True
        assert item["device_timestamp"].startswith("2026-10-19T11:58:00")

    def test_text_only(self, client, auth_headers, job_id, sent_tasks):
        body = _upload(client, auth_headers, job_id, description="Client asked for extra socket").json()
        assert body["file_hash"] is None
        assert body["message"] == "Evidence recorded successfully."
        assert sent_tasks == []

    def test_bad_mime_type(self, client, auth_headers, job_id, evidence_store):
        resp = _upload(client, auth_headers, job_id, b"#!/bin/sh", filename="x.sh", content_type="text/x-sh")
        assert resp.json()["kind"] == "validation_error"
        assert evidence_store.list_keys() == []

    def test_oversized_file_rejected(self, client, auth_headers, job_id, evidence_store, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 1024)
        resp = _upload(client, auth_headers, job_id, b"\xff" * 4096)
        body = resp.json()
        assert body["kind"] == "validation_error"
        assert body["error"].startswith("File too large")
        assert evidence_store.list_keys() == []

    def test_upload_read_stops_past_limit(self, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 1024)
        upload = UploadFile(io.BytesIO(b"\xff" * 1_000_000), filename="big.jpg")
        data, filename, _ = _read(upload)
        assert len(data) == 1025
        assert filename == "big.jpg"

    def test_partial_gps_rejected(self, client, auth_headers, job_id):
        resp = _upload(client, auth_headers, job_id, make_jpeg(), gpsLatitude="53.8")
        assert resp.json()["kind"] == "validation_error"

    def test_batch(self, client, auth_headers, job_id):
        resp = client.post(
            f"{API}/evidence/batch",
            data={"jobId": job_id, "evidenceType": "progress", "description": "Pipework run"},
            files=[
                ("files", ("a.jpg", make_jpeg(20, 20), "image/jpeg")),
                ("files", ("b.jpg", make_jpeg(30, 30), "image/jpeg")),
                ("files", ("c.txt", b"notes", "text/plain")),
            ],
            headers=auth_headers,
        )
        body = resp.json()
        assert body["total"] == 3
        assert body["succeeded"] == 2
        assert body["failed"] == 1
        assert body["success"] is False

    def test_timestamp_is_idempotent(self, client, auth_headers, job_id):
        evidence_id = _upload(client, auth_headers, job_id, make_jpeg()).json()["evidence_id"]

        first = client.post(f"{API}/evidence/{evidence_id}/timestamp", headers=auth_headers).json()
        assert first["timestamp_hash"] == PROOF_BYTES.hex()
        assert first["already_timestamped"] is False

        second = client.post(f"{API}/evidence/{evidence_id}/timestamp", headers=auth_headers).json()
        assert second["already_timestamped"] is True
        assert second["timestamp_hash"] == first["timestamp_hash"]

        info = client.get(f"{API}/evidence/{evidence_id}/verification", headers=auth_headers).json()
        assert info["status"] == "timestamped"
        assert PROOF_BYTES.hex() in info["verification_url"]

    def test_verification_pending(self, client, auth_headers, job_id):
        evidence_id = _upload(client, auth_headers, job_id, make_jpeg()).json()["evidence_id"]
        info = client.get(f"{API}/evidence/{evidence_id}/verification", headers=auth_headers).json()
        assert info["status"] == "pending"

    def test_failed_manual_timestamp_shows_error(self, client, auth_headers, job_id):
        evidence_id = _upload(client, auth_headers, job_id, make_jpeg()).json()["evidence_id"]
        client.app.dependency_overrides[deps.get_timestamp_client] = lambda: OpenTimestampsClient(
            calendar_urls=["https://calendar.test"],
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        resp = client.post(f"{API}/evidence/{evidence_id}/timestamp", headers=auth_headers)
        assert resp.status_code == 500
        assert resp.json()["kind"] == "external_service_unavailable"

        info = client.get(f"{API}/evidence/{evidence_id}/verification", headers=auth_headers).json()
        assert info["status"] == "error"
        assert info["blockchain_timestamp"] is None


class TestReportsFlow:
    def test_generate_list_download(self, client, auth_headers, job_id):
        for evidence_type in ("before", "progress", "after"):
            _upload(client, auth_headers, job_id, evidenceType=evidence_type, description=f"{evidence_type} note")

        generated = client.post(
            f"{API}/reports", json={"job_id": job_id, "report_type": "html"}, headers=auth_headers
        ).json()
        assert generated["success"] is True
        assert generated["metadata"]["evidence_count"] == 3

        listing = client.get(f"{API}/reports", params={"job_id": job_id}, headers=auth_headers).json()
        assert listing["count"] == 1
        assert listing["reports"][0]["metadata"]["evidence_count"] == 3

        resp = client.get(f"{API}/reports/{generated['report_id']}/download", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        assert generated["filename"] in resp.headers["content-disposition"]
        assert b"Work in Progress Evidence (1 items)" in resp.content

    def test_invalid_report_type(self, client, auth_headers, job_id):
        resp = client.post(f"{API}/reports", json={"job_id": job_id, "report_type": "docx"}, headers=auth_headers)
        assert resp.json()["kind"] == "validation_error"


class TestStorageEndpoints:
    def test_usage(self, client, auth_headers, job_id):
        _upload(client, auth_headers, job_id, make_jpeg(pad_to=4096))
        body = client.get(f"{API}/storage/usage", headers=auth_headers).json()
        assert body["success"] is True
        assert body["evidence_size_bytes"] == 4096
        assert body["total_size_bytes"] == 4096
        assert body["file_count"] == 1
        assert body["is_over_limit"] is False

    def test_cleanup_defaults_keep_fresh_items(self, client, auth_headers, job_id):
        _upload(client, auth_headers, job_id, make_jpeg())
        body = client.post(f"{API}/storage/cleanup", headers=auth_headers).json()
        assert body["deleted_count"] == 0

    def test_cleanup_rejects_oversized_batch(self, client, auth_headers):
        resp = client.post(f"{API}/storage/cleanup", json={"limit": 1000}, headers=auth_headers)
        assert resp.json()["kind"] == "validation_error"
