"""Tests for the FastAPI shell: inbound archive route, records, sync, collection."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from sensorsync.config import Settings
from sensorsync.main import create_app
from sensorsync.pipeline.archiver import create_archive
from sensorsync.pipeline.sync.coordinator import SyncRole
from sensorsync.pipeline.transport import CHANNEL_HEADER, TIMESTAMP_HEADER, TransportResult

DAY = {"start": "2024-01-01T00:00:00Z", "end": "2024-01-01T23:59:59Z"}


def _settings(tmp_path: Path, role: SyncRole, **overrides) -> Settings:
    return Settings(
        role=role,
        data_dir=tmp_path / role.value,
        enable_scheduler=False,
        **overrides,
    )


@pytest.fixture
def companion_client(tmp_path: Path) -> Iterator[TestClient]:
    with TestClient(create_app(_settings(tmp_path, SyncRole.COMPANION))) as client:
        yield client


@pytest.fixture
def origin_client(tmp_path: Path) -> Iterator[TestClient]:
    with TestClient(create_app(_settings(tmp_path, SyncRole.ORIGIN))) as client:
        yield client


@pytest.fixture
def archive_bytes(sample_log_dir: Path, tmp_path: Path) -> bytes:
    return create_archive(sample_log_dir, tmp_path / "out").read_bytes()


def _post_archive(client: TestClient, data: bytes):
    return client.post(
        "/sensor-data",
        content=data,
        headers={
            "Content-Type": "application/zip",
            TIMESTAMP_HEADER: "2024-01-01T12:00:00Z",
            CHANNEL_HEADER: "/sensor-data",
        },
    )


class TestHealth:
    def test_health_reports_store(self, companion_client: TestClient) -> None:
        body = companion_client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["store"] == "connected"
        assert body["role"] == "companion"


class TestInbound:
    def test_archive_is_ingested(self, companion_client: TestClient, archive_bytes: bytes) -> None:
        response = _post_archive(companion_client, archive_bytes)

        assert response.status_code == 200
        assert response.json()["state"] == "success"
        records = companion_client.get("/api/v1/records/heart_rate", params=DAY).json()
        assert [r["heart_rate"] for r in records] == [72.5, 73.0]
        status = companion_client.get("/api/v1/sync/status").json()
        assert status["state"] == "success"
        assert status["in_flight"] is False

    def test_traversal_archive_is_rejected(self, companion_client: TestClient) -> None:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr("../../../evil.csv", "pwned")

        response = _post_archive(companion_client, buf.getvalue())

        assert response.status_code == 500
        body = response.json()
        assert body["state"] == "error"
        assert body["error_type"] == "PathTraversalError"

    def test_empty_body_rejected(self, companion_client: TestClient) -> None:
        assert companion_client.post("/sensor-data", content=b"").status_code == 422

    def test_bad_timestamp_header_rejected(self, companion_client: TestClient) -> None:
        response = companion_client.post(
            "/sensor-data", content=b"PK", headers={TIMESTAMP_HEADER: "yesterday"}
        )
        assert response.status_code == 422

    def test_origin_does_not_accept_archives(self, origin_client: TestClient, archive_bytes: bytes) -> None:
        assert _post_archive(origin_client, archive_bytes).status_code == 409


class TestRecords:
    def test_unknown_kind_is_404(self, companion_client: TestClient) -> None:
        assert companion_client.get("/api/v1/records/blood_pressure", params=DAY).status_code == 404

    def test_naive_bounds_rejected(self, companion_client: TestClient) -> None:
        params = {"start": "2024-01-01T00:00:00", "end": "2024-01-02T00:00:00"}
        assert companion_client.get("/api/v1/records/eda", params=params).status_code == 422

    def test_inverted_bounds_rejected(self, companion_client: TestClient) -> None:
        params = {"start": DAY["end"], "end": DAY["start"]}
        assert companion_client.get("/api/v1/records/eda", params=params).status_code == 422

    def test_delete_before(self, companion_client: TestClient, archive_bytes: bytes) -> None:
        _post_archive(companion_client, archive_bytes)

        response = companion_client.delete(
            "/api/v1/records", params={"before": "2024-01-01T10:00:01Z"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["deleted"]["heart_rate"] == 1
        assert body["deleted"]["eda"] == 1
        assert body["total_deleted"] == 4
        eda = companion_client.get("/api/v1/records/eda", params=DAY).json()
        assert [r["eda_value"] for r in eda] == [2.6]


class TestSyncNow:
    def test_companion_with_nothing_pending(self, companion_client: TestClient) -> None:
        body = companion_client.post("/api/v1/sync/now").json()
        assert body["state"] == "success"
        assert body["message"] == "No pending sensor data"

    def test_origin_sends_collected_logs(self, origin_client: TestClient) -> None:
        runtime = origin_client.app.state.runtime
        runtime.transport.send = AsyncMock(return_value=TransportResult(True, "HTTP 200"))

        origin_client.post("/api/v1/collection/start")
        origin_client.post("/api/v1/collection/stop")
        body = origin_client.post("/api/v1/sync/now").json()

        assert body["state"] == "success"
        (payload,), _ = runtime.transport.send.call_args
        with zipfile.ZipFile(io.BytesIO(payload.data)) as zf:
            assert "heart_rate.csv" in zf.namelist()

    def test_origin_failure_reported_as_error(self, origin_client: TestClient) -> None:
        body = origin_client.post("/api/v1/sync/now").json()
        assert body["state"] == "error"  # no sensor logs collected yet


class TestCollection:
    def test_start_stop(self, origin_client: TestClient) -> None:
        started = origin_client.post("/api/v1/collection/start").json()
        again = origin_client.post("/api/v1/collection/start").json()
        stopped = origin_client.post("/api/v1/collection/stop").json()

        assert started["collecting"] is True
        assert started["changed"] is True
        assert len(started["producers"]) == 4
        assert again["changed"] is False
        assert stopped["collecting"] is False

    def test_permission_denied_is_403(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, SyncRole.ORIGIN, sensor_permission_granted=False)
        with TestClient(create_app(settings)) as client:
            assert client.post("/api/v1/collection/start").status_code == 403

    def test_companion_has_no_collection(self, companion_client: TestClient) -> None:
        assert companion_client.post("/api/v1/collection/start").status_code == 409
