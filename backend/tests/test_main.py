from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app import main
from app.domain import ChainUnavailableError, CheckpointStoreError
from app.main import SYNC_ROUTE, _settings, _sync_pipeline_factory, app
from pipelines.event_sync import SyncFailure, SyncSummary

API_KEY = "test-sync-key"


@pytest.fixture
def client(test_settings):
    """Test client that cleans up dependency overrides after each test."""
    app.dependency_overrides[_settings] = lambda: test_settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def pipeline():
    mock_pipeline = MagicMock()
    factory = MagicMock(return_value=mock_pipeline)
    app.dependency_overrides[_sync_pipeline_factory] = lambda: factory
    return mock_pipeline


def test_healthcheck(client):
    """Verify the healthcheck endpoint returns a successful response."""
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_get_trigger_reports_ready(client):
    """The GET trigger answers as a liveness probe without running a cycle."""
    response = client.get(SYNC_ROUTE)
    assert response.status_code == 200
    assert response.json()["status"] == "ready"
    assert "POST" in response.json()["message"]


def test_successful_sync_returns_summary(client, pipeline):
    """A clean cycle returns 200 with the camelCase summary."""
    summary = SyncSummary(from_block=1000, to_block=1050, duration_ms=12, success=True)
    summary.counts.entries = 3
    summary.counts.winners = 1
    pipeline.run_cycle.return_value = summary

    response = client.post(SYNC_ROUTE, headers={"x-api-key": API_KEY})

    assert response.status_code == 200
    assert response.json() == {
        "fromBlock": 1000,
        "toBlock": 1050,
        "counts": {"entries": 3, "draws": 0, "winners": 1, "cancellations": 0},
        "errors": [],
        "durationMs": 12,
        "success": True,
    }
    pipeline.run_cycle.assert_called_once()


def test_partial_failure_returns_207(client, pipeline):
    """A cycle with per-event errors returns 207 and lists them."""
    summary = SyncSummary(from_block=1, to_block=2, success=False)
    summary.errors.append(SyncFailure("EntrySubmitted:0xabc", "cannot decode payload"))
    pipeline.run_cycle.return_value = summary

    response = client.post(SYNC_ROUTE, headers={"x-api-key": API_KEY})

    assert response.status_code == 207
    body = response.json()
    assert body["success"] is False
    assert body["errors"] == [{"eventRef": "EntrySubmitted:0xabc", "message": "cannot decode payload"}]


@pytest.mark.parametrize("headers", [{}, {"x-api-key": "wrong"}])
def test_missing_or_invalid_key_is_unauthorized(client, pipeline, headers):
    """Requests without the shared secret are rejected before any sync work."""
    response = client.post(SYNC_ROUTE, headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    pipeline.run_cycle.assert_not_called()


def test_unconfigured_key_is_server_error(client, pipeline, test_settings):
    """A server without SYNC_API_KEY refuses to run and reports a configuration error."""
    test_settings.sync_api_key = None

    response = client.post(SYNC_ROUTE, headers={"x-api-key": API_KEY})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Server configuration error"}
    pipeline.run_cycle.assert_not_called()


@pytest.mark.parametrize(
    "error", [ChainUnavailableError("ledger node unreachable"), CheckpointStoreError("disk full")]
)
def test_fatal_errors_return_500(client, pipeline, error):
    """Fatal cycle errors map to 500 and release the sync lock."""
    pipeline.run_cycle.side_effect = error

    response = client.post(SYNC_ROUTE, headers={"x-api-key": API_KEY})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": str(error)}
    assert not main._sync_lock.locked()


def test_misconfigured_pipeline_is_server_error(client):
    """Missing ledger settings surface as a configuration error."""
    app.dependency_overrides[_sync_pipeline_factory] = lambda: MagicMock(
        side_effect=ValueError("RPC_URL must be configured")
    )

    response = client.post(SYNC_ROUTE, headers={"x-api-key": API_KEY})

    assert response.status_code == 500
    assert response.json()["error"] == "Server configuration error"
    assert not main._sync_lock.locked()


def test_concurrent_trigger_is_rejected(client, pipeline):
    """A trigger arriving while a cycle runs gets 409."""
    assert main._sync_lock.acquire(blocking=False)
    try:
        response = client.post(SYNC_ROUTE, headers={"x-api-key": API_KEY})
    finally:
        main._sync_lock.release()

    assert response.status_code == 409
    pipeline.run_cycle.assert_not_called()


@pytest.mark.parametrize(
    "error",
    [RuntimeError("worker pool exploded"), OperationalError("SELECT", {}, Exception("server closed"))],
)
def test_unexpected_errors_return_json_500(client, pipeline, error):
    """Unexpected cycle failures still answer with the JSON failure body."""
    pipeline.run_cycle.side_effect = error

    response = client.post(SYNC_ROUTE, headers={"x-api-key": API_KEY})

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    body = response.json()
    assert body["success"] is False
    assert body["error"] == str(error)
    assert not main._sync_lock.locked()
