"""Unit tests for /health and the scan statistics behind it."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from fakes import FakeBroker
from purger.config import Config
from purger.main import create_app
from purger.scanner.engine import ScanResult, ScanState
from purger.utils.health import ScanStatsTracker
from purger.worker import DispatchWorker, PurgeRequest


def _result(state: ScanState, duration_ms: float = 10.0, read: int = 1) -> ScanResult:
    return ScanResult(
        target="t",
        queue="default",
        state=state,
        messages_read=read,
        duration_ms=duration_ms,
    )


# ─── ScanStatsTracker ────────────────────────────────────────────────────────


class TestScanStatsTracker:
    def test_empty(self) -> None:
        tracker = ScanStatsTracker()
        assert tracker.completed == 0
        assert tracker.avg_ms == 0.0
        assert tracker.last_scan() is None
        assert tracker.outcomes() == {
            "matched": 0,
            "aborted": 0,
            "timed_out": 0,
            "duplicate_exhausted": 0,
        }

    def test_counts_by_outcome(self) -> None:
        tracker = ScanStatsTracker()
        tracker.record(_result(ScanState.MATCHED))
        tracker.record(_result(ScanState.TIMED_OUT))
        tracker.record(_result(ScanState.TIMED_OUT))

        assert tracker.completed == 3
        assert tracker.outcomes()["timed_out"] == 2
        assert tracker.outcomes()["matched"] == 1

    def test_rolling_average_uses_window(self) -> None:
        tracker = ScanStatsTracker(window=2)
        for duration in (100.0, 10.0, 30.0):
            tracker.record(_result(ScanState.MATCHED, duration_ms=duration))

        assert tracker.avg_ms == pytest.approx(20.0)
        assert tracker.completed == 3

    def test_last_scan(self) -> None:
        tracker = ScanStatsTracker()
        tracker.record(_result(ScanState.DUPLICATE_EXHAUSTED, duration_ms=12.345, read=4))

        assert tracker.last_scan() == {
            "state": "duplicate_exhausted",
            "messages_read": 4,
            "duration_ms": 12.3,
        }


# ─── GET /health ─────────────────────────────────────────────────────────────


def _client(application) -> AsyncClient:
    transport = ASGITransport(app=application)  # type: ignore[arg-type]
    return AsyncClient(transport=transport, base_url="http://test")


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_503_before_ready(self) -> None:
        async with _client(create_app(Config.defaults())) as client:
            response = await client.get("/health")

        assert response.status_code == 503
        assert response.json()["error"]["status"] == "starting"

    @pytest.mark.asyncio
    async def test_200_when_ready(self) -> None:
        application = create_app(Config.defaults())
        worker = DispatchWorker(FakeBroker(), "orders")
        worker.stats.record(_result(ScanState.MATCHED))
        worker.submit(PurgeRequest("abc"))
        application.state.worker = worker
        application.state.ready = True

        async with _client(application) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["queue"] == "orders"
        assert data["worker"] == "stopped"
        assert data["status"] == "degraded"
        assert data["pending_requests"] == 1
        assert data["busy"] is False
        assert data["scans_completed"] == 1
        assert data["outcomes"]["matched"] == 1
        assert data["last_scan"]["state"] == "matched"

    @pytest.mark.asyncio
    async def test_ok_while_worker_running(self) -> None:
        application = create_app(Config.defaults())
        worker = DispatchWorker(FakeBroker(), "default")
        application.state.worker = worker
        application.state.ready = True
        worker.start()
        try:
            async with _client(application) as client:
                data = (await client.get("/health")).json()
        finally:
            await worker.stop()

        assert data["status"] == "ok"
        assert data["worker"] == "running"
