"""Health endpoint.

    GET /health — 503 before the lifespan marks the service ready,
                  200 with dispatch worker and scan statistics afterwards.

Polled by container health probes.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from purger.worker import DispatchWorker

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok" | "degraded",
          "queue": "default",
          "worker": "running" | "stopped",
          "busy": false,
          "pending_requests": 0,
          "scans_completed": 3,
          "avg_scan_ms": 1003.2,
          "last_scan": {"state": "matched", "messages_read": 4, "duration_ms": 12.5} | null,
          "outcomes": {"matched": 1, "aborted": 0, "timed_out": 2, "duplicate_exhausted": 0}
        }
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "Waiting for the broker to become available...",
            },
        )

    worker: DispatchWorker = request.app.state.worker
    stats = worker.stats

    return {
        "status": "ok" if worker.running else "degraded",
        "queue": worker.queue_name,
        "worker": "running" if worker.running else "stopped",
        "busy": worker.busy,
        "pending_requests": worker.pending,
        "scans_completed": stats.completed,
        "avg_scan_ms": round(stats.avg_ms, 1),
        "last_scan": stats.last_scan(),
        "outcomes": stats.outcomes(),
    }
