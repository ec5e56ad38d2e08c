"""Purge webhook.

    POST /webhook/purge/{id}  → 204  id queued for the dispatch worker
                              → 400  id empty or not ASCII-alphanumeric
                              → 500  caller already gone before enqueue
                              → 503  service still starting
    any other method          → 501  (router 405 rewritten in create_app)

The response never waits for the scan: 204 only means the request is queued.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel, Field, ValidationError

from purger.constants import WEBHOOK_PATH_PREFIX
from purger.utils.logger import get_logger, set_request_id
from purger.utils.ulid import generate_ulid
from purger.worker import DispatchWorker, PurgeRequest

logger = get_logger(__name__)

router = APIRouter(tags=["webhook"])


class PurgeArg(BaseModel):
    """Validated purge identifier."""

    purge_id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9]+$")


def validate_purge_id(purge_id: str) -> PurgeArg:
    """Validate *purge_id*.

    Raises:
        HTTPException(400): Carrying the validation failure description.
    """
    try:
        return PurgeArg(purge_id=purge_id)
    except ValidationError as exc:
        reasons = "; ".join(error["msg"] for error in exc.errors())
        raise HTTPException(
            status_code=400,
            detail=f"Invalid purge id {purge_id!r}: {reasons}",
        ) from exc


def is_webhook_path(path: str) -> bool:
    return path.startswith(WEBHOOK_PATH_PREFIX)


def _raw_purge_id(request: Request) -> str:
    # The route pattern stops at a newline, so the decoded path is the source of truth.
    return request.scope["path"].split(WEBHOOK_PATH_PREFIX, 1)[1]


async def _client_disconnected(request: Request) -> bool:
    return await request.is_disconnected()


@router.post(WEBHOOK_PATH_PREFIX + "{purge_id:path}", status_code=204)
async def handle_purge(request: Request) -> Response:
    # Drain the body so the disconnect check below sees only transport events.
    await request.body()

    arg = validate_purge_id(_raw_purge_id(request))

    worker: Optional[DispatchWorker] = getattr(request.app.state, "worker", None)
    if not getattr(request.app.state, "ready", False) or worker is None:
        raise HTTPException(status_code=503, detail={"status": "starting"})

    if await _client_disconnected(request):
        raise HTTPException(status_code=500, detail="context canceled")

    request_id = generate_ulid()
    set_request_id(request_id)
    worker.submit(PurgeRequest(purge_id=arg.purge_id, request_id=request_id))
    logger.info(
        "Purge request queued",
        value=arg.purge_id,
        queue=worker.queue_name,
        pending=worker.pending,
    )
    return Response(status_code=204)
