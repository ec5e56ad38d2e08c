"""Queue purger FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /        route  — service discovery root
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config() (unless create_app() was given a Config)  → app.state.config
  2. wait_for_dependencies()  — readiness gate on the broker host:port
  3. connect_broker()         — the single process-wide AMQP connection
  4. DispatchWorker.start()   → app.state.worker
  5. app.state.ready = True   — webhook starts accepting requests

Any fatal error in steps 2-3 raises SystemExit(1) before ready is ever set.

Shutdown sequence (reverse):
  app.state.ready = False → stop dispatch worker → close broker connection
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from starlette.exceptions import HTTPException as StarletteHTTPException

from purger.broker.amqp import AmqpConnection
from purger.config import Config, load_config
from purger.constants import WEBHOOK_PATH_PREFIX
from purger.errors import FatalError
from purger.health import router as health_router
from purger.readiness import wait_for_dependencies
from purger.utils.health import ScanStatsTracker
from purger.utils.logger import configure_logging, get_logger
from purger.webhook import is_webhook_path
from purger.webhook import router as webhook_router
from purger.worker import DispatchWorker

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)

# Broker dialer; module-level so tests can substitute an in-memory connection.
connect_broker = AmqpConnection.connect

root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "queue-purger",
        "webhook": f"POST {WEBHOOK_PATH_PREFIX}{{id}}",
        "health": "/health",
    }


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("Queue purger starting up...")

    # ── Step 1: Configuration ────────────────────────────────────────────────
    config: Optional[Config] = app.state.config
    if config is None:
        config = load_config()
        app.state.config = config

    # ── Steps 2-3: Readiness gate + broker connection ────────────────────────
    host, port = config.amqp.broker_address()
    try:
        await wait_for_dependencies(
            host,
            port,
            timeout_s=config.startup.timeout_s,
            retry_interval_s=config.startup.retry_interval_s,
        )
        connection = await connect_broker(config.amqp.connection_string)
    except FatalError as exc:
        logger.critical("Startup failed", error=str(exc), error_type=type(exc).__name__)
        raise SystemExit(1) from exc
    logger.info("Broker connected", address=f"{host}:{port}")

    # ── Step 4: Dispatch worker ──────────────────────────────────────────────
    worker = DispatchWorker(
        connection,
        config.amqp.queue_name,
        jsonpath=config.scan.jsonpath,
        idle_timeout_s=config.scan.idle_timeout_s,
        stats=ScanStatsTracker(),
    )
    worker.start()
    app.state.worker = worker

    # ── Step 5: Mark as ready ────────────────────────────────────────────────
    app.state.ready = True
    logger.info("Queue purger ready", queue=config.amqp.queue_name, jsonpath=config.scan.jsonpath)

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("Queue purger shutting down...")
    app.state.ready = False

    if worker.pending:
        logger.warning("Discarding queued purge requests", pending=worker.pending)
    await worker.stop()
    await connection.close()

    logger.info("Queue purger shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Create and configure the queue purger FastAPI application.

    Args:
        config: Pre-loaded configuration (the CLI entry point passes one built
                from flags). When None, the lifespan calls load_config().

    Returns:
        Configured FastAPI application with lifespan, routers and error handlers.
    """
    application = FastAPI(
        title="Queue Purger",
        description="Removes one message, selected by a JSON field, from an AMQP queue on webhook",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Initialize state before lifespan so early requests see "not ready".
    application.state.ready = False
    application.state.config = config
    application.state.worker = None

    application.include_router(root_router)
    application.include_router(health_router)
    application.include_router(webhook_router)

    # Registered on the Starlette base class so router-level 404/405 share the format.
    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        status_code, detail, headers = exc.status_code, exc.detail, exc.headers
        if status_code == 405 and is_webhook_path(request.url.path):
            # The webhook answers every method but POST with 501, extension methods included.
            status_code, detail, headers = 501, "Not Implemented", None
        logger.warning(
            "HTTP exception",
            status_code=status_code,
            detail=detail,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=status_code, content={"error": detail}, headers=headers
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────
#   uvicorn purger.main:app --host 0.0.0.0 --port 8090

app = create_app()
