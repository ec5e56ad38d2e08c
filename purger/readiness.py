"""Startup readiness gate.

Blocks the lifespan until the broker's host:port accepts a TCP connection.
The probe runs as its own asyncio task and retries at a fixed interval; the
caller races it against the overall startup deadline.

The probe only checks reachability: the socket is closed as soon as it
connects. The real AMQP connection is opened afterwards by the lifespan.
"""

from __future__ import annotations

import asyncio

from purger.errors import DependencyUnavailableError
from purger.utils.logger import get_logger

logger = get_logger(__name__)


async def wait_for_socket(
    host: str,
    port: int,
    retry_interval_s: float,
    attempt_timeout_s: float,
) -> None:
    """Retry a TCP connect to host:port until one succeeds.

    Never returns on persistent failure; the caller bounds it.
    """
    address = f"{host}:{port}"
    while True:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=attempt_timeout_s
            )
        except (OSError, asyncio.TimeoutError) as exc:
            logger.info(
                "Problem with dial",
                address=address,
                error=str(exc) or type(exc).__name__,
                retry_in_s=retry_interval_s,
            )
            await asyncio.sleep(retry_interval_s)
            continue

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass  # peer reset while closing; reachability is already proven
        logger.info("Connected", address=f"tcp://{address}")
        return


async def wait_for_dependencies(
    host: str,
    port: int,
    timeout_s: float,
    retry_interval_s: float,
) -> None:
    """Wait until host:port is reachable or *timeout_s* elapses.

    Raises:
        DependencyUnavailableError: The deadline passed first (fatal).
    """
    probe = asyncio.create_task(
        wait_for_socket(host, port, retry_interval_s, attempt_timeout_s=timeout_s),
        name="readiness-probe",
    )
    try:
        await asyncio.wait_for(probe, timeout=timeout_s)
    except asyncio.TimeoutError:
        logger.error(
            "Timeout waiting on dependencies to become available",
            address=f"{host}:{port}",
            timeout_s=timeout_s,
        )
        raise DependencyUnavailableError(f"{host}:{port}", timeout_s) from None
