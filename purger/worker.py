"""Dispatch worker: the single owner of the broker connection.

One long-lived asyncio task selects over two event sources:

  - the connection's ``disconnected`` event → log and terminate the process;
  - the request queue (unbounded, FIFO)     → run ``purge()`` to completion.

Scans never overlap: the next request is not taken off the queue until the
current scan has returned. Webhook handlers only ever call ``submit()``;
nothing else touches the connection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from jsonpath_ng.jsonpath import JSONPath

from purger.broker.protocol import BrokerConnection
from purger.constants import DEFAULT_JSONPATH, SCAN_IDLE_TIMEOUT_S
from purger.errors import BrokerDisconnectedError, FatalError
from purger.scanner.engine import purge
from purger.scanner.extract import compile_jsonpath
from purger.utils.health import ScanStatsTracker
from purger.utils.logger import clear_request_id, get_logger, set_request_id
from purger.utils.process import exit_fatally

logger = get_logger(__name__)

FatalHook = Callable[..., Any]


@dataclass(frozen=True)
class PurgeRequest:
    """A validated identifier waiting for its scan.

    Attributes:
        purge_id:   Alphanumeric identifier to remove from the queue.
        request_id: ULID of the webhook call that enqueued it (log correlation).
    """

    purge_id: str
    request_id: Optional[str] = None


class DispatchWorker:
    """Serializes purge requests against one broker connection.

    Args:
        connection:     Open broker connection; owned by this worker from now on.
        queue_name:     Queue every scan consumes.
        jsonpath:       Field compared against each purge identifier.
        idle_timeout_s: Scan Timer bound passed to every scan.
        stats:          Tracker updated after each scan (for /health).
        on_fatal:       Called with a reason and log fields on any fatal error.
                        Defaults to ``exit_fatally`` (exit code 1).
    """

    def __init__(
        self,
        connection: BrokerConnection,
        queue_name: str,
        jsonpath: Union[JSONPath, str] = DEFAULT_JSONPATH,
        idle_timeout_s: float = SCAN_IDLE_TIMEOUT_S,
        stats: Optional[ScanStatsTracker] = None,
        on_fatal: FatalHook = exit_fatally,
    ) -> None:
        self.connection = connection
        self.queue_name = queue_name
        self._path = compile_jsonpath(jsonpath) if isinstance(jsonpath, str) else jsonpath
        self._idle_timeout_s = idle_timeout_s
        self.stats = stats if stats is not None else ScanStatsTracker()
        self._on_fatal = on_fatal
        self._requests: asyncio.Queue[PurgeRequest] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None
        self.busy = False

    # ── Public entry point ────────────────────────────────────────────────────

    def submit(self, request: PurgeRequest) -> None:
        """Enqueue a purge request. Never blocks; the queue is unbounded."""
        self._requests.put_nowait(request)

    @property
    def pending(self) -> int:
        """Requests waiting behind the current scan."""
        return self._requests.qsize()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="dispatch-worker")
        return self._task

    async def stop(self) -> None:
        """Cancel the worker task. An in-flight scan is interrupted."""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        """Select loop; returns only after a fatal error was reported."""
        disconnect_wait = asyncio.create_task(self.connection.disconnected.wait())
        next_request: Optional[asyncio.Task[PurgeRequest]] = None
        try:
            while True:
                next_request = asyncio.create_task(self._requests.get())
                done, _ = await asyncio.wait(
                    {disconnect_wait, next_request},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if disconnect_wait in done:
                    exc = BrokerDisconnectedError("Disconnected")
                    logger.error(str(exc), queue=self.queue_name)
                    self._on_fatal(str(exc), queue=self.queue_name, error_type=type(exc).__name__)
                    return

                request = next_request.result()
                next_request = None
                if not await self._dispatch(request):
                    return
        finally:
            for task in (disconnect_wait, next_request):
                if task is not None and not task.done():
                    task.cancel()

    async def _dispatch(self, request: PurgeRequest) -> bool:
        """Run one scan to completion. Returns False after a fatal error."""
        set_request_id(request.request_id)
        self.busy = True
        try:
            result = await purge(
                self.connection,
                self.queue_name,
                request.purge_id,
                jsonpath=self._path,
                idle_timeout_s=self._idle_timeout_s,
            )
        except FatalError as exc:
            logger.error(str(exc), queue=self.queue_name, value=request.purge_id)
            self._on_fatal(str(exc), queue=self.queue_name, error_type=type(exc).__name__)
            return False
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Unexpected scan failure",
                queue=self.queue_name,
                value=request.purge_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self._on_fatal("Unexpected scan failure", error_type=type(exc).__name__)
            return False
        finally:
            self.busy = False
            self._requests.task_done()
            clear_request_id()

        self.stats.record(result)
        logger.info(
            "Scan finished",
            queue=self.queue_name,
            value=request.purge_id,
            state=result.state.value,
            messages_read=result.messages_read,
            requeued=result.requeued,
            acknowledged=result.acknowledged,
            duration_ms=round(result.duration_ms, 1),
        )
        return True
