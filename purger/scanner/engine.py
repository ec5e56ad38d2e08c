"""Purge scan engine.

``purge()`` opens a dedicated channel, consumes the queue with manual acks and
drives a small state machine over two events (a delivery arriving or the
idle timer expiring) until it reaches a terminal state:

    AWAITING_MESSAGE ──delivery, value == target──────────▶ MATCHED             (ack)
                     ──delivery, value seen before───────▶ DUPLICATE_EXHAUSTED (nack, requeue)
                     ──delivery, bad JSON / bad path─────▶ ABORTED             (nack, requeue)
                     ──delivery, new non-target value────▶ AWAITING_MESSAGE    (nack, requeue)
                     ──idle timer fires──────────────────▶ TIMED_OUT           (nothing to resolve)

Every delivery the scan receives is resolved before the scan moves on, and at
most one delivery is acknowledged per scan. The channel (and its consumer) is
closed on every exit path.

Broker primitive failures surface as ``BrokerOperationError`` and are NOT
handled here: they are fatal and belong to the dispatch worker.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from jsonpath_ng.jsonpath import JSONPath

from purger.broker.protocol import BrokerConnection, Delivery
from purger.constants import DEFAULT_JSONPATH, SCAN_IDLE_TIMEOUT_S
from purger.errors import FieldExtractionError, MalformedPayloadError
from purger.scanner.extract import compile_jsonpath, decode_payload, extract_field
from purger.utils.logger import get_logger

logger = get_logger(__name__)


class ScanState(str, Enum):
    AWAITING_MESSAGE = "awaiting_message"
    MATCHED = "matched"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"
    DUPLICATE_EXHAUSTED = "duplicate_exhausted"

    @property
    def terminal(self) -> bool:
        return self is not ScanState.AWAITING_MESSAGE


@dataclass
class ScanResult:
    """Outcome of one scan.

    Attributes:
        target:        Identifier the scan looked for.
        queue:         Queue that was scanned.
        state:         Terminal ScanState.
        messages_read: Deliveries received (including the terminating one).
        requeued:      Deliveries negatively acknowledged with requeue.
        acknowledged:  Deliveries acknowledged (0 or 1).
        duration_ms:   Wall time from channel open to channel close.
        error:         Why the scan aborted (ABORTED only).
    """

    target: str
    queue: str
    state: ScanState = ScanState.AWAITING_MESSAGE
    messages_read: int = 0
    requeued: int = 0
    acknowledged: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None


class _Scan:
    """State for one scan: the seen-value set and the running ScanResult."""

    def __init__(self, result: ScanResult, path: JSONPath, log: Any) -> None:
        self.result = result
        self._path = path
        self._seen: set[str] = set()
        self._log = log

    @property
    def state(self) -> ScanState:
        return self.result.state

    async def on_delivery(self, delivery: Delivery) -> None:
        self.result.messages_read += 1

        try:
            value = extract_field(decode_payload(delivery.body), self._path)
        except MalformedPayloadError as exc:
            self._log.warning("Failed to unmarshal JSON", error=str(exc))
            await self._abort(delivery, exc)
            return
        except FieldExtractionError as exc:
            self._log.warning("Failed to get JSON field", jsonpath=str(self._path), error=str(exc))
            await self._abort(delivery, exc)
            return

        self._log.info("Read")

        if value in self._seen:
            # The queue has wrapped around without yielding the target.
            await self._requeue(delivery)
            self.result.state = ScanState.DUPLICATE_EXHAUSTED
            self._log.info("Done")
            return

        self._seen.add(value)

        if value == self.result.target:
            await delivery.ack()
            self.result.acknowledged += 1
            self.result.state = ScanState.MATCHED
            self._log.info("Deleted")
            return

        await self._requeue(delivery)

    def on_timeout(self) -> None:
        self.result.state = ScanState.TIMED_OUT
        self._log.info("Done (timeout)")

    async def _requeue(self, delivery: Delivery) -> None:
        await delivery.nack(requeue=True)
        self.result.requeued += 1

    async def _abort(self, delivery: Delivery, exc: Exception) -> None:
        await self._requeue(delivery)
        self.result.state = ScanState.ABORTED
        self.result.error = str(exc)


async def purge(
    connection: BrokerConnection,
    queue_name: str,
    target: str,
    jsonpath: Union[JSONPath, str] = DEFAULT_JSONPATH,
    idle_timeout_s: float = SCAN_IDLE_TIMEOUT_S,
) -> ScanResult:
    """Scan *queue_name* for the message whose JSON field equals *target* and remove it.

    Args:
        connection:     Open broker connection (owned by the caller).
        queue_name:     Queue to declare and consume.
        target:         Identifier to purge.
        jsonpath:       Compiled JSONPath, or an expression to compile.
        idle_timeout_s: Scan Timer bound, reset on every delivery.

    Returns:
        ScanResult in a terminal state.

    Raises:
        BrokerOperationError: A broker primitive failed (fatal).
    """
    path = compile_jsonpath(jsonpath) if isinstance(jsonpath, str) else jsonpath
    result = ScanResult(target=target, queue=queue_name)
    scan = _Scan(result, path, logger.bind(value=target, queue=queue_name))
    started = time.perf_counter()

    channel = await connection.channel()
    try:
        await channel.declare_queue(queue_name)
        stream = await channel.consume(queue_name)
        try:
            while not scan.state.terminal:
                try:
                    delivery = await asyncio.wait_for(stream.next(), timeout=idle_timeout_s)
                except asyncio.TimeoutError:
                    scan.on_timeout()
                    break
                await scan.on_delivery(delivery)
        finally:
            await stream.close()
    finally:
        await channel.close()
        result.duration_ms = (time.perf_counter() - started) * 1000

    return result
