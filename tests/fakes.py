"""In-memory broker fakes implementing the purger.broker Protocols.

FakeBroker models a single queue with redelivery: a nack with requeue puts
the body at the back of the queue, so a scan that keeps rejecting messages
eventually sees the same value again, as a real broker cycles a
queue for a lone consumer.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from purger.errors import BrokerOperationError


def body(value: Any, field: str = "id") -> bytes:
    """JSON delivery body carrying *value* under *field*."""
    return json.dumps({field: value}).encode()


class FakeDelivery:
    def __init__(self, broker: "FakeBroker", payload: bytes) -> None:
        self._broker = broker
        self.body = payload
        self.resolved: Optional[str] = None

    async def ack(self) -> None:
        if self._broker.fail_ack:
            raise BrokerOperationError("Failed to Ack message")
        self.resolved = "ack"
        self._broker.acked.append(self.body)

    async def nack(self, requeue: bool = True) -> None:
        if self._broker.fail_nack:
            raise BrokerOperationError("Failed to Nack message")
        self.resolved = "nack"
        self._broker.nacked.append(self.body)
        if requeue and self._broker.redeliver:
            self._broker.queue.put_nowait(self.body)


class FakeStream:
    def __init__(self, broker: "FakeBroker") -> None:
        self._broker = broker
        self.closed = False

    async def next(self) -> FakeDelivery:
        payload = await self._broker.queue.get()
        delivery = FakeDelivery(self._broker, payload)
        self._broker.delivered.append(delivery)
        return delivery

    async def close(self) -> None:
        self.closed = True


class FakeChannel:
    def __init__(self, broker: "FakeBroker") -> None:
        self._broker = broker
        self.declared: list[str] = []
        self.streams: list[FakeStream] = []
        self.closed = False

    async def declare_queue(self, name: str) -> None:
        if self._broker.fail_declare:
            raise BrokerOperationError("Failed to declare a queue")
        self.declared.append(name)

    async def consume(self, queue_name: str) -> FakeStream:
        stream = FakeStream(self._broker)
        self.streams.append(stream)
        return stream

    async def close(self) -> None:
        self.closed = True
        # Unresolved deliveries go back to the queue on channel close.
        for delivery in self._broker.delivered:
            if delivery.resolved is None:
                delivery.resolved = "closed"
                self._broker.queue.put_nowait(delivery.body)


class FakeBroker:
    """Single-queue broker plus the process-wide connection to it."""

    def __init__(self, *payloads: bytes) -> None:
        self.queue: asyncio.Queue[bytes] = asyncio.Queue()
        for payload in payloads:
            self.queue.put_nowait(payload)
        self.acked: list[bytes] = []
        self.nacked: list[bytes] = []
        self.delivered: list[FakeDelivery] = []
        self.channels: list[FakeChannel] = []
        # False simulates requeued messages going to some other consumer.
        self.redeliver = True
        self.fail_channel = False
        self.fail_declare = False
        self.fail_ack = False
        self.fail_nack = False
        self.closed = False
        self._disconnected = asyncio.Event()

    # ── BrokerConnection ──────────────────────────────────────────────────────

    @property
    def disconnected(self) -> asyncio.Event:
        return self._disconnected

    async def channel(self) -> FakeChannel:
        if self.fail_channel:
            raise BrokerOperationError("Failed to open a channel")
        channel = FakeChannel(self)
        self.channels.append(channel)
        return channel

    async def close(self) -> None:
        self.closed = True

    # ── Helpers ───────────────────────────────────────────────────────────────

    def remaining(self) -> list[bytes]:
        """Snapshot of bodies still in the queue, in delivery order."""
        items: list[bytes] = []
        while not self.queue.empty():
            items.append(self.queue.get_nowait())
        for item in items:
            self.queue.put_nowait(item)
        return items

    def disconnect(self) -> None:
        self._disconnected.set()
