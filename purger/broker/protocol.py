"""Broker Protocols.

The scan engine and the dispatch worker only ever talk to the broker through
these interfaces. ``purger.broker.amqp`` provides the aio-pika implementation;
tests use in-memory fakes.

Error contract: every method that touches the broker raises
``BrokerOperationError`` (a FatalError) on failure. Nothing else escapes.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable


@runtime_checkable
class Delivery(Protocol):
    """One message received from a consumption stream."""

    body: bytes

    async def ack(self) -> None:
        """Permanently remove the message from the queue."""
        ...

    async def nack(self, requeue: bool = True) -> None:
        """Reject the message; with ``requeue`` it goes back to the queue."""
        ...


@runtime_checkable
class DeliveryStream(Protocol):
    """Manual-ack consumer on one queue."""

    async def next(self) -> Delivery:
        """Wait for the next delivery. Cancellation-safe."""
        ...

    async def close(self) -> None:
        """Cancel the consumer."""
        ...


@runtime_checkable
class BrokerChannel(Protocol):
    """A channel owned by exactly one scan."""

    async def declare_queue(self, name: str) -> None:
        """Idempotently declare *name* (durable=False, auto_delete=False, exclusive=False)."""
        ...

    async def consume(self, queue_name: str) -> DeliveryStream:
        """Start a non-exclusive, manual-ack consumer on *queue_name*."""
        ...

    async def close(self) -> None:
        """Close the channel. Unresolved deliveries return to the queue."""
        ...


@runtime_checkable
class BrokerConnection(Protocol):
    """The process-wide broker connection, owned by the dispatch worker."""

    @property
    def disconnected(self) -> asyncio.Event:
        """Set when the connection is lost (not on an intentional close)."""
        ...

    async def channel(self) -> BrokerChannel:
        """Open a new channel."""
        ...

    async def close(self) -> None:
        """Close the connection without signalling ``disconnected``."""
        ...
