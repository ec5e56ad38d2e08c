"""aio-pika implementation of the broker Protocols.

One non-robust connection per process: there is no reconnection. When the
connection drops, ``AmqpConnection.disconnected`` is set and the dispatch
worker terminates the process.

Every aio-pika / aiormq failure is re-raised as ``BrokerOperationError`` with
the operation that failed, so callers only ever see the purger error taxonomy.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import aio_pika
from aio_pika.abc import (
    AbstractChannel,
    AbstractConnection,
    AbstractIncomingMessage,
    AbstractQueue,
    AbstractQueueIterator,
)
from aio_pika.exceptions import AMQPException

from purger.errors import BrokerConnectionError, BrokerOperationError
from purger.utils.logger import get_logger

logger = get_logger(__name__)

# aio-pika surfaces protocol errors as AMQPException subclasses and socket
# failures as OSError; asyncio timeouts come from RPC waits on a dead peer.
_BROKER_ERRORS: tuple[type[BaseException], ...] = (AMQPException, OSError, asyncio.TimeoutError)


class AmqpDelivery:
    """Wraps an aio-pika IncomingMessage."""

    def __init__(self, message: AbstractIncomingMessage) -> None:
        self._message = message
        self.body: bytes = message.body

    async def ack(self) -> None:
        try:
            await self._message.ack()
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to Ack message", exc) from exc

    async def nack(self, requeue: bool = True) -> None:
        try:
            await self._message.nack(requeue=requeue)
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to Nack message", exc) from exc


class AmqpDeliveryStream:
    """Manual-ack consumer backed by an aio-pika QueueIterator."""

    def __init__(self, iterator: AbstractQueueIterator) -> None:
        self._iterator = iterator

    async def next(self) -> AmqpDelivery:
        try:
            message = await self._iterator.__anext__()
        except StopAsyncIteration as exc:
            raise BrokerOperationError("Consumer cancelled by broker") from exc
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to receive message", exc) from exc
        return AmqpDelivery(message)

    async def close(self) -> None:
        try:
            await self._iterator.close()
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to cancel consumer", exc) from exc


class AmqpChannel:
    """One aio-pika channel; owned by a single scan."""

    def __init__(self, channel: AbstractChannel) -> None:
        self._channel = channel
        self._queues: dict[str, AbstractQueue] = {}

    async def declare_queue(self, name: str) -> None:
        try:
            self._queues[name] = await self._channel.declare_queue(
                name,
                durable=False,
                auto_delete=False,
                exclusive=False,
            )
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to declare a queue", exc) from exc

    async def consume(self, queue_name: str) -> AmqpDeliveryStream:
        queue = self._queues.get(queue_name)
        if queue is None:
            raise BrokerOperationError(f"Queue {queue_name!r} was not declared on this channel")
        iterator = queue.iterator(no_ack=False, exclusive=False)
        try:
            await iterator.consume()
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to register a consumer", exc) from exc
        return AmqpDeliveryStream(iterator)

    async def close(self) -> None:
        if self._channel.is_closed:
            return
        try:
            await self._channel.close()
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to close channel", exc) from exc


class AmqpConnection:
    """Process-wide aio-pika connection with a disconnect notification event.

    Usage::

        connection = await AmqpConnection.connect(url)
        await connection.disconnected.wait()   # fires on connection loss only
    """

    def __init__(self, connection: AbstractConnection) -> None:
        self._connection = connection
        self._disconnected = asyncio.Event()
        self._closing = False
        self._connection.close_callbacks.add(self._on_close)

    @classmethod
    async def connect(cls, url: str) -> "AmqpConnection":
        """Dial the broker.

        Raises:
            BrokerConnectionError: On any connection failure.
        """
        try:
            connection = await aio_pika.connect(url)
        except _BROKER_ERRORS as exc:
            raise BrokerConnectionError(f"Failed to connect to RabbitMQ: {exc}") from exc
        return cls(connection)

    @property
    def disconnected(self) -> asyncio.Event:
        return self._disconnected

    def _on_close(self, _sender: Any, exc: Optional[BaseException] = None, *_: Any) -> None:
        if self._closing:
            return
        logger.error("Broker connection closed", error=str(exc) if exc else None)
        self._disconnected.set()

    async def channel(self) -> AmqpChannel:
        try:
            channel = await self._connection.channel()
        except _BROKER_ERRORS as exc:
            raise BrokerOperationError("Failed to open a channel", exc) from exc
        return AmqpChannel(channel)

    async def close(self) -> None:
        self._closing = True
        if self._connection.is_closed:
            return
        try:
            await self._connection.close()
        except _BROKER_ERRORS as exc:
            logger.warning("Broker connection close error (non-fatal)", error=str(exc))
