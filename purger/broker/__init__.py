"""Broker collaborator package.

Layout:
    protocol.py — structural interfaces the scan engine and dispatch worker use
    amqp.py     — aio-pika implementation (AMQP 0-9-1, no reconnection)
"""

from purger.broker.protocol import BrokerChannel, BrokerConnection, Delivery, DeliveryStream

__all__ = ["BrokerChannel", "BrokerConnection", "Delivery", "DeliveryStream"]
