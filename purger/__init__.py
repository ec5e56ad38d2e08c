"""queue-purger — webhook-triggered removal of a single message from an AMQP queue."""

__version__ = "1.0.0"
