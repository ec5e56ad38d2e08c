"""Error taxonomy for the queue purger.

Two families, kept structurally apart:

  FatalError        — broker-protocol or dependency breakage. Always ends the
                      process with a non-zero exit code; never handled per request.
  ScanAbortedError  — scan-local, recoverable. The offending delivery is
                      requeued, the current scan stops, and the dispatch worker
                      carries on with the next purge request.
"""

from __future__ import annotations

from typing import Optional


class PurgerError(Exception):
    """Base class for all purger errors."""


# ─── Fatal ────────────────────────────────────────────────────────────────────


class FatalError(PurgerError):
    """Any condition that must terminate the process."""


class DependencyUnavailableError(FatalError):
    """The broker did not accept a TCP connection before the startup deadline."""

    def __init__(self, address: str, timeout_s: float) -> None:
        super().__init__(
            f"Timeout after {timeout_s}s waiting on dependencies to become available ({address})"
        )
        self.address = address
        self.timeout_s = timeout_s


class BrokerConnectionError(FatalError):
    """Initial connection to the broker failed."""


class BrokerOperationError(FatalError):
    """A broker primitive failed: channel open, queue declare, consume, ack or nack.

    Attributes:
        operation: Short description of the primitive that failed
                   (e.g. ``"Failed to open a channel"``).
    """

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        detail = f"{operation}: {cause}" if cause is not None else operation
        super().__init__(detail)
        self.operation = operation


class BrokerDisconnectedError(FatalError):
    """The broker connection was lost after startup."""


# ─── Scan-local ───────────────────────────────────────────────────────────────


class ScanAbortedError(PurgerError):
    """A delivery could not be inspected; the current scan stops."""


class MalformedPayloadError(ScanAbortedError):
    """Delivery body is not valid JSON."""


class FieldExtractionError(ScanAbortedError):
    """The configured JSON path did not yield a usable scalar value."""
