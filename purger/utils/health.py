"""Scan statistics surfaced by ``/health``.

Provides:
  - ScanStatsTracker — per-outcome counters plus a rolling window of scan durations
"""

from __future__ import annotations

from collections import Counter, deque
from typing import Any, Optional

from purger.constants import SCAN_STATS_WINDOW
from purger.scanner.engine import ScanResult, ScanState


class ScanStatsTracker:
    """Counts finished scans by terminal state and keeps recent durations.

    Thread-safety:
        Safe for single-threaded asyncio use (all access from the event loop).

    Usage::

        tracker = ScanStatsTracker()
        tracker.record(result)
        tracker.completed      # total scans recorded
        tracker.avg_ms         # rolling average duration
    """

    def __init__(self, window: int = SCAN_STATS_WINDOW) -> None:
        self._times: deque[float] = deque(maxlen=window)
        self._outcomes: Counter[str] = Counter()
        self._last: Optional[ScanResult] = None

    def record(self, result: ScanResult) -> None:
        self._times.append(result.duration_ms)
        self._outcomes[result.state.value] += 1
        self._last = result

    @property
    def completed(self) -> int:
        return sum(self._outcomes.values())

    @property
    def avg_ms(self) -> float:
        """Rolling mean duration; 0.0 when no scan has finished yet."""
        if not self._times:
            return 0.0
        return sum(self._times) / len(self._times)

    def outcomes(self) -> dict[str, int]:
        """Counters for every terminal state, zero-filled."""
        return {
            state.value: self._outcomes.get(state.value, 0)
            for state in ScanState
            if state.terminal
        }

    def last_scan(self) -> Optional[dict[str, Any]]:
        if self._last is None:
            return None
        return {
            "state": self._last.state.value,
            "messages_read": self._last.messages_read,
            "duration_ms": round(self._last.duration_ms, 1),
        }
