"""Unit tests for fatal process termination (purger/utils/process.py)."""

from __future__ import annotations

from unittest.mock import patch

from purger.utils.process import FATAL_EXIT_CODE, exit_fatally


def test_exit_fatally_exits_non_zero() -> None:
    with patch("purger.utils.process.os._exit") as mock_exit:
        exit_fatally("Disconnected", queue="default")

    mock_exit.assert_called_once_with(FATAL_EXIT_CODE)
    assert FATAL_EXIT_CODE != 0


def test_exit_fatally_logs_reason_first() -> None:
    calls: list[str] = []
    with patch("purger.utils.process.logger") as mock_logger, patch(
        "purger.utils.process.os._exit"
    ) as mock_exit:
        mock_logger.critical.side_effect = lambda *a, **k: calls.append("log")
        mock_exit.side_effect = lambda code: calls.append("exit")
        exit_fatally("Failed to Ack message", error_type="BrokerOperationError")

    mock_logger.critical.assert_called_once_with(
        "Failed to Ack message", error_type="BrokerOperationError"
    )
    assert calls == ["log", "exit"]
