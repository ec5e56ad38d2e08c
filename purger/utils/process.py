"""Process termination for fatal conditions.

A fatal error after startup (broker disconnect, failed ack/nack, failed
channel open) leaves nothing useful to run, so the whole process exits
non-zero without unwinding the event loop.
"""

from __future__ import annotations

import os
import sys
from typing import Any, NoReturn

from purger.utils.logger import get_logger

logger = get_logger(__name__)

FATAL_EXIT_CODE: int = 1


def exit_fatally(reason: str, **fields: Any) -> NoReturn:
    """Log *reason* at critical level and terminate the process immediately.

    stdout/stderr are flushed first so the final structured log line is not lost.
    """
    logger.critical(reason, **fields)
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(FATAL_EXIT_CODE)
