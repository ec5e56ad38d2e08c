"""ULID generation for webhook request IDs.

Each accepted webhook call is tagged with a 26-character ULID that is
attached to the queued purge request and bound to every log line the
resulting scan emits.

Uses the `python-ulid` library — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string."""
    return str(ULID())
