"""Purge scan engine.

Public API:
    purge()          — run one bounded scan of a queue for a target identifier
    ScanResult       — outcome record returned by purge()
    ScanState        — terminal states of a scan
    compile_jsonpath — validate and compile the configured JSON path
    extract_field    — read the comparison value out of a decoded payload
"""

from purger.scanner.engine import ScanResult, ScanState, purge
from purger.scanner.extract import compile_jsonpath, extract_field

__all__ = ["ScanResult", "ScanState", "compile_jsonpath", "extract_field", "purge"]
