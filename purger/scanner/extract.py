"""JSON payload decoding and field extraction for the scan engine.

The configured JSON path is compiled once (jsonpath-ng, extended grammar) and
applied to every delivery. Extraction must yield exactly one scalar; strings
are compared as-is, numbers and booleans by their JSON text (``42``, ``true``).
"""

from __future__ import annotations

import json
from typing import Any

from jsonpath_ng.jsonpath import JSONPath
from jsonpath_ng.exceptions import JSONPathError
from jsonpath_ng.ext import parse

from purger.errors import FieldExtractionError, MalformedPayloadError


def compile_jsonpath(expression: str) -> JSONPath:
    """Compile a JSON path expression.

    Raises:
        ValueError: If the expression is empty or does not parse.
    """
    if not expression:
        raise ValueError("JSON path must not be empty")
    try:
        return parse(expression)
    except JSONPathError as exc:
        raise ValueError(f"invalid JSON path {expression!r}: {exc}") from exc


def decode_payload(body: bytes) -> Any:
    """Decode a delivery body as JSON.

    Raises:
        MalformedPayloadError: If the body is not UTF-8 JSON.
    """
    try:
        return json.loads(body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedPayloadError(str(exc)) from exc


def extract_field(document: Any, path: JSONPath) -> str:
    """Return the value at *path* in *document* as a string.

    Raises:
        FieldExtractionError: On no match, an ambiguous (multi-value) match, or
                              a non-scalar / null value.
    """
    matches = path.find(document)
    if not matches:
        raise FieldExtractionError(f"no value at {path}")
    if len(matches) > 1:
        raise FieldExtractionError(f"{len(matches)} values at {path}, expected one")

    value = matches[0].value
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    raise FieldExtractionError(f"value at {path} is {type(value).__name__}, expected a scalar")
