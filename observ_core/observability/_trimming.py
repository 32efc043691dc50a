"""Payload trimming utilities for telemetry records and mirrored spans.

Trims large text content and removes binary data URIs to keep payloads
manageable while preserving enough context for debugging.
"""

import re
from typing import Any, cast

_CONTENT_TRIM_THRESHOLD = 250
_CONTENT_TRIM_KEEP = 100

MESSAGE_CONTENT_LIMIT = 10_000
RAW_BODY_LIMIT = 1_000


def _is_binary_content(content: Any) -> bool:
    """Detect binary content by data URI prefix (RFC 2397 format with base64 encoding)."""
    return isinstance(content, str) and bool(re.match(r"^data:[a-zA-Z0-9.+/-]+;base64,", content))


def _trim_content_string(content: str) -> str:
    """Trim a text content string if over threshold, keeping first/last chars."""
    if len(content) <= _CONTENT_TRIM_THRESHOLD:
        return content
    trimmed_chars = len(content) - 2 * _CONTENT_TRIM_KEEP
    return content[:_CONTENT_TRIM_KEEP] + f" ... [trimmed {trimmed_chars} chars] ... " + content[-_CONTENT_TRIM_KEEP:]


def truncate(text: Any, limit: int) -> Any:
    """Cut a string to ``limit`` characters with a trailing ellipsis. Non-strings pass through."""
    if not isinstance(text, str) or len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)] + "..."


def trim_payload(data: Any) -> Any:
    """Recursively trim strings in nested data. Binary data URIs are replaced."""
    if isinstance(data, str):
        if _is_binary_content(data):
            return "[binary content removed]"
        return _trim_content_string(data)
    if isinstance(data, dict):
        return {k: trim_payload(v) for k, v in cast(dict[str, Any], data).items()}
    if isinstance(data, list):
        return [trim_payload(item) for item in cast(list[Any], data)]
    if isinstance(data, tuple):
        return tuple(trim_payload(item) for item in cast(tuple[Any, ...], data))
    return data


def bounded_mapping(data: dict[str, Any], max_chars: int = RAW_BODY_LIMIT) -> dict[str, Any]:
    """Keep a mapping's scalar values, cutting long strings and summarizing large containers."""
    bounded: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            bounded[key] = truncate(value, max_chars)
        elif isinstance(value, (list, tuple)):
            items = cast(list[Any], list(value))
            bounded[key] = [trim_payload(item) for item in items[:10]]
            if len(items) > 10:
                bounded[f"{key}_count"] = len(items)
        elif isinstance(value, dict):
            bounded[key] = trim_payload(value)
        else:
            bounded[key] = value
    return bounded


__all__ = [
    "MESSAGE_CONTENT_LIMIT",
    "RAW_BODY_LIMIT",
    "bounded_mapping",
    "trim_payload",
    "truncate",
]
