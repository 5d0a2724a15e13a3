"""Helpers for canonical JSON serialization of records and event payloads."""

from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Any, Union

import orjson

_ORJSON_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_STRICT_INTEGER | orjson.OPT_NAIVE_UTC


JsonType = Union[str, int, float, bool, None, list["JsonType"], dict[str, "JsonType"]]


def _default(value: Any) -> Any:
    # Money never goes through float.
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"type {type(value).__name__} is not JSON serializable")


def canonical_dumps(payload: Any) -> bytes:
    """Return canonical JSON bytes with sorted keys and stable formatting."""
    return orjson.dumps(payload, default=_default, option=_ORJSON_OPTIONS)


def canonical_loads(raw: bytes | bytearray | str) -> Any:
    return orjson.loads(raw)


def canonical_hash(payload: Any) -> str:
    """Return a SHA-256 hex digest for the canonical JSON representation."""
    return hashlib.sha256(canonical_dumps(payload)).hexdigest()
