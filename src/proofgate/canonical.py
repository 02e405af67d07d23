"""RFC 8785 canonical JSON for recorded proof reports.

Reports written by the pipeline are canonicalized so that re-recording an
unchanged result produces byte-identical files, and therefore identical
artifact hashes.
"""

from __future__ import annotations

import hashlib
from datetime import date, datetime
from enum import Enum
from pathlib import PurePath
from typing import Any

import rfc8785
from pydantic import BaseModel

JSONValue = bool | int | float | str | None | list[Any] | dict[str, Any]


def _to_json_value(value: Any) -> JSONValue:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, BaseModel):
        return _to_json_value(value.model_dump(mode="json"))
    if isinstance(value, Enum):
        return _to_json_value(value.value)
    if isinstance(value, dict):
        return {str(key): _to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_to_json_value(item) for item in value]
        return sorted(items, key=repr) if isinstance(value, (set, frozenset)) else items
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, PurePath):
        return value.as_posix()
    raise TypeError(f"Cannot write {type(value).__name__} into a canonical report")


def to_canonical_bytes(value: Any) -> bytes:
    """Serialize ``value`` per RFC 8785 (sorted keys, no whitespace, ES6 numbers)."""
    return rfc8785.dumps(_to_json_value(value))


def to_canonical_json(value: Any) -> str:
    return to_canonical_bytes(value).decode("utf-8")


def canonical_digest(value: Any) -> str:
    return hashlib.sha256(to_canonical_bytes(value)).hexdigest()
