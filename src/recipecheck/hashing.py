# Copyright (c) Syntropy Systems
"""Canonical serialization and content hashing.

Rules:
- Objects: keys sorted at every nesting level
- Arrays: order preserved
- MISSING: skipped (treated as an absent key)
- None: kept (explicit null is meaningful)
"""
from __future__ import annotations

import hashlib
import json
import math
from collections.abc import Mapping
from typing import TYPE_CHECKING, Final

from typing_extensions import override

if TYPE_CHECKING:
    from recipecheck.models.base import JSONValue


class _Missing:
    """Sentinel for an absent value (distinct from None)."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @override
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Final = _Missing()


def strip_undefined(value: object) -> object:
    """Recursively drop MISSING values from mappings.

    MISSING inside arrays becomes None, matching JSON serialization.
    """
    if isinstance(value, Mapping):
        return {
            key: strip_undefined(item)
            for key, item in value.items()
            if item is not MISSING
        }
    if isinstance(value, (list, tuple)):
        return [None if item is MISSING else strip_undefined(item) for item in value]
    return value


def _stringify_number(value: float) -> str:
    if not math.isfinite(value):
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return json.dumps(value)


def canonical_stringify(value: object) -> str:
    """Serialize a JSON-like value with sorted keys and no whitespace.

    Assumes MISSING values were already stripped; any left over are skipped
    in mappings and rendered as null elsewhere.
    """
    if value is None or value is MISSING:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return _stringify_number(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonical_stringify(item) for item in value) + "]"
    if isinstance(value, Mapping):
        pairs: list[str] = []
        for key in sorted(value):
            item = value[key]
            if item is MISSING:
                continue
            key_str = json.dumps(str(key), ensure_ascii=False)
            pairs.append(f"{key_str}:{canonical_stringify(item)}")
        return "{" + ",".join(pairs) + "}"

    msg = f"Value of type {type(value).__name__} is not JSON-serializable"
    raise TypeError(msg)


def canonicalize_payload(payload: object) -> str:
    """Strip MISSING values then stringify canonically."""
    return canonical_stringify(strip_undefined(payload))


def hash_canonical(value: JSONValue | object) -> str:
    """SHA-256 hex digest of the canonical form of ``value``."""
    canonical = canonicalize_payload(value)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def payloads_equal(a: object, b: object) -> bool:
    """Compare two payloads by canonical form.

    ``{"a": 1, "b": MISSING}`` equals ``{"a": 1}``;
    ``{"a": 1, "b": None}`` does not.
    """
    return canonicalize_payload(a) == canonicalize_payload(b)
