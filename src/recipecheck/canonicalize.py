# Copyright (c) Syntropy Systems
"""Recipe input canonicalization.

Turns raw UI/form inputs into the minimal set of user-controlled,
mode-consistent keys that represent engineering intent:

1. Drop deprecated keys
2. Collapse aliases (drive_rpm -> drive_rpm_input)
3. Drop keys derived from catalog lookups
4. Drop internal resolved keys
5. Drop keys inactive under the current mode switches
6. Strip null/missing values
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from recipecheck.hashing import MISSING, strip_undefined

if TYPE_CHECKING:
    from recipecheck.models.base import JSONValue

ModeGatedKeys = Mapping[str, Mapping[str, tuple[str, ...]]]


@dataclass(frozen=True)
class CanonicalizationRules:
    """Key tables driving canonicalization. Never mutated."""

    deprecated_keys: tuple[str, ...] = ()
    aliases: tuple[tuple[str, str], ...] = ()
    derived_catalog_keys: tuple[str, ...] = ()
    internal_resolved_keys: tuple[str, ...] = ()
    mode_gated_keys: ModeGatedKeys = field(default_factory=dict)
    # Engine schema renames applied by normalize_inputs (old -> new, copy only)
    schema_aliases: tuple[tuple[str, str], ...] = ()


DEFAULT_RULES = CanonicalizationRules(
    deprecated_keys=("send_to_estimating",),
    aliases=(("drive_rpm", "drive_rpm_input"),),
    derived_catalog_keys=(
        "belt_min_pulley_dia_no_vguide_in",
        "belt_min_pulley_dia_with_vguide_in",
    ),
    internal_resolved_keys=(),
    mode_gated_keys={
        "speed_mode": {
            # belt_speed mode: the user specifies belt_speed_fpm, not RPM
            "belt_speed": ("drive_rpm_input", "drive_rpm"),
            "drive_rpm": (),
        },
    },
    schema_aliases=(("conveyor_width_in", "belt_width_in"),),
)


@dataclass(frozen=True)
class RemovedKey:
    """A key dropped during canonicalization and why."""

    key: str
    reason: str


@dataclass(frozen=True)
class CanonicalizationResult:
    """Canonical inputs plus an audit trail of removed keys."""

    canonical_inputs: dict[str, JSONValue]
    removed_keys: list[RemovedKey]


def _drop(
    result: dict[str, object],
    keys: tuple[str, ...],
    reason: str,
    removed: list[RemovedKey],
) -> None:
    for key in keys:
        if key in result:
            del result[key]
            removed.append(RemovedKey(key, reason))


def canonicalize_recipe_inputs(
    raw_inputs: Mapping[str, object],
    rules: CanonicalizationRules = DEFAULT_RULES,
) -> CanonicalizationResult:
    """Canonicalize raw recipe inputs.

    Pure: ``raw_inputs`` is not modified. Applying the result a second time
    yields the same inputs with nothing removed.
    """
    removed: list[RemovedKey] = []
    result: dict[str, object] = dict(raw_inputs)

    _drop(result, rules.deprecated_keys, "deprecated", removed)

    for old_key, new_key in rules.aliases:
        if old_key in result:
            if new_key not in result:
                result[new_key] = result[old_key]
            del result[old_key]
            removed.append(RemovedKey(old_key, f"aliased to {new_key}"))

    _drop(result, rules.derived_catalog_keys, "derived from catalog", removed)
    _drop(result, rules.internal_resolved_keys, "internal resolved value", removed)

    for mode_key, mode_map in rules.mode_gated_keys.items():
        mode_value = result.get(mode_key, MISSING)
        if isinstance(mode_value, str) and mode_value in mode_map:
            _drop(
                result,
                tuple(mode_map[mode_value]),
                f"inactive in {mode_key}={mode_value} mode",
                removed,
            )

    for key in [k for k, v in result.items() if v is None or v is MISSING]:
        del result[key]
        removed.append(RemovedKey(key, "null/undefined"))

    return CanonicalizationResult(
        canonical_inputs=dict(result),  # type: ignore[arg-type]
        removed_keys=removed,
    )


def normalize_inputs(
    inputs: Mapping[str, object],
    rules: CanonicalizationRules = DEFAULT_RULES,
) -> dict[str, JSONValue]:
    """Shape recipe inputs for the engine.

    Canonicalizes, then applies schema-level renames (the old key's value is
    copied only when the new key is absent), then strips MISSING values.
    """
    normalized: dict[str, object] = dict(
        canonicalize_recipe_inputs(inputs, rules).canonical_inputs
    )

    for old_key, new_key in rules.schema_aliases:
        if new_key not in normalized and old_key in normalized:
            normalized[new_key] = normalized[old_key]

    return strip_undefined(normalized)  # type: ignore[return-value]


def get_canonicalized_denylist(
    rules: CanonicalizationRules = DEFAULT_RULES,
) -> dict[str, object]:
    """Return copies of the canonicalization tables, for documentation."""
    return {
        "deprecated": list(rules.deprecated_keys),
        "derived": list(rules.derived_catalog_keys),
        "internal": list(rules.internal_resolved_keys),
        "aliases": dict(rules.aliases),
        "mode_gated": {
            mode_key: {value: list(keys) for value, keys in mode_map.items()}
            for mode_key, mode_map in rules.mode_gated_keys.items()
        },
    }
