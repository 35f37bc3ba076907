# Copyright (c) Syntropy Systems
"""Type-aware comparison of expected vs. actual outputs.

- Numeric fields: tolerance-based (abs/rel/round)
- Boolean/string fields: exact match
- Arrays/objects: deep equality
- Missing and null are distinct
- Strict mode: a numeric field without an explicit tolerance fails
"""
from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Union

from pydantic import ValidationError
from typing_extensions import TypeAlias

from recipecheck.errors import InvalidConfiguration
from recipecheck.hashing import MISSING
from recipecheck.models.comparison import (
    ComparisonResult,
    FieldComparison,
    FieldComparisonReason,
    FieldType,
    IssueDiff,
)
from recipecheck.models.recipe import ActualIssue, ExpectedIssue, ToleranceSpec

if TYPE_CHECKING:
    from recipecheck.models.base import JSONValue

ToleranceLike: TypeAlias = Union[ToleranceSpec, Mapping[str, object]]
ToleranceTable: TypeAlias = Sequence[tuple[str, ToleranceSpec]]

# Ordered suffix table; the first matching suffix wins.
DEFAULT_TOLERANCES: ToleranceTable = (
    ("_in", ToleranceSpec(abs=0.001)),  # dimensions: 0.001"
    ("_lbf", ToleranceSpec(abs=0.1)),  # forces: 0.1 lbf
    ("_lb", ToleranceSpec(abs=0.1)),  # weights: 0.1 lb
    ("_rpm", ToleranceSpec(rel=0.001)),  # speeds: 0.1%
    ("_pph", ToleranceSpec(rel=0.01)),  # throughput: 1%
    ("_ratio", ToleranceSpec(rel=0.001)),  # ratios: 0.1%
    ("_pct", ToleranceSpec(abs=0.1)),  # percentages: 0.1 points
)

FALLBACK_TOLERANCE = ToleranceSpec(rel=0.0001)


def get_field_type(value: object) -> FieldType:
    """Classify a value for comparison dispatch."""
    if value is MISSING:
        return FieldType.MISSING
    if value is None:
        return FieldType.NULL
    # bool is a subclass of int; check it first
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float)):
        return FieldType.NUMERIC
    if isinstance(value, (list, tuple)):
        return FieldType.ARRAY
    if isinstance(value, Mapping):
        return FieldType.OBJECT
    return FieldType.STRING


def deep_equal(a: object, b: object) -> bool:
    """Structural equality over JSON-like values.

    Arrays are order-sensitive; objects compare by key set and values.
    Booleans never equal numbers.
    """
    a_type = get_field_type(a)
    if a_type is not get_field_type(b):
        return False

    if a_type in (FieldType.MISSING, FieldType.NULL):
        return True
    if a_type is FieldType.ARRAY:
        a_items = list(a)  # type: ignore[call-overload]
        b_items = list(b)  # type: ignore[call-overload]
        if len(a_items) != len(b_items):
            return False
        return all(deep_equal(x, y) for x, y in zip(a_items, b_items))
    if a_type is FieldType.OBJECT:
        a_map: Mapping[str, object] = a  # type: ignore[assignment]
        b_map: Mapping[str, object] = b  # type: ignore[assignment]
        if set(a_map) != set(b_map):
            return False
        return all(deep_equal(a_map[key], b_map[key]) for key in a_map)
    return a == b


def coerce_tolerance(field: str, tolerance: ToleranceLike) -> ToleranceSpec:
    """Validate a tolerance given as a model or a plain mapping."""
    if isinstance(tolerance, ToleranceSpec):
        return tolerance
    try:
        return ToleranceSpec.model_validate(tolerance)
    except ValidationError as e:
        msg = f"Invalid tolerance for '{field}': {e.errors()[0]['msg']}"
        raise InvalidConfiguration(msg) from e


def coerce_tolerances(
    tolerances: Mapping[str, ToleranceLike] | None,
) -> dict[str, ToleranceSpec]:
    """Validate a field -> tolerance mapping."""
    if not tolerances:
        return {}
    return {field: coerce_tolerance(field, tol) for field, tol in tolerances.items()}


def get_default_tolerance(
    field: str,
    table: ToleranceTable = DEFAULT_TOLERANCES,
    fallback: ToleranceSpec = FALLBACK_TOLERANCE,
) -> ToleranceSpec:
    """Default tolerance for a field based on its name suffix."""
    for suffix, tolerance in table:
        if field.endswith(suffix):
            return tolerance
    return fallback


def default_tolerances_for_all_fields(
    outputs: Mapping[str, object],
    table: ToleranceTable = DEFAULT_TOLERANCES,
    fallback: ToleranceSpec = FALLBACK_TOLERANCE,
) -> dict[str, ToleranceSpec]:
    """Default tolerances for every numeric field in ``outputs``."""
    return {
        field: get_default_tolerance(field, table, fallback)
        for field, value in outputs.items()
        if get_field_type(value) is FieldType.NUMERIC
    }


def _round_half_up(value: float, digits: int) -> float:
    factor = 10**digits
    scaled = value * factor
    # Non-finite values and magnitudes too large to scale are left as is
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled + 0.5) / factor


def _comparison(
    field: str,
    field_type: FieldType,
    expected: object,
    actual: object,
    *,
    passed: bool,
    reason: FieldComparisonReason | None = None,
    **numeric: object,
) -> FieldComparison:
    values: dict[str, object] = {}
    if expected is not MISSING:
        values["expected"] = expected
    if actual is not MISSING:
        values["actual"] = actual
    return FieldComparison(
        field=field,
        field_type=field_type,
        passed=passed,
        reason=None if passed else reason,
        **values,  # type: ignore[arg-type]
        **numeric,  # type: ignore[arg-type]
    )


def _compare_numeric(
    field: str,
    expected: float,
    actual: float,
    tol: ToleranceSpec,
) -> FieldComparison:
    exp, act = expected, actual
    if tol.round is not None:
        exp = _round_half_up(exp, tol.round)
        act = _round_half_up(act, tol.round)

    if math.isnan(exp) or math.isnan(act):
        return _comparison(
            field,
            FieldType.NUMERIC,
            expected,
            actual,
            passed=False,
            reason=FieldComparisonReason.VALUE_MISMATCH,
            tolerance_used=tol,
        )

    delta = 0.0 if act == exp else abs(act - exp)
    if delta == 0:
        delta_rel = 0.0
    elif exp != 0 and math.isfinite(exp):
        delta_rel = delta / abs(exp)
    else:
        delta_rel = math.inf

    exceeded_abs = tol.abs is not None and delta > tol.abs
    exceeded_rel = tol.rel is not None and delta_rel > tol.rel

    reason: FieldComparisonReason | None = None
    if exceeded_abs and exceeded_rel:
        reason = FieldComparisonReason.EXCEEDED_ABS_AND_REL
    elif exceeded_abs:
        reason = FieldComparisonReason.EXCEEDED_ABS
    elif exceeded_rel:
        reason = FieldComparisonReason.EXCEEDED_REL

    return _comparison(
        field,
        FieldType.NUMERIC,
        expected,
        actual,
        passed=reason is None,
        reason=reason,
        delta=float(delta),
        delta_rel=float(delta_rel),
        tolerance_used=tol,
    )


def compare_field(
    field: str,
    expected: JSONValue | object = MISSING,
    actual: JSONValue | object = MISSING,
    tolerance: ToleranceLike | None = None,
    *,
    tolerance_table: ToleranceTable = DEFAULT_TOLERANCES,
    fallback: ToleranceSpec = FALLBACK_TOLERANCE,
) -> FieldComparison:
    """Compare one field. Rules are evaluated in order; the first match wins.

    Args:
        field: Field name (also used for default tolerance lookup)
        expected: Expected value, or MISSING
        actual: Actual value, or MISSING
        tolerance: Tolerance for numeric fields; None uses the default table

    """
    expected_type = get_field_type(expected)
    actual_type = get_field_type(actual)

    if expected_type is actual_type and expected_type.is_empty:
        return _comparison(field, expected_type, expected, actual, passed=True)

    if expected_type.is_empty:
        # Both empty but of different kinds: missing != null
        reason = (
            FieldComparisonReason.VALUE_MISMATCH
            if actual_type.is_empty
            else FieldComparisonReason.MISSING_EXPECTED
        )
        return _comparison(field, actual_type, expected, actual, passed=False, reason=reason)

    if actual_type.is_empty:
        return _comparison(
            field,
            expected_type,
            expected,
            actual,
            passed=False,
            reason=FieldComparisonReason.MISSING_ACTUAL,
        )

    if expected_type is not actual_type:
        return _comparison(
            field,
            expected_type,
            expected,
            actual,
            passed=False,
            reason=FieldComparisonReason.TYPE_MISMATCH,
        )

    if expected_type is FieldType.NUMERIC:
        tol = (
            get_default_tolerance(field, tolerance_table, fallback)
            if tolerance is None
            else coerce_tolerance(field, tolerance)
        )
        return _compare_numeric(field, expected, actual, tol)  # type: ignore[arg-type]

    if expected_type in (FieldType.ARRAY, FieldType.OBJECT):
        passed = deep_equal(expected, actual)
    else:
        passed = expected == actual

    return _comparison(
        field,
        expected_type,
        expected,
        actual,
        passed=passed,
        reason=FieldComparisonReason.VALUE_MISMATCH,
    )


def compare_outputs(
    expected: Mapping[str, object],
    actual: Mapping[str, object],
    tolerances: Mapping[str, ToleranceLike] | None = None,
    strict_mode: bool = False,  # noqa: FBT001, FBT002
    *,
    tolerance_table: ToleranceTable = DEFAULT_TOLERANCES,
    fallback: ToleranceSpec = FALLBACK_TOLERANCE,
) -> ComparisonResult:
    """Compare every field present in either output map.

    Args:
        expected: Expected outputs
        actual: Actual outputs
        tolerances: Explicit tolerances per field
        strict_mode: Fail numeric fields that have no explicit tolerance

    """
    explicit = coerce_tolerances(tolerances)
    fields = list(dict.fromkeys([*expected.keys(), *actual.keys()]))

    comparisons: list[FieldComparison] = []
    max_drift_rel: float | None = None
    max_drift_field: str | None = None

    for field in fields:
        expected_val = expected.get(field, MISSING)
        actual_val = actual.get(field, MISSING)
        tolerance = explicit.get(field)

        if (
            strict_mode
            and tolerance is None
            and get_field_type(expected_val) is FieldType.NUMERIC
        ):
            comparisons.append(
                _comparison(
                    field,
                    FieldType.NUMERIC,
                    expected_val,
                    actual_val,
                    passed=False,
                    reason=FieldComparisonReason.MISSING_TOLERANCE_IN_STRICT_MODE,
                )
            )
            continue

        comparison = compare_field(
            field,
            expected_val,
            actual_val,
            tolerance,
            tolerance_table=tolerance_table,
            fallback=fallback,
        )
        comparisons.append(comparison)

        if comparison.field_type is FieldType.NUMERIC and comparison.delta_rel is not None:
            if max_drift_rel is None or comparison.delta_rel > max_drift_rel:
                max_drift_rel = comparison.delta_rel
                max_drift_field = field

    return ComparisonResult(
        passed=all(c.passed for c in comparisons),
        comparisons=comparisons,
        max_drift_rel=max_drift_rel,
        max_drift_field=max_drift_field,
    )


def compare_issues(
    expected: Sequence[ExpectedIssue | Mapping[str, object]],
    actual: Sequence[ActualIssue | Mapping[str, object]],
) -> IssueDiff:
    """Diff expected issues against the issues a run reported.

    - missing: required expected issues whose code never appeared
    - unexpected: error-severity issues nobody expected
    - matched: expected codes that appeared
    """
    expected_issues = [ExpectedIssue.model_validate(e) for e in expected]
    actual_issues = [ActualIssue.model_validate(a) for a in actual]

    actual_codes = {issue.code for issue in actual_issues}
    expected_codes = {issue.code for issue in expected_issues}

    missing = [e for e in expected_issues if e.required and e.code not in actual_codes]
    unexpected = [
        a for a in actual_issues if a.severity == "error" and a.code not in expected_codes
    ]
    matched = [e.code for e in expected_issues if e.code in actual_codes]

    return IssueDiff(
        passed=not missing and not unexpected,
        missing=missing,
        unexpected=unexpected,
        matched=matched,
    )
