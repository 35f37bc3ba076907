# Copyright (c) Syntropy Systems
"""Pydantic models for field and issue comparison results."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field, model_validator
from typing_extensions import Self

from .base import FrozenModel, JSONValue
from .recipe import ActualIssue, ExpectedIssue, ToleranceSpec


class FieldType(str, Enum):
    """Closed set of value kinds the comparator dispatches on."""

    MISSING = "missing"
    NULL = "null"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    STRING = "string"
    ARRAY = "array"
    OBJECT = "object"

    @property
    def is_empty(self) -> bool:
        return self in (FieldType.MISSING, FieldType.NULL)


class FieldComparisonReason(str, Enum):
    """Why a field comparison failed."""

    EXCEEDED_ABS = "exceeded_abs"
    EXCEEDED_REL = "exceeded_rel"
    EXCEEDED_ABS_AND_REL = "exceeded_abs+exceeded_rel"
    TYPE_MISMATCH = "type_mismatch"
    VALUE_MISMATCH = "value_mismatch"
    MISSING_EXPECTED = "missing_expected"
    MISSING_ACTUAL = "missing_actual"
    MISSING_TOLERANCE_IN_STRICT_MODE = "missing_tolerance_in_strict_mode"


class FieldComparison(FrozenModel):
    """Verdict for a single output field.

    A missing operand is represented by leaving ``expected``/``actual``
    unset; use ``has_expected``/``has_actual`` to tell missing from null.
    """

    field: str
    field_type: FieldType = Field(alias="fieldType")
    expected: JSONValue = None
    actual: JSONValue = None
    passed: bool

    # Numeric-specific
    delta: Optional[float] = None
    delta_rel: Optional[float] = Field(default=None, alias="deltaRel")
    tolerance_used: Optional[ToleranceSpec] = Field(default=None, alias="toleranceUsed")

    reason: Optional[FieldComparisonReason] = None

    @model_validator(mode="after")
    def _failure_has_reason(self) -> Self:
        if not self.passed and self.reason is None:
            msg = f"Failed comparison for '{self.field}' must carry a reason"
            raise ValueError(msg)
        return self

    @property
    def has_expected(self) -> bool:
        return "expected" in self.model_fields_set

    @property
    def has_actual(self) -> bool:
        return "actual" in self.model_fields_set


class ComparisonResult(FrozenModel):
    """Aggregate of per-field comparisons."""

    passed: bool
    comparisons: list[FieldComparison] = Field(default_factory=list)
    max_drift_rel: Optional[float] = Field(default=None, alias="maxDriftRel")
    max_drift_field: Optional[str] = Field(default=None, alias="maxDriftField")

    @property
    def failures(self) -> list[FieldComparison]:
        return [c for c in self.comparisons if not c.passed]


class IssueDiff(FrozenModel):
    """Expected vs. actual diagnostic issues."""

    passed: bool
    missing: list[ExpectedIssue] = Field(default_factory=list)
    unexpected: list[ActualIssue] = Field(default_factory=list)
    matched: list[str] = Field(default_factory=list)
