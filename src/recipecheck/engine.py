# Copyright (c) Syntropy Systems
"""Calculation engine contract.

The engine is an external pure function::

    compute(inputs) -> {"outputs": {...}, "warnings": [...], "errors": [...]}

recipecheck never defines the formulas; it only calls the engine and
converts what comes back.
"""
from __future__ import annotations

import importlib
from collections.abc import Mapping
from typing import TYPE_CHECKING, Literal, Optional, Protocol, Union, cast

from pydantic import Field, ValidationError

from recipecheck.errors import InvalidConfiguration
from recipecheck.models.base import JSONValue, RecipeBaseModel
from recipecheck.models.recipe import ActualIssue

if TYPE_CHECKING:
    from recipecheck.models.recipe import IssueSeverity


class ValidationWarning(RecipeBaseModel):
    """Non-fatal diagnostic reported by the engine."""

    field: Optional[str] = None
    message: str
    severity: Literal["warning", "info"] = "warning"
    code: Optional[str] = None


class ValidationIssue(RecipeBaseModel):
    """Fatal diagnostic reported by the engine."""

    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class EngineResult(RecipeBaseModel):
    """What one engine call returns."""

    outputs: Optional[dict[str, JSONValue]] = None
    warnings: list[ValidationWarning] = Field(default_factory=list)
    errors: list[ValidationIssue] = Field(default_factory=list)


class CalculationEngine(Protocol):
    """Callable that performs the domain calculation."""

    def __call__(
        self, inputs: dict[str, JSONValue]
    ) -> Union[EngineResult, Mapping[str, object]]:
        ...


def coerce_engine_result(raw: object) -> EngineResult:
    """Validate whatever the engine returned into an EngineResult."""
    if isinstance(raw, EngineResult):
        return raw
    try:
        return EngineResult.model_validate(raw)
    except ValidationError as e:
        msg = f"Engine returned a malformed result: {e.errors()[0]['msg']}"
        raise TypeError(msg) from e


def _issue_code(prefix: str, field: str | None) -> str:
    return f"{prefix}_{field.upper()}" if field else prefix


def to_actual_issues(result: EngineResult) -> list[ActualIssue]:
    """Convert engine errors and warnings to ActualIssue records.

    Errors come first. An explicit code wins; otherwise the code is derived
    from severity and field (``ERROR_<FIELD>``, ``WARN_<FIELD>``).
    """
    issues: list[ActualIssue] = [
        ActualIssue(
            code=err.code or _issue_code("ERROR", err.field),
            severity="error",
            message=err.message,
            field=err.field,
        )
        for err in result.errors
    ]

    for warn in result.warnings:
        severity: IssueSeverity = "info" if warn.severity == "info" else "warning"
        issues.append(
            ActualIssue(
                code=warn.code or _issue_code("WARN", warn.field),
                severity=severity,
                message=warn.message,
                field=warn.field,
            )
        )

    return issues


def load_engine(reference: str) -> CalculationEngine:
    """Import an engine callable from a ``package.module:attribute`` reference."""
    module_name, sep, attr_path = reference.partition(":")
    if not sep or not module_name or not attr_path:
        msg = f"Engine reference must look like 'package.module:function', got '{reference}'"
        raise InvalidConfiguration(msg)

    try:
        target: object = importlib.import_module(module_name)
    except ImportError as e:
        msg = f"Cannot import engine module '{module_name}': {e}"
        raise InvalidConfiguration(msg) from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            msg = f"Engine '{reference}' not found"
            raise InvalidConfiguration(msg) from e

    if not callable(target):
        msg = f"Engine '{reference}' is not callable"
        raise InvalidConfiguration(msg)

    return cast("CalculationEngine", target)
