# Copyright (c) Syntropy Systems
"""Pydantic models for recipes and their expected results."""

from __future__ import annotations

import json
from typing import ClassVar, Literal, Optional, cast

from pydantic import ConfigDict, Field, TypeAdapter, field_validator

from .base import FrozenModel, JSONValue, RecipeBaseModel

RecipeType = Literal["golden", "reference"]
RecipeTier = Literal["smoke", "regression", "edge", "longtail"]
RecipeStatus = Literal["draft", "active", "locked", "deprecated"]
RecipeRole = Literal["reference", "regression", "golden", "deprecated"]
RecipeSource = Literal["manual", "excel_import", "quote", "customer_rfq"]
TolerancePolicy = Literal["explicit", "default_fallback"]
ComparisonMode = Literal["expected", "baseline", "legacy", "previous"]
RunContext = Literal["ci", "manual", "scheduled", "regression_sweep"]
IssueSeverity = Literal["error", "warning", "info"]

RECIPE_ROLES: tuple[RecipeRole, ...] = ("reference", "regression", "golden", "deprecated")
RECIPE_TIERS: tuple[RecipeTier, ...] = ("smoke", "regression", "edge", "longtail")
COMPARISON_MODES: tuple[ComparisonMode, ...] = ("expected", "baseline", "legacy", "previous")
RUN_CONTEXTS: tuple[RunContext, ...] = ("ci", "manual", "scheduled", "regression_sweep")

_LIST_STR_ADAPTER = TypeAdapter(list[str])


def derive_role_from_legacy(recipe_type: RecipeType, recipe_status: RecipeStatus) -> RecipeRole:
    """Derive a role from the legacy recipe_type + recipe_status pair."""
    if recipe_type == "golden":
        return "golden"
    if recipe_status == "deprecated":
        return "deprecated"
    if recipe_status == "active":
        return "regression"
    return "reference"


class ToleranceSpec(FrozenModel):
    """Tolerance for a numeric output field.

    - abs: |actual - expected| <= abs
    - rel: |actual - expected| / |expected| <= rel (decimal, not %)
    - round: round both values to N decimals before comparing
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="forbid",
        frozen=True,
    )

    abs: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    rel: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)
    round: Optional[int] = Field(default=None, ge=0, le=15)

    def as_dict(self) -> dict[str, float]:
        """Return only the populated keys."""
        return cast("dict[str, float]", self.model_dump(exclude_none=True))

    def __str__(self) -> str:
        parts = [f"{k}={v}" for k, v in self.as_dict().items()]
        return "{" + ", ".join(parts) + "}"


class ExpectedIssue(RecipeBaseModel):
    """Issue a recipe expects the engine to report."""

    code: str
    severity: IssueSeverity = "warning"
    required: bool = True


class ActualIssue(RecipeBaseModel):
    """Issue reported by the engine during a run."""

    code: str
    severity: IssueSeverity
    message: str
    field: Optional[str] = None


def _parse_json_column(value: object) -> object:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class Recipe(FrozenModel):
    """A saved calculation input set used as a regression fixture.

    The payload (inputs, expected outputs/issues, tolerances) never changes
    once the recipe is locked. Metadata changes go through
    ``recipecheck.lifecycle``, which returns new instances.
    """

    id: str

    # Identity
    recipe_type: RecipeType = "reference"
    recipe_tier: RecipeTier = "regression"
    name: str
    slug: Optional[str] = None

    # Unified lifecycle role; None for legacy records
    role: Optional[RecipeRole] = None

    # Model binding
    model_key: str = "default"
    model_version_id: str = "unversioned"
    model_build_id: Optional[str] = None
    model_snapshot_hash: Optional[str] = None

    # Payload
    inputs: dict[str, JSONValue] = Field(default_factory=dict)
    inputs_hash: str = ""
    expected_outputs: Optional[dict[str, JSONValue]] = None
    expected_issues: Optional[list[ExpectedIssue]] = None
    tolerances: Optional[dict[str, ToleranceSpec]] = None
    tolerance_policy: TolerancePolicy = "explicit"
    legacy_outputs: Optional[dict[str, JSONValue]] = None

    # Lifecycle
    recipe_status: RecipeStatus = "draft"
    locked_at: Optional[str] = None
    locked_by: Optional[str] = None
    lock_reason: Optional[str] = None

    # Metadata
    source: Optional[RecipeSource] = None
    source_ref: Optional[str] = None
    tags: Optional[list[str]] = None
    notes: Optional[str] = None
    belt_catalog_version: Optional[str] = None

    # Audit
    created_at: Optional[str] = None
    created_by: Optional[str] = None
    updated_at: Optional[str] = None
    updated_by: Optional[str] = None

    @field_validator(
        "inputs",
        "expected_outputs",
        "expected_issues",
        "tolerances",
        "legacy_outputs",
        mode="before",
    )
    @classmethod
    def _parse_json(cls, value: object) -> object:
        return _parse_json_column(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _parse_tags(cls, value: object) -> Optional[list[str]]:
        if value is None:
            return None
        if isinstance(value, str):
            return _LIST_STR_ADAPTER.validate_json(value)
        return cast("list[str]", value)

    @property
    def effective_role(self) -> RecipeRole:
        """Role column if set, otherwise derived from the legacy fields."""
        if self.role is not None:
            return self.role
        return derive_role_from_legacy(self.recipe_type, self.recipe_status)

    @property
    def is_locked(self) -> bool:
        return self.recipe_status == "locked"

    @property
    def label(self) -> str:
        """Short display label: slug if present, else name."""
        return self.slug or self.name


class RecipeUpdate(RecipeBaseModel):
    """Metadata update for a recipe.

    Inputs and expected outputs are immutable; duplicate to create a variant.
    """

    name: Optional[str] = None
    notes: Optional[str] = None
    role: Optional[RecipeRole] = None
    tags: Optional[list[str]] = None
    role_change_reason: Optional[str] = None
    updated_by: Optional[str] = None
