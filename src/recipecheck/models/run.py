# Copyright (c) Syntropy Systems
"""Pydantic models for recipe run results."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field

from .base import FrozenModel, JSONValue
from .comparison import FieldComparison, IssueDiff
from .recipe import ActualIssue, ComparisonMode, Recipe, RunContext

FailureReason = Literal["calculation_error", "engine_timeout"]


class VersionInfo(FrozenModel):
    """Identity of the engine build that produced a run."""

    # None means "use the version pinned on the recipe"
    model_version_id: Optional[str] = None
    model_build_id: Optional[str] = None
    model_snapshot_hash: Optional[str] = None


class RunRecipeOptions(FrozenModel):
    """Options for running a single recipe."""

    recipe: Recipe
    comparison_mode: ComparisonMode = "expected"
    run_context: RunContext = "manual"
    target_model_version: Optional[str] = None
    baseline_run_id: Optional[str] = None
    baseline_model_version: Optional[str] = None
    ci_run_id: Optional[str] = None


class RecipeRunResult(FrozenModel):
    """Outcome of one recipe execution. Never mutated after creation."""

    id: str
    recipe_id: str
    run_at: str

    model_version_id: str
    model_build_id: Optional[str] = None
    model_snapshot_hash: Optional[str] = None
    inputs_hash: str

    actual_outputs: dict[str, JSONValue] = Field(default_factory=dict)
    outputs_hash: str
    actual_issues: Optional[list[ActualIssue]] = None

    comparison_mode: ComparisonMode
    baseline_recipe_run_id: Optional[str] = None
    baseline_model_version_id: Optional[str] = None

    # None means the comparison was skipped
    passed: Optional[bool] = None
    output_diff: Optional[list[FieldComparison]] = None
    issue_diff: Optional[IssueDiff] = None
    max_drift_rel: Optional[float] = None
    max_drift_field: Optional[str] = None

    failure_reason: Optional[FailureReason] = None
    error_message: Optional[str] = None

    run_context: RunContext
    ci_run_id: Optional[str] = None
    duration_ms: int = 0

    @property
    def skipped(self) -> bool:
        return self.passed is None

    @property
    def status(self) -> str:
        """PASS, FAIL or SKIP."""
        if self.passed is None:
            return "SKIP"
        return "PASS" if self.passed else "FAIL"

    def to_json(self) -> str:
        """Serialize, preserving missing-vs-null in field comparisons."""
        return self.model_dump_json(by_alias=True, exclude_unset=True)
