# Copyright (c) Syntropy Systems
"""Drift analysis over reference recipe runs."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from recipecheck.hashing import MISSING
from recipecheck.models.comparison import FieldType

if TYPE_CHECKING:
    from recipecheck.ci import RecipeResultPair
    from recipecheck.models.recipe import ComparisonMode, Recipe
    from recipecheck.models.run import RecipeRunResult


@dataclass(frozen=True)
class DriftEntry:
    """One numeric field that moved away from its target."""

    recipe: Recipe
    field: str
    drift_rel: float
    expected: object
    actual: object


@dataclass(frozen=True)
class RunSummary:
    passed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped


def filter_recipes_for_drift(recipes: Iterable[Recipe]) -> list[Recipe]:
    """Reference recipes that are active or draft."""
    return [
        r
        for r in recipes
        if r.recipe_type == "reference" and r.recipe_status in ("active", "draft")
    ]


def effective_drift_mode(recipe: Recipe, mode: ComparisonMode) -> Optional[ComparisonMode]:
    """Mode to run a recipe in, or None when it has nothing to compare against.

    ``legacy`` falls back to ``expected`` for recipes without legacy outputs.
    """
    if mode == "legacy" and recipe.legacy_outputs is None:
        mode = "expected"
    if mode == "expected" and recipe.expected_outputs is None:
        return None
    return mode


def collect_drift_entries(results: Iterable[RecipeResultPair]) -> list[DriftEntry]:
    """Numeric comparisons with non-zero drift, largest first."""
    entries: list[DriftEntry] = []
    for recipe, result in results:
        if not result.output_diff:
            continue
        for comp in result.output_diff:
            if comp.field_type is not FieldType.NUMERIC:
                continue
            if comp.delta_rel is None or comp.delta_rel <= 0:
                continue
            entries.append(
                DriftEntry(
                    recipe=recipe,
                    field=comp.field,
                    drift_rel=comp.delta_rel,
                    expected=comp.expected if comp.has_expected else MISSING,
                    actual=comp.actual if comp.has_actual else MISSING,
                )
            )

    # Stable sort keeps run order among equal drifts
    entries.sort(key=lambda e: e.drift_rel, reverse=True)
    return entries


def summarize_runs(results: Iterable[RecipeRunResult], skipped: int = 0) -> RunSummary:
    """Count passed, failed and skipped runs.

    ``skipped`` adds recipes that were never run.
    """
    passed = failed = 0
    for result in results:
        if result.passed is None:
            skipped += 1
        elif result.passed:
            passed += 1
        else:
            failed += 1
    return RunSummary(passed=passed, failed=failed, skipped=skipped)
