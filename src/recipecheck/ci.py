# Copyright (c) Syntropy Systems
"""CI blocking policy.

- Reference recipes never block
- Only locked golden recipes can block
- Only blocking tiers (default: smoke) block
- always_block/never_block slug lists override the tier rule
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from recipecheck.models.ci import (
    DEFAULT_CI_CONFIG,
    CIBlocker,
    CIBlockingConfig,
    CIBlockingResult,
    CICheckReport,
    CIOutcome,
)

if TYPE_CHECKING:
    from recipecheck.models.recipe import Recipe, RecipeTier
    from recipecheck.models.run import RecipeRunResult

RecipeResultPair = tuple["Recipe", "RecipeRunResult"]


def _failure_detail(result: RecipeRunResult) -> str:
    if result.max_drift_field is not None and result.max_drift_rel is not None:
        return f": {result.max_drift_field} drifted {result.max_drift_rel * 100:.2f}%"
    if result.failure_reason is not None:
        return f": {result.failure_reason}"
    return ""


def should_block_ci(
    recipe: Recipe,
    result: RecipeRunResult,
    config: CIBlockingConfig = DEFAULT_CI_CONFIG,
) -> CIBlockingResult:
    """Decide whether one recipe run blocks CI.

    Rules are checked in order and the first match decides. A skipped run
    (``passed is None``) never blocks.
    """
    if recipe.recipe_type == "reference":
        return CIBlockingResult(block=False, reason="reference_recipe")

    if recipe.recipe_status != "locked":
        return CIBlockingResult(block=False, reason="not_locked")

    # never_block wins over always_block
    if recipe.slug and recipe.slug in config.never_block:
        return CIBlockingResult(block=False, reason="in_neverBlock_list")

    if recipe.slug and recipe.slug in config.always_block:
        if result.passed is False:
            return CIBlockingResult(
                block=True,
                reason=f"always_block_recipe_failed: {recipe.slug}",
            )
        return CIBlockingResult(block=False, reason="always_block_passed")

    if recipe.recipe_tier not in config.blocking_tiers:
        return CIBlockingResult(block=False, reason=f"tier_{recipe.recipe_tier}_non_blocking")

    if result.passed is False:
        return CIBlockingResult(
            block=True,
            reason=f"{recipe.recipe_tier}_tier_failed{_failure_detail(result)}",
        )

    return CIBlockingResult(block=False, reason="passed")


def check_ci_blocking(
    results: Iterable[RecipeResultPair],
    config: CIBlockingConfig = DEFAULT_CI_CONFIG,
) -> CICheckReport:
    """Aggregate blocking decisions over a batch of runs."""
    pairs = list(results)
    blockers: list[CIBlocker] = []

    for recipe, result in pairs:
        check = should_block_ci(recipe, result, config)
        if check.block:
            blockers.append(CIBlocker(recipe=recipe, result=result, reason=check.reason))

    if blockers:
        lines = [f"CI BLOCKED: {len(blockers)} recipe(s) failed"]
        lines.extend(f"  - {b.recipe.name}: {b.reason}" for b in blockers)
        summary = "\n".join(lines)
    else:
        summary = f"CI OK: {len(pairs)} recipe(s) checked, all passed"

    return CICheckReport(
        should_block=bool(blockers),
        checked=len(pairs),
        blockers=blockers,
        summary=summary,
    )


def get_ci_exit_code(
    results: Iterable[RecipeResultPair],
    config: CIBlockingConfig = DEFAULT_CI_CONFIG,
) -> int:
    """0 when nothing blocks, 1 otherwise."""
    return 1 if check_ci_blocking(results, config).should_block else 0


def evaluate_ci(
    results: Iterable[RecipeResultPair],
    config: CIBlockingConfig = DEFAULT_CI_CONFIG,
) -> CIOutcome:
    """Exit code plus structured and human-readable summaries."""
    report = check_ci_blocking(results, config)
    return CIOutcome(
        exit_code=1 if report.should_block else 0,
        report=report,
        summary=report.summary,
    )


def filter_recipes_for_ci(
    recipes: Iterable[Recipe],
    tiers: Sequence[RecipeTier] = ("smoke",),
) -> list[Recipe]:
    """Keep locked golden recipes in the given tiers."""
    return [
        r
        for r in recipes
        if r.recipe_type == "golden" and r.recipe_status == "locked" and r.recipe_tier in tiers
    ]
