# Copyright (c) Syntropy Systems
"""Tests for the CI blocking policy."""

from typing import Any, Optional

import pytest
from conftest import make_recipe

from recipecheck.ci import (
    check_ci_blocking,
    evaluate_ci,
    filter_recipes_for_ci,
    get_ci_exit_code,
    should_block_ci,
)
from recipecheck.models.ci import CIBlockingConfig
from recipecheck.models.recipe import Recipe
from recipecheck.models.run import RecipeRunResult


def make_result(passed: Optional[bool], **overrides: Any) -> RecipeRunResult:
    data: dict[str, Any] = {
        "id": "run-1",
        "recipe_id": "recipe-1",
        "run_at": "2026-01-01T00:00:00.000000Z",
        "model_version_id": "v1",
        "inputs_hash": "abc",
        "outputs_hash": "def",
        "comparison_mode": "expected",
        "run_context": "ci",
        "passed": passed,
    }
    data.update(overrides)
    return RecipeRunResult.model_validate(data)


def locked(**overrides: Any) -> Recipe:
    return make_recipe(recipe_status="locked", **overrides)


class TestShouldBlockCI:
    """Tests for the per-recipe blocking rules, in order."""

    def test_reference_never_blocks(self) -> None:
        """Test reference recipes never block, even when locked and failing."""
        check = should_block_ci(locked(recipe_type="reference"), make_result(False))

        assert not check.block
        assert check.reason == "reference_recipe"

    def test_unlocked_never_blocks(self) -> None:
        """Test an active golden recipe does not block."""
        check = should_block_ci(make_recipe(), make_result(False))

        assert not check.block
        assert check.reason == "not_locked"

    def test_never_block_list(self) -> None:
        """Test never_block overrides everything after the lock check."""
        config = CIBlockingConfig(never_block=["standard-belt"], always_block=["standard-belt"])

        check = should_block_ci(locked(), make_result(False), config)

        assert not check.block
        assert check.reason == "in_neverBlock_list"

    def test_always_block_list_fails(self) -> None:
        """Test always_block blocks even in a non-blocking tier."""
        config = CIBlockingConfig(always_block=["standard-belt"])

        check = should_block_ci(locked(recipe_tier="longtail"), make_result(False), config)

        assert check.block
        assert check.reason == "always_block_recipe_failed: standard-belt"

    def test_always_block_list_passes(self) -> None:
        """Test a passing always_block recipe does not block."""
        config = CIBlockingConfig(always_block=["standard-belt"])

        check = should_block_ci(locked(), make_result(True), config)

        assert not check.block
        assert check.reason == "always_block_passed"

    def test_non_blocking_tier(self) -> None:
        """Test failures outside blocking tiers are reported, not blocking."""
        check = should_block_ci(locked(recipe_tier="edge"), make_result(False))

        assert not check.block
        assert check.reason == "tier_edge_non_blocking"

    def test_blocking_tier_failure_with_drift(self) -> None:
        """Test a failing smoke recipe blocks and names the drifting field."""
        result = make_result(False, max_drift_field="area_in", max_drift_rel=0.0123)

        check = should_block_ci(locked(), result)

        assert check.block
        assert check.reason == "smoke_tier_failed: area_in drifted 1.23%"

    def test_blocking_tier_failure_reason(self) -> None:
        """Test engine failures are named when there is no drift."""
        result = make_result(False, failure_reason="engine_timeout")

        check = should_block_ci(locked(), result)

        assert check.reason == "smoke_tier_failed: engine_timeout"

    def test_passed(self) -> None:
        """Test a passing smoke recipe does not block."""
        check = should_block_ci(locked(), make_result(True))

        assert not check.block
        assert check.reason == "passed"

    def test_skipped_never_blocks(self) -> None:
        """Test a skipped comparison does not block."""
        assert not should_block_ci(locked(), make_result(None)).block

    def test_custom_blocking_tiers(self) -> None:
        """Test blocking tiers come from the config."""
        config = CIBlockingConfig.model_validate({"blockingTiers": ["smoke", "regression"]})

        check = should_block_ci(locked(recipe_tier="regression"), make_result(False), config)

        assert check.block
        assert check.reason.startswith("regression_tier_failed")

    def test_recipe_without_slug_ignores_lists(self) -> None:
        """Test slug lists cannot match a recipe with no slug."""
        config = CIBlockingConfig(never_block=["standard-belt"])

        check = should_block_ci(locked(slug=None), make_result(False), config)

        assert check.block


class TestCheckCIBlocking:
    """Tests for batch aggregation."""

    def test_all_passed(self) -> None:
        """Test a clean batch reports OK."""
        pairs = [(locked(), make_result(True)), (make_recipe(recipe_type="reference"), make_result(False))]

        report = check_ci_blocking(pairs)

        assert not report.should_block
        assert report.checked == 2
        assert report.summary == "CI OK: 2 recipe(s) checked, all passed"

    def test_blocked_summary(self) -> None:
        """Test blockers are listed in the summary."""
        pairs = [
            (locked(id="a", name="Belt A"), make_result(False, failure_reason="calculation_error")),
            (locked(id="b", name="Belt B"), make_result(True)),
        ]

        report = check_ci_blocking(pairs)

        assert report.should_block
        assert [b.recipe.id for b in report.blockers] == ["a"]
        assert report.summary == (
            "CI BLOCKED: 1 recipe(s) failed\n  - Belt A: smoke_tier_failed: calculation_error"
        )

    def test_empty_batch(self) -> None:
        """Test an empty batch does not block."""
        report = check_ci_blocking([])

        assert not report.should_block
        assert report.checked == 0

    @pytest.mark.parametrize(("passed", "code"), [(True, 0), (False, 1), (None, 0)])
    def test_exit_code(self, passed: Optional[bool], code: int) -> None:
        """Test exit code is 1 exactly when something blocks."""
        assert get_ci_exit_code([(locked(), make_result(passed))]) == code

    def test_evaluate_ci(self) -> None:
        """Test evaluate_ci bundles exit code, report and summary."""
        outcome = evaluate_ci([(locked(), make_result(False))])

        assert outcome.exit_code == 1
        assert outcome.report.should_block
        assert outcome.summary.startswith("CI BLOCKED")


class TestFilterRecipesForCI:
    """Tests for filter_recipes_for_ci."""

    def test_filters_locked_golden_in_tiers(self) -> None:
        """Test only locked golden recipes in the requested tiers remain."""
        recipes = [
            locked(id="keep"),
            make_recipe(id="active"),
            locked(id="reference", recipe_type="reference"),
            locked(id="edge", recipe_tier="edge"),
        ]

        assert [r.id for r in filter_recipes_for_ci(recipes)] == ["keep"]
        assert [r.id for r in filter_recipes_for_ci(recipes, ("smoke", "edge"))] == ["keep", "edge"]
