# Copyright (c) Syntropy Systems
"""Tests for the recipe runner."""

import json
import threading
import time

import fake_engine
import pytest
from conftest import make_recipe

from recipecheck.errors import InvalidConfiguration
from recipecheck.hashing import hash_canonical
from recipecheck.models.comparison import FieldComparisonReason
from recipecheck.models.recipe import Recipe
from recipecheck.models.run import RecipeRunResult, RunRecipeOptions, VersionInfo
from recipecheck.runner import (
    BaselineTarget,
    RecipeRunner,
    format_run_result,
    run_recipe,
    run_recipes,
)


class TestRunnerConstruction:
    """Tests for configuration validation at construction time."""

    def test_unknown_mode(self) -> None:
        """Test an unknown comparison mode fails fast."""
        with pytest.raises(InvalidConfiguration, match="comparison mode"):
            RecipeRunner(fake_engine.compute, comparison_mode="sideways")

    def test_unknown_context(self) -> None:
        """Test an unknown run context fails fast."""
        with pytest.raises(InvalidConfiguration, match="run context"):
            RecipeRunner(fake_engine.compute, run_context="nightly")

    def test_bad_tolerance_table(self) -> None:
        """Test a malformed default tolerance fails fast."""
        with pytest.raises(InvalidConfiguration):
            RecipeRunner(fake_engine.compute, tolerance_table=[("_in", {"abs": -1})])

    @pytest.mark.parametrize("kwargs", [{"max_workers": 0}, {"engine_timeout": 0}])
    def test_bad_limits(self, kwargs: dict) -> None:
        """Test worker count and timeout must be positive."""
        with pytest.raises(InvalidConfiguration):
            RecipeRunner(fake_engine.compute, **kwargs)

    def test_engine_must_be_callable(self) -> None:
        """Test a non-callable engine is rejected."""
        with pytest.raises(InvalidConfiguration):
            RecipeRunner(42)  # type: ignore[arg-type]


class TestRunRecipe:
    """Tests for single recipe runs."""

    def test_passing_run(self, recipe: Recipe) -> None:
        """Test a recipe whose outputs match passes."""
        result = RecipeRunner(fake_engine.compute).run_recipe(recipe)

        assert result.passed is True
        assert result.status == "PASS"
        assert result.recipe_id == recipe.id
        assert result.actual_outputs == {"area_in": 2880.0, "belt_speed_fpm": 200.0, "is_wide": False}
        assert result.inputs_hash == hash_canonical(recipe.inputs)
        assert result.outputs_hash == hash_canonical(result.actual_outputs)
        assert result.failure_reason is None
        assert result.duration_ms >= 0

    def test_inputs_are_normalized_before_engine(self) -> None:
        """Test the engine sees canonical, aliased inputs."""
        seen: list[dict] = []

        def engine(inputs):
            seen.append(inputs)
            return fake_engine.compute(inputs)

        recipe = make_recipe(
            inputs={"conveyor_width_in": 24, "conveyor_length_in": 120, "send_to_estimating": True}
        )
        result = RecipeRunner(engine).run_recipe(recipe)

        assert seen == [{"conveyor_width_in": 24, "conveyor_length_in": 120, "belt_width_in": 24}]
        assert result.passed is True

    def test_failing_run_reports_drift(self) -> None:
        """Test drift beyond tolerance fails with the drifting field."""
        result = RecipeRunner(fake_engine.compute_drifted).run_recipe(make_recipe())

        assert result.passed is False
        assert result.max_drift_field == "area_in"
        assert result.max_drift_rel == pytest.approx(0.01)
        failures = [c for c in result.output_diff if not c.passed]
        assert [c.reason for c in failures] == [FieldComparisonReason.EXCEEDED_ABS]

    def test_explicit_policy_is_strict(self) -> None:
        """Test numeric outputs without explicit tolerance fail."""
        recipe = make_recipe(tolerances={"area_in": {"abs": 0.01}})

        result = RecipeRunner(fake_engine.compute).run_recipe(recipe)

        by_field = {c.field: c for c in result.output_diff}
        assert by_field["belt_speed_fpm"].reason is FieldComparisonReason.MISSING_TOLERANCE_IN_STRICT_MODE
        assert result.passed is False

    def test_default_fallback_policy(self) -> None:
        """Test default_fallback merges defaults under explicit tolerances."""
        recipe = make_recipe(tolerances=None, tolerance_policy="default_fallback")

        result = RecipeRunner(fake_engine.compute).run_recipe(recipe)

        assert result.passed is True
        by_field = {c.field: c for c in result.output_diff}
        assert by_field["area_in"].tolerance_used.abs == 0.001

    def test_legacy_mode(self) -> None:
        """Test legacy mode compares against legacy outputs."""
        recipe = make_recipe(legacy_outputs={"area_in": 2800})

        result = RecipeRunner(fake_engine.compute).run_recipe(recipe, "legacy")

        assert result.comparison_mode == "legacy"
        assert result.passed is False

    def test_missing_target_skips(self) -> None:
        """Test a recipe without expected outputs is skipped, not passed."""
        result = RecipeRunner(fake_engine.compute).run_recipe(make_recipe(expected_outputs=None))

        assert result.passed is None
        assert result.status == "SKIP"
        assert result.output_diff is None

    @pytest.mark.parametrize("mode", ["baseline", "previous"])
    def test_unresolvable_modes_skip(self, recipe: Recipe, mode: str) -> None:
        """Test baseline/previous without a resolver skip."""
        result = RecipeRunner(fake_engine.compute).run_recipe(recipe, mode)

        assert result.passed is None
        assert result.comparison_mode == mode

    def test_resolver_supplies_baseline(self, recipe: Recipe) -> None:
        """Test a resolver's outputs become the comparison target."""
        calls = []

        def resolver(recipe, mode, run_id, version):
            calls.append((mode, run_id, version))
            return BaselineTarget(
                outputs={"area_in": 2880.0, "belt_speed_fpm": 200.0, "is_wide": False},
                run_id="run-0",
                model_version_id="v0",
            )

        runner = RecipeRunner(fake_engine.compute, baseline_resolver=resolver)
        result = runner.run_recipe(recipe, "baseline", baseline_model_version="v0")

        assert calls == [("baseline", None, "v0")]
        assert result.passed is True
        assert result.baseline_recipe_run_id == "run-0"
        assert result.baseline_model_version_id == "v0"

    def test_missing_expected_issue_fails(self) -> None:
        """Test a missing required issue fails an otherwise passing run."""
        recipe = make_recipe(expected_issues=[{"code": "WIDE_BELT", "severity": "warning"}])

        result = RecipeRunner(fake_engine.compute).run_recipe(recipe)

        assert result.issue_diff is not None
        assert [i.code for i in result.issue_diff.missing] == ["WIDE_BELT"]
        assert result.passed is False

    def test_engine_issues_recorded(self) -> None:
        """Test engine warnings and errors become actual issues."""
        recipe = make_recipe(
            inputs={"belt_width_in": 60, "conveyor_length_in": 0},
            expected_outputs={"is_wide": True},
            tolerances={},
            expected_issues=[{"code": "WIDE_BELT"}, {"code": "ERROR_CONVEYOR_LENGTH_IN", "severity": "error"}],
        )

        result = RecipeRunner(fake_engine.compute).run_recipe(recipe)

        codes = [(i.code, i.severity) for i in result.actual_issues]
        assert codes == [("ERROR_CONVEYOR_LENGTH_IN", "error"), ("WIDE_BELT", "warning")]
        assert result.issue_diff.passed

    def test_version_resolution(self, recipe: Recipe) -> None:
        """Test target version beats configured version beats the recipe's."""
        assert RecipeRunner(fake_engine.compute).run_recipe(recipe).model_version_id == "v1"

        runner = RecipeRunner(fake_engine.compute, version=VersionInfo(model_version_id="v2", model_build_id="b7"))
        result = runner.run_recipe(recipe)
        assert result.model_version_id == "v2"
        assert result.model_build_id == "b7"

        assert runner.run_recipe(recipe, target_model_version="v3").model_version_id == "v3"


class TestEngineFailures:
    """Tests for engine exceptions and timeouts."""

    def test_exception_captured(self, recipe: Recipe) -> None:
        """Test an engine exception becomes a failed result."""
        result = RecipeRunner(fake_engine.explode).run_recipe(recipe)

        assert result.passed is False
        assert result.failure_reason == "calculation_error"
        assert "engine exploded" in result.error_message
        assert result.actual_outputs == {}

    def test_malformed_result_captured(self, recipe: Recipe) -> None:
        """Test an engine returning garbage is a calculation error."""
        result = RecipeRunner(lambda inputs: ["not", "a", "result"]).run_recipe(recipe)

        assert result.failure_reason == "calculation_error"

    def test_timeout(self, recipe: Recipe) -> None:
        """Test a slow engine fails with engine_timeout."""
        start = time.perf_counter()
        result = RecipeRunner(fake_engine.slow, engine_timeout=0.05).run_recipe(recipe)

        assert time.perf_counter() - start < 1.5
        assert result.passed is False
        assert result.failure_reason == "engine_timeout"

    def test_fast_engine_within_timeout(self, recipe: Recipe) -> None:
        """Test a timeout does not affect engines that return in time."""
        result = RecipeRunner(fake_engine.compute, engine_timeout=5).run_recipe(recipe)

        assert result.passed is True

    def test_exception_with_timeout(self, recipe: Recipe) -> None:
        """Test exceptions are still captured when a deadline is set."""
        result = RecipeRunner(fake_engine.explode, engine_timeout=5).run_recipe(recipe)

        assert result.failure_reason == "calculation_error"


class TestRunRecipes:
    """Tests for batch runs."""

    def test_failure_isolated(self) -> None:
        """Test one exploding recipe does not affect the others."""
        recipes = [
            make_recipe(id="r1"),
            make_recipe(id="r2", inputs={"belt_width_in": 24, "conveyor_length_in": 120, "explode": True}),
            make_recipe(id="r3"),
        ]

        results = RecipeRunner(fake_engine.explode_on_flag, max_workers=3).run_recipes(recipes)

        assert [r.recipe_id for r in results] == ["r1", "r2", "r3"]
        assert [r.passed for r in results] == [True, False, True]
        assert results[1].failure_reason == "calculation_error"

    def test_non_finite_output_isolated(self) -> None:
        """Test an infinite output under a round tolerance fails only its recipe."""
        def engine(inputs):
            return {"outputs": {"area_in": float("inf") if inputs["overflow"] else 2880.0}}

        recipes = [
            make_recipe(
                id=f"r{i}",
                inputs={"overflow": overflow},
                expected_outputs={"area_in": 2880},
                tolerances={"area_in": {"round": 2, "abs": 0.01}},
            )
            for i, overflow in enumerate([False, True, False])
        ]

        results = RecipeRunner(engine, max_workers=1).run_recipes(recipes)

        assert [r.recipe_id for r in results] == ["r0", "r1", "r2"]
        assert [r.passed for r in results] == [True, False, True]
        assert results[1].output_diff[0].reason.value == "exceeded_abs"

    def test_order_preserved_under_concurrency(self) -> None:
        """Test results follow input order even when later recipes finish first."""
        def engine(inputs):
            time.sleep(inputs["delay"])
            return {"outputs": {"delay": inputs["delay"]}}

        delays = [0.2, 0.0, 0.1, 0.05]
        recipes = [
            make_recipe(id=f"r{i}", inputs={"delay": d}, expected_outputs={"delay": d}, tolerances={"delay": {}})
            for i, d in enumerate(delays)
        ]

        results = RecipeRunner(engine, max_workers=4).run_recipes(recipes)

        assert [r.recipe_id for r in results] == ["r0", "r1", "r2", "r3"]
        assert all(r.passed for r in results)

    def test_runs_concurrently(self) -> None:
        """Test recipes run on several worker threads."""
        threads = set()
        barrier = threading.Barrier(3, timeout=5)

        def engine(inputs):
            threads.add(threading.current_thread().name)
            barrier.wait()
            return {"outputs": {}}

        recipes = [make_recipe(id=f"r{i}", expected_outputs={}) for i in range(3)]

        results = RecipeRunner(engine, max_workers=3).run_recipes(recipes)

        assert len(threads) == 3
        assert all(r.passed for r in results)

    def test_per_recipe_modes(self) -> None:
        """Test modes can differ per recipe."""
        recipes = [make_recipe(id="r1"), make_recipe(id="r2", legacy_outputs={"area_in": 2880})]

        results = RecipeRunner(fake_engine.compute).run_recipes(recipes, modes=["expected", "legacy"])

        assert [r.comparison_mode for r in results] == ["expected", "legacy"]

    def test_mode_count_must_match(self) -> None:
        """Test a modes list of the wrong length is rejected."""
        with pytest.raises(InvalidConfiguration):
            RecipeRunner(fake_engine.compute).run_recipes([make_recipe()], modes=[])

    def test_empty_batch(self) -> None:
        """Test an empty batch returns no results."""
        assert RecipeRunner(fake_engine.compute).run_recipes([]) == []

    def test_functional_wrappers(self, recipe: Recipe) -> None:
        """Test run_recipe and run_recipes module functions."""
        single = run_recipe(RunRecipeOptions(recipe=recipe, run_context="ci", ci_run_id="build-9"), fake_engine.compute)
        batch = run_recipes([recipe], "expected", "scheduled", fake_engine.compute)

        assert single.run_context == "ci"
        assert single.ci_run_id == "build-9"
        assert batch[0].run_context == "scheduled"


class TestFormatRunResult:
    """Tests for text rendering of results."""

    def test_pass(self, recipe: Recipe) -> None:
        """Test a passing run renders a PASS header."""
        result = RecipeRunner(fake_engine.compute).run_recipe(recipe)

        text = format_run_result(result, recipe)

        assert text.startswith("PASS Standard belt (smoke)")
        assert "Duration:" in text

    def test_fail_lists_fields(self) -> None:
        """Test failing fields are listed with drift."""
        recipe = make_recipe()
        result = RecipeRunner(fake_engine.compute_drifted).run_recipe(recipe)

        text = format_run_result(result, recipe)

        assert text.startswith("FAIL")
        assert "area_in: expected 2880, got 2908.8 (1.00%)" in text
        assert "reason: exceeded_abs" in text

    def test_calculation_error(self, recipe: Recipe) -> None:
        """Test engine failures show their reason."""
        result = RecipeRunner(fake_engine.explode).run_recipe(recipe)

        assert "calculation_error: RuntimeError: engine exploded" in format_run_result(result, recipe)


class TestResultSerialization:
    """Tests for result JSON."""

    def test_missing_vs_null_preserved(self) -> None:
        """Test missing operands are omitted while nulls are written."""
        recipe = make_recipe(expected_outputs={"gone": 1, "nothing": None}, tolerances={"gone": {}})
        result = RecipeRunner(lambda inputs: {"outputs": {"nothing": None}}).run_recipe(recipe)

        data = json.loads(result.to_json())
        by_field = {c["field"]: c for c in data["output_diff"]}

        assert "actual" not in by_field["gone"]
        assert by_field["nothing"]["actual"] is None
        assert by_field["gone"]["fieldType"] == "numeric"

    def test_infinite_drift_round_trips(self) -> None:
        """Test an infinite relative drift survives serialization."""
        recipe = make_recipe(expected_outputs={"x": 0}, tolerances={"x": {"rel": 0.1}})
        result = RecipeRunner(lambda inputs: {"outputs": {"x": 1}}).run_recipe(recipe)

        restored = RecipeRunResult.model_validate_json(result.to_json())

        assert restored.max_drift_rel == float("inf")
        assert restored.output_diff[0].delta_rel == float("inf")
