# Copyright (c) Syntropy Systems
"""Recipe runner: normalize, hash, compute, compare.

Comparison modes:
- expected: compare against recipe.expected_outputs
- legacy: compare against recipe.legacy_outputs
- baseline: compare against a run from another engine version
- previous: compare against the last recorded run for this recipe

``baseline`` and ``previous`` need a resolver that can load another run.
Without one the comparison is skipped (``passed is None``), never passed.
"""
from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Event, Thread
from typing import TYPE_CHECKING, Optional

from typing_extensions import TypeAlias

from recipecheck.canonicalize import DEFAULT_RULES, CanonicalizationRules, normalize_inputs
from recipecheck.compare import (
    DEFAULT_TOLERANCES,
    FALLBACK_TOLERANCE,
    coerce_tolerance,
    coerce_tolerances,
    compare_issues,
    compare_outputs,
    default_tolerances_for_all_fields,
)
from recipecheck.engine import CalculationEngine, coerce_engine_result, to_actual_issues
from recipecheck.errors import EngineTimeoutError, InvalidConfiguration
from recipecheck.hashing import hash_canonical
from recipecheck.models.recipe import COMPARISON_MODES, RUN_CONTEXTS, ComparisonMode, Recipe
from recipecheck.models.run import RecipeRunResult, RunRecipeOptions, VersionInfo

if TYPE_CHECKING:
    from recipecheck.compare import ToleranceLike, ToleranceTable
    from recipecheck.engine import EngineResult
    from recipecheck.models.base import JSONValue
    from recipecheck.models.comparison import FieldComparison, IssueDiff
    from recipecheck.models.recipe import RunContext, ToleranceSpec
    from recipecheck.models.run import FailureReason

logger = logging.getLogger(__name__)

MAX_LISTED_FAILURES = 5


@dataclass(frozen=True)
class BaselineTarget:
    """Outputs of another run to compare against."""

    outputs: dict[str, JSONValue]
    run_id: Optional[str] = None
    model_version_id: Optional[str] = None


# (recipe, mode, baseline_run_id, baseline_model_version) -> target or None
BaselineResolver: TypeAlias = Callable[
    [Recipe, ComparisonMode, Optional[str], Optional[str]],
    Optional[BaselineTarget],
]


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def default_max_workers() -> int:
    """Worker count used when none is configured."""
    return min(32, (os.cpu_count() or 1) + 4)


def _validate_mode(mode: str) -> ComparisonMode:
    if mode not in COMPARISON_MODES:
        msg = f"Unknown comparison mode '{mode}' (expected one of: {', '.join(COMPARISON_MODES)})"
        raise InvalidConfiguration(msg)
    return mode  # type: ignore[return-value]


def _validate_context(context: str) -> RunContext:
    if context not in RUN_CONTEXTS:
        msg = f"Unknown run context '{context}' (expected one of: {', '.join(RUN_CONTEXTS)})"
        raise InvalidConfiguration(msg)
    return context  # type: ignore[return-value]


class RecipeRunner:
    """Runs recipes against a calculation engine and compares the results.

    All configuration is validated here so a bad tolerance table or mode
    fails before any recipe runs.
    """

    engine: CalculationEngine
    comparison_mode: ComparisonMode
    run_context: RunContext
    version: VersionInfo
    rules: CanonicalizationRules
    tolerance_table: ToleranceTable
    fallback_tolerance: ToleranceSpec
    max_workers: int
    engine_timeout: float | None
    baseline_resolver: BaselineResolver | None

    def __init__(
        self,
        engine: CalculationEngine,
        *,
        comparison_mode: str = "expected",
        run_context: str = "manual",
        version: VersionInfo | None = None,
        rules: CanonicalizationRules = DEFAULT_RULES,
        tolerance_table: Sequence[tuple[str, ToleranceLike]] = DEFAULT_TOLERANCES,
        fallback_tolerance: ToleranceLike = FALLBACK_TOLERANCE,
        max_workers: int | None = None,
        engine_timeout: float | None = None,
        baseline_resolver: BaselineResolver | None = None,
    ) -> None:
        """Initialize a recipe runner.

        Args:
            engine: Callable computing outputs from normalized inputs
            comparison_mode: Default comparison mode for runs
            run_context: Recorded on every run (ci, manual, ...)
            version: Engine build identity recorded on every run
            rules: Input canonicalization tables
            tolerance_table: Ordered (suffix, tolerance) defaults
            fallback_tolerance: Tolerance when no suffix matches
            max_workers: Concurrent recipe runs in run_recipes
            engine_timeout: Seconds to wait for one engine call
            baseline_resolver: Loads outputs for baseline/previous modes

        """
        if not callable(engine):
            msg = "Engine must be callable"
            raise InvalidConfiguration(msg)
        if max_workers is not None and max_workers < 1:
            msg = f"max_workers must be >= 1, got {max_workers}"
            raise InvalidConfiguration(msg)
        if engine_timeout is not None and engine_timeout <= 0:
            msg = f"engine_timeout must be > 0 seconds, got {engine_timeout}"
            raise InvalidConfiguration(msg)

        self.engine = engine
        self.comparison_mode = _validate_mode(comparison_mode)
        self.run_context = _validate_context(run_context)
        self.version = version or VersionInfo()
        self.rules = rules
        self.tolerance_table = tuple(
            (suffix, coerce_tolerance(suffix, tol)) for suffix, tol in tolerance_table
        )
        self.fallback_tolerance = coerce_tolerance("fallback", fallback_tolerance)
        self.max_workers = max_workers or default_max_workers()
        self.engine_timeout = engine_timeout
        self.baseline_resolver = baseline_resolver

    # --- Engine ---

    def _call_engine(self, inputs: dict[str, JSONValue]) -> EngineResult:
        if self.engine_timeout is None:
            return coerce_engine_result(self.engine(inputs))

        outcome: dict[str, object] = {}
        done = Event()

        def target() -> None:
            try:
                outcome["result"] = self.engine(inputs)
            except Exception as exc:  # noqa: BLE001
                outcome["error"] = exc
            finally:
                done.set()

        # Daemon thread: a hung engine must not keep the process alive
        Thread(target=target, daemon=True, name="recipecheck-engine").start()
        if not done.wait(timeout=self.engine_timeout):
            msg = f"Engine did not return within {self.engine_timeout}s"
            raise EngineTimeoutError(msg)

        error = outcome.get("error")
        if isinstance(error, Exception):
            raise error
        return coerce_engine_result(outcome.get("result"))

    # --- Comparison target ---

    def _resolve_target(
        self,
        recipe: Recipe,
        mode: ComparisonMode,
        baseline_run_id: str | None,
        baseline_model_version: str | None,
    ) -> tuple[Mapping[str, JSONValue] | None, str | None, str | None]:
        """Return (target outputs, baseline run id, baseline model version)."""
        if mode == "expected":
            return recipe.expected_outputs, None, None
        if mode == "legacy":
            return recipe.legacy_outputs, None, None

        run_id = baseline_run_id if mode == "previous" else None
        version = baseline_model_version if mode == "baseline" else None
        if self.baseline_resolver is None:
            return None, run_id, version

        target = self.baseline_resolver(recipe, mode, baseline_run_id, baseline_model_version)
        if target is None:
            return None, run_id, version
        return (
            target.outputs,
            target.run_id or run_id,
            target.model_version_id or version if mode == "baseline" else None,
        )

    def _effective_tolerances(
        self,
        recipe: Recipe,
        actual_outputs: Mapping[str, JSONValue],
    ) -> tuple[dict[str, ToleranceSpec], bool]:
        """Tolerances to compare with, and whether strict mode applies."""
        explicit = coerce_tolerances(recipe.tolerances)
        if recipe.tolerance_policy == "explicit":
            return explicit, True
        defaults = default_tolerances_for_all_fields(
            actual_outputs,
            self.tolerance_table,
            self.fallback_tolerance,
        )
        return {**defaults, **explicit}, False

    # --- Runs ---

    def run_recipe(
        self,
        recipe: Recipe,
        comparison_mode: str | None = None,
        *,
        target_model_version: str | None = None,
        baseline_run_id: str | None = None,
        baseline_model_version: str | None = None,
        ci_run_id: str | None = None,
    ) -> RecipeRunResult:
        """Run one recipe and compare its outputs.

        Engine exceptions and timeouts are captured in the result
        (``passed=False`` with a failure_reason); they are never raised.
        """
        mode = _validate_mode(comparison_mode or self.comparison_mode)
        start = time.perf_counter()

        normalized = normalize_inputs(recipe.inputs, self.rules)
        record: dict[str, object] = {
            "id": uuid.uuid4().hex,
            "recipe_id": recipe.id,
            "run_at": utcnow(),
            "model_version_id": (
                target_model_version
                or self.version.model_version_id
                or recipe.model_version_id
            ),
            "model_build_id": self.version.model_build_id,
            "model_snapshot_hash": self.version.model_snapshot_hash,
            "inputs_hash": hash_canonical(normalized),
            "comparison_mode": mode,
            "run_context": self.run_context,
            "ci_run_id": ci_run_id,
        }

        try:
            engine_result = self._call_engine(normalized)
        except EngineTimeoutError as e:
            logger.warning("Recipe %s timed out: %s", recipe.label, e)
            return self._failed_run(record, "engine_timeout", str(e), start)
        except Exception as e:
            logger.exception("Engine failed for recipe %s", recipe.label)
            return self._failed_run(record, "calculation_error", f"{type(e).__name__}: {e}", start)

        actual_outputs: dict[str, JSONValue] = engine_result.outputs or {}
        actual_issues = to_actual_issues(engine_result)

        target, baseline_recipe_run_id, baseline_model_version_id = self._resolve_target(
            recipe, mode, baseline_run_id, baseline_model_version
        )

        passed: bool | None = None
        output_diff: list[FieldComparison] | None = None
        issue_diff: IssueDiff | None = None
        max_drift_rel: float | None = None
        max_drift_field: str | None = None

        if target is None:
            logger.debug("No %s target for recipe %s; comparison skipped", mode, recipe.label)
        else:
            tolerances, strict_mode = self._effective_tolerances(recipe, actual_outputs)
            comparison = compare_outputs(
                target,
                actual_outputs,
                tolerances,
                strict_mode,
                tolerance_table=self.tolerance_table,
                fallback=self.fallback_tolerance,
            )
            output_diff = comparison.comparisons
            max_drift_rel = comparison.max_drift_rel
            max_drift_field = comparison.max_drift_field
            passed = comparison.passed

            if recipe.expected_issues:
                issue_diff = compare_issues(recipe.expected_issues, actual_issues)
                passed = passed and issue_diff.passed

        return RecipeRunResult.model_validate(
            {
                **record,
                "actual_outputs": actual_outputs,
                "outputs_hash": hash_canonical(actual_outputs),
                "actual_issues": actual_issues or None,
                "baseline_recipe_run_id": baseline_recipe_run_id,
                "baseline_model_version_id": baseline_model_version_id,
                "passed": passed,
                "output_diff": output_diff,
                "issue_diff": issue_diff,
                "max_drift_rel": max_drift_rel,
                "max_drift_field": max_drift_field,
                "duration_ms": _elapsed_ms(start),
            }
        )

    def _failed_run(
        self,
        record: dict[str, object],
        reason: FailureReason,
        message: str,
        start: float,
    ) -> RecipeRunResult:
        return RecipeRunResult.model_validate(
            {
                **record,
                "actual_outputs": {},
                "outputs_hash": hash_canonical({}),
                "passed": False,
                "failure_reason": reason,
                "error_message": message,
                "duration_ms": _elapsed_ms(start),
            }
        )

    def run_recipes(
        self,
        recipes: Iterable[Recipe],
        comparison_mode: str | None = None,
        *,
        modes: Sequence[str] | None = None,
        baseline_model_version: str | None = None,
        ci_run_id: str | None = None,
    ) -> list[RecipeRunResult]:
        """Run recipes concurrently; results come back in input order.

        A failing engine call only affects its own recipe's result.
        ``modes`` overrides the comparison mode per recipe.
        """
        batch = list(recipes)
        if modes is None:
            batch_modes = [_validate_mode(comparison_mode or self.comparison_mode)] * len(batch)
        else:
            batch_modes = [_validate_mode(m) for m in modes]
            if len(batch_modes) != len(batch):
                msg = f"Got {len(batch_modes)} modes for {len(batch)} recipes"
                raise InvalidConfiguration(msg)
        if not batch:
            return []

        workers = min(self.max_workers, len(batch))
        logger.debug("Running %d recipe(s) with %d worker(s)", len(batch), workers)

        def run_one(recipe: Recipe, mode: ComparisonMode) -> RecipeRunResult:
            return self.run_recipe(
                recipe,
                mode,
                baseline_model_version=baseline_model_version,
                ci_run_id=ci_run_id,
            )

        if workers == 1:
            return [run_one(recipe, mode) for recipe, mode in zip(batch, batch_modes)]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recipecheck") as pool:
            return list(pool.map(run_one, batch, batch_modes))


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


def run_recipe(
    options: RunRecipeOptions,
    engine: CalculationEngine,
    **runner_kwargs: object,
) -> RecipeRunResult:
    """Run a single recipe described by ``options``."""
    runner = RecipeRunner(
        engine,
        comparison_mode=options.comparison_mode,
        run_context=options.run_context,
        **runner_kwargs,  # type: ignore[arg-type]
    )
    return runner.run_recipe(
        options.recipe,
        target_model_version=options.target_model_version,
        baseline_run_id=options.baseline_run_id,
        baseline_model_version=options.baseline_model_version,
        ci_run_id=options.ci_run_id,
    )


def run_recipes(
    recipes: Iterable[Recipe],
    comparison_mode: str,
    run_context: str,
    engine: CalculationEngine,
    **runner_kwargs: object,
) -> list[RecipeRunResult]:
    """Run a batch of recipes with one comparison mode and context."""
    runner = RecipeRunner(
        engine,
        comparison_mode=comparison_mode,
        run_context=run_context,
        **runner_kwargs,  # type: ignore[arg-type]
    )
    return runner.run_recipes(recipes)


def format_run_result(result: RecipeRunResult, recipe: Recipe) -> str:
    """Render a run result as plain text."""
    lines = [f"{result.status} {recipe.name} ({recipe.recipe_tier})"]

    if result.failure_reason is not None:
        lines.append(f"  {result.failure_reason}: {result.error_message}")

    if result.passed is False and result.output_diff:
        failures = [d for d in result.output_diff if not d.passed]
        for f in failures[:MAX_LISTED_FAILURES]:
            drift = f" ({f.delta_rel * 100:.2f}%)" if f.delta_rel is not None else ""
            expected = f.expected if f.has_expected else "<missing>"
            actual = f.actual if f.has_actual else "<missing>"
            lines.append(f"  - {f.field}: expected {expected}, got {actual}{drift}")
            if f.reason is not None:
                lines.append(f"    reason: {f.reason.value}")
        if len(failures) > MAX_LISTED_FAILURES:
            lines.append(f"  ... and {len(failures) - MAX_LISTED_FAILURES} more failures")

    if result.issue_diff is not None and not result.issue_diff.passed:
        if result.issue_diff.missing:
            codes = ", ".join(i.code for i in result.issue_diff.missing)
            lines.append(f"  Missing issues: {codes}")
        if result.issue_diff.unexpected:
            codes = ", ".join(i.code for i in result.issue_diff.unexpected)
            lines.append(f"  Unexpected errors: {codes}")

    lines.append(f"  Duration: {result.duration_ms}ms")
    return "\n".join(lines)
