# Copyright (c) Syntropy Systems
"""recipecheck drift command."""
from __future__ import annotations

from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from recipecheck.cli.common import build_runner, console, fail, format_drift, open_project
from recipecheck.db import get_connection, list_recipes, record_runs
from recipecheck.drift import collect_drift_entries, effective_drift_mode, filter_recipes_for_drift, summarize_runs
from recipecheck.hashing import MISSING
from recipecheck.models.recipe import COMPARISON_MODES, Recipe
from recipecheck.models.run import RecipeRunResult
from recipecheck.runner import format_run_result


def _value(value: object) -> str:
    return "<missing>" if value is MISSING else escape(str(value))


def drift(
    mode: str = typer.Option(
        "expected",
        "--mode", "-m",
        help=f"Comparison mode ({', '.join(COMPARISON_MODES)})",
    ),
    top: int = typer.Option(
        10,
        "--top",
        min=1,
        help="Show top N drift fields",
    ),
    baseline_version: Optional[str] = typer.Option(
        None,
        "--baseline-version",
        help="Engine version to compare against in baseline mode",
    ),
    engine: Optional[str] = typer.Option(
        None,
        "--engine",
        help="Engine as 'package.module:function' (overrides config)",
    ),
) -> None:
    """Run reference recipes and report the fields that drifted most.

    Informational only: always exits 0 once recipes have run.
    """
    if mode not in COMPARISON_MODES:
        raise fail(f"Invalid mode: {mode}")

    db_path, config = open_project()
    runner = build_runner(
        config,
        db_path,
        comparison_mode=mode,
        run_context="regression_sweep",
        engine_ref=engine,
    )

    conn = get_connection(db_path)
    try:
        recipes = filter_recipes_for_drift(list_recipes(conn))

        console.print("[bold]Recipe Drift Analyzer[/bold]")
        console.print(f"  [dim]mode:[/dim] {mode}")

        if not recipes:
            console.print("No reference recipes found.")
            console.print("[dim]Create reference recipes to track drift.[/dim]")
            return

        skipped = 0
        runnable: list[Recipe] = []
        modes: list[str] = []
        for recipe in recipes:
            effective = effective_drift_mode(recipe, mode)  # type: ignore[arg-type]
            if effective is None:
                console.print(f"[yellow]SKIP[/yellow] {recipe.name} (no expected_outputs)")
                skipped += 1
                continue
            runnable.append(recipe)
            modes.append(effective)

        results = runner.run_recipes(runnable, modes=modes, baseline_model_version=baseline_version)
        record_runs(conn, results)
        pairs: list[tuple[Recipe, RecipeRunResult]] = list(zip(runnable, results))
    finally:
        conn.close()

    for recipe, result in pairs:
        console.print(format_run_result(result, recipe), markup=False, highlight=False)
        console.print()

    summary = summarize_runs((result for _, result in pairs), skipped=skipped)
    console.print("[bold]Summary[/bold]")
    console.print(f"  Passed:  {summary.passed}")
    console.print(f"  Failed:  {summary.failed}")
    console.print(f"  Skipped: {summary.skipped}")
    console.print(f"  Total:   {summary.total}")

    entries = collect_drift_entries(pairs)
    if not entries:
        console.print("\nNo drift detected.")
        return

    table = Table(show_header=True, header_style="bold", title="Top drift fields")
    table.add_column("#", style="dim")
    table.add_column("Field")
    table.add_column("Recipe")
    table.add_column("Drift")
    table.add_column("Expected")
    table.add_column("Actual")

    for i, entry in enumerate(entries[:top], start=1):
        table.add_row(
            str(i),
            entry.field,
            entry.recipe.name,
            format_drift(entry.drift_rel),
            _value(entry.expected),
            _value(entry.actual),
        )

    console.print()
    console.print(table)
    if len(entries) > top:
        console.print(f"[dim]... and {len(entries) - top} more fields with drift[/dim]")
