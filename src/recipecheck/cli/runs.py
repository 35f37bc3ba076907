# Copyright (c) Syntropy Systems
"""recipecheck runs command."""
from __future__ import annotations

from typing import Optional

import typer
from rich.markup import escape
from rich.table import Table

from recipecheck.cli.common import console, fail, format_drift, open_project, status_markup
from recipecheck.db import find_recipe, get_connection, get_recipe_runs, get_run
from recipecheck.errors import RecipeCheckError
from recipecheck.models.run import RecipeRunResult


def _show_run(run: RecipeRunResult) -> None:
    """Display a single run with its field comparisons."""
    console.print(f"\n[bold]Run {run.id}[/bold] {status_markup(run.status)}")
    console.print(f"  [dim]recipe:[/dim] {run.recipe_id}")
    console.print(f"  [dim]when:[/dim] {run.run_at}")
    console.print(f"  [dim]mode:[/dim] {run.comparison_mode} ({run.run_context})")
    console.print(f"  [dim]model:[/dim] {run.model_version_id}")
    console.print(f"  [dim]inputs_hash:[/dim] {run.inputs_hash}")
    console.print(f"  [dim]outputs_hash:[/dim] {run.outputs_hash}")
    if run.baseline_recipe_run_id:
        console.print(f"  [dim]baseline run:[/dim] {run.baseline_recipe_run_id}")
    if run.ci_run_id:
        console.print(f"  [dim]ci run:[/dim] {run.ci_run_id}")
    if run.failure_reason:
        console.print(f"  [dim]failure:[/dim] {run.failure_reason}: {run.error_message}")
    console.print(f"  [dim]duration:[/dim] {run.duration_ms}ms")

    if not run.output_diff:
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Field")
    table.add_column("Expected")
    table.add_column("Actual")
    table.add_column("Drift")
    table.add_column("Result")

    for comp in run.output_diff:
        table.add_row(
            comp.field,
            escape(str(comp.expected)) if comp.has_expected else "[dim]<missing>[/dim]",
            escape(str(comp.actual)) if comp.has_actual else "[dim]<missing>[/dim]",
            format_drift(comp.delta_rel),
            "[green]ok[/green]" if comp.passed else f"[red]{comp.reason.value if comp.reason else 'fail'}[/red]",
        )

    console.print(table)


def runs(
    recipe_ref: Optional[str] = typer.Option(
        None,
        "--recipe", "-r",
        help="Only runs of this recipe (ID, ID prefix, or slug)",
    ),
    run_id: Optional[str] = typer.Option(
        None,
        "--id",
        help="Show one run in detail",
    ),
    last: int = typer.Option(
        20,
        "--last", "-n",
        help="Number of runs to show",
    ),
) -> None:
    """List recorded recipe runs."""
    db_path, _ = open_project()
    conn = get_connection(db_path)

    try:
        if run_id is not None:
            run = get_run(conn, run_id)
            if run is None:
                raise fail(f"Run {run_id} not found")
            _show_run(run)
            return

        recipe_id = find_recipe(conn, recipe_ref).id if recipe_ref else None
        run_list = get_recipe_runs(conn, recipe_id, limit=last)
    except RecipeCheckError as e:
        raise fail(e) from e
    finally:
        conn.close()

    if not run_list:
        console.print("[dim]No runs found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Recipe", style="dim")
    table.add_column("When")
    table.add_column("Mode")
    table.add_column("Context")
    table.add_column("Result")
    table.add_column("Max drift")
    table.add_column("Duration")

    for run in run_list:
        table.add_row(
            run.id[:8],
            run.recipe_id[:8],
            run.run_at,
            run.comparison_mode,
            run.run_context,
            status_markup(run.status),
            format_drift(run.max_drift_rel),
            f"{run.duration_ms}ms",
        )

    console.print(table)
