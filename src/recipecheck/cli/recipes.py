# Copyright (c) Syntropy Systems
"""recipecheck list and show commands."""
from __future__ import annotations

import json
from typing import Optional

import typer
from rich.table import Table

from recipecheck.cli.common import console, fail, format_drift, open_project, status_markup
from recipecheck.db import find_recipe, get_connection, get_recipe_runs, list_recipes
from recipecheck.errors import RecipeCheckError
from recipecheck.models.recipe import Recipe

ROLE_STYLES = {
    "golden": "yellow",
    "regression": "blue",
    "reference": "white",
    "deprecated": "dim",
}


def list_cmd(
    role: Optional[str] = typer.Option(
        None,
        "--role", "-r",
        help="Filter by role (reference, regression, golden, deprecated)",
    ),
    tier: Optional[str] = typer.Option(
        None,
        "--tier", "-t",
        help="Filter by tier (smoke, regression, edge, longtail)",
    ),
    status: Optional[str] = typer.Option(
        None,
        "--status", "-s",
        help="Filter by status (draft, active, locked, deprecated)",
    ),
    tag: Optional[str] = typer.Option(
        None,
        "--tag",
        help="Filter by tag",
    ),
) -> None:
    """List recipes."""
    db_path, _ = open_project()
    conn = get_connection(db_path)

    try:
        recipes = list_recipes(conn, tier=tier, status=status, role=role, tag=tag)
    finally:
        conn.close()

    if not recipes:
        console.print("[dim]No recipes found[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Role")
    table.add_column("Tier")
    table.add_column("Status")
    table.add_column("Model version")

    for recipe in recipes:
        role_name = recipe.effective_role
        style = ROLE_STYLES.get(role_name, "white")
        table.add_row(
            recipe.id[:8],
            recipe.label,
            f"[{style}]{role_name}[/{style}]",
            recipe.recipe_tier,
            recipe.recipe_status,
            recipe.model_version_id,
        )

    console.print(table)


def _print_json_block(title: str, value: object) -> None:
    console.print(f"\n[bold]{title}:[/bold]")
    console.print_json(json.dumps(value))


def _show_recipe(recipe: Recipe) -> None:
    console.print(f"\n[bold]{recipe.name}[/bold]")
    console.print(f"  [dim]id:[/dim] {recipe.id}")
    if recipe.slug:
        console.print(f"  [dim]slug:[/dim] {recipe.slug}")
    console.print(f"  [dim]role:[/dim] {recipe.effective_role}")
    console.print(f"  [dim]tier:[/dim] {recipe.recipe_tier}")
    console.print(f"  [dim]status:[/dim] {recipe.recipe_status}")
    console.print(f"  [dim]model:[/dim] {recipe.model_key} @ {recipe.model_version_id}")
    console.print(f"  [dim]inputs_hash:[/dim] {recipe.inputs_hash}")
    console.print(f"  [dim]tolerance_policy:[/dim] {recipe.tolerance_policy}")

    if recipe.tags:
        console.print(f"  [dim]tags:[/dim] {', '.join(recipe.tags)}")
    if recipe.locked_at:
        by = f" by {recipe.locked_by}" if recipe.locked_by else ""
        console.print(f"  [dim]locked:[/dim] {recipe.locked_at}{by}")
        if recipe.lock_reason:
            console.print(f"  [dim]lock_reason:[/dim] {recipe.lock_reason}")
    if recipe.notes:
        console.print(f"  [dim]notes:[/dim] {recipe.notes}")

    _print_json_block("Inputs", recipe.inputs)
    if recipe.expected_outputs is not None:
        _print_json_block("Expected outputs", recipe.expected_outputs)
    if recipe.tolerances:
        _print_json_block(
            "Tolerances",
            {field: tol.as_dict() for field, tol in recipe.tolerances.items()},
        )
    if recipe.expected_issues:
        _print_json_block("Expected issues", [i.model_dump() for i in recipe.expected_issues])


def show(
    recipe_ref: str = typer.Argument(
        ...,
        help="Recipe ID, ID prefix, or slug",
    ),
    last: int = typer.Option(
        5,
        "--last", "-n",
        help="Number of recent runs to show",
    ),
) -> None:
    """Show a recipe and its recent runs."""
    db_path, _ = open_project()
    conn = get_connection(db_path)

    try:
        recipe = find_recipe(conn, recipe_ref)
        runs = get_recipe_runs(conn, recipe.id, limit=last)
    except RecipeCheckError as e:
        raise fail(e) from e
    finally:
        conn.close()

    _show_recipe(recipe)

    if not runs:
        console.print("\n[dim]No runs recorded[/dim]")
        return

    table = Table(show_header=True, header_style="bold", title="Recent runs")
    table.add_column("Run", style="dim")
    table.add_column("When")
    table.add_column("Mode")
    table.add_column("Result")
    table.add_column("Max drift")

    for run in runs:
        table.add_row(
            run.id[:8],
            run.run_at,
            run.comparison_mode,
            status_markup(run.status),
            format_drift(run.max_drift_rel),
        )

    console.print()
    console.print(table)
