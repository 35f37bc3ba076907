# Copyright (c) Syntropy Systems
"""recipecheck lock, role, duplicate and delete commands."""
from __future__ import annotations

import uuid
from typing import Optional

import typer

from recipecheck.cli.common import console, fail, open_project
from recipecheck.db import (
    create_recipe,
    delete_recipe,
    find_recipe,
    get_connection,
    lock_recipe_record,
    update_recipe,
)
from recipecheck.errors import RecipeCheckError
from recipecheck.lifecycle import apply_recipe_update, duplicate_recipe, ensure_deletable, lock_recipe
from recipecheck.models.recipe import RECIPE_ROLES, RecipeUpdate


def lock(
    recipe_ref: str = typer.Argument(..., help="Recipe ID, ID prefix, or slug"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Why the recipe is locked"),
    locked_by: Optional[str] = typer.Option(None, "--by", help="Who is locking it"),
) -> None:
    """Lock a golden recipe so its payload can no longer change."""
    db_path, _ = open_project()
    conn = get_connection(db_path)

    try:
        recipe = find_recipe(conn, recipe_ref)
        locked = lock_recipe_record(conn, lock_recipe(recipe, locked_by, reason))
    except RecipeCheckError as e:
        raise fail(e) from e
    finally:
        conn.close()

    console.print(f"[green]Locked[/green] {locked.label}")


def role(
    recipe_ref: str = typer.Argument(..., help="Recipe ID, ID prefix, or slug"),
    new_role: str = typer.Argument(..., help=f"New role ({', '.join(RECIPE_ROLES)})"),
    reason: Optional[str] = typer.Option(
        None,
        "--reason",
        help="Appended to the recipe notes; required when promoting to golden",
    ),
    updated_by: Optional[str] = typer.Option(None, "--by", help="Recorded as updated_by"),
) -> None:
    """Change a recipe's role."""
    if new_role not in RECIPE_ROLES:
        raise fail(f"Invalid role '{new_role}'. Must be one of: {', '.join(RECIPE_ROLES)}")

    db_path, _ = open_project()
    conn = get_connection(db_path)

    try:
        recipe = find_recipe(conn, recipe_ref)
        previous = recipe.effective_role
        update = RecipeUpdate(role=new_role, role_change_reason=reason, updated_by=updated_by)
        updated = update_recipe(conn, apply_recipe_update(recipe, update))
    except RecipeCheckError as e:
        raise fail(e) from e
    finally:
        conn.close()

    console.print(f"[green]{updated.label}:[/green] {previous} -> {updated.effective_role}")


def duplicate(
    recipe_ref: str = typer.Argument(..., help="Recipe ID, ID prefix, or slug"),
) -> None:
    """Copy a recipe into a new, unlocked reference recipe."""
    db_path, _ = open_project()
    conn = get_connection(db_path)

    try:
        recipe = find_recipe(conn, recipe_ref)
        copy = create_recipe(conn, duplicate_recipe(recipe, uuid.uuid4().hex))
    except RecipeCheckError as e:
        raise fail(e) from e
    finally:
        conn.close()

    console.print(f"[green]Created[/green] {copy.name} [dim]({copy.id[:8]}, {copy.effective_role})[/dim]")


def delete(
    recipe_ref: str = typer.Argument(..., help="Recipe ID, ID prefix, or slug"),
    force: bool = typer.Option(False, "--force", "-f", help="Delete even golden recipes"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a recipe and its runs."""
    db_path, _ = open_project()
    conn = get_connection(db_path)

    try:
        recipe = find_recipe(conn, recipe_ref)
        ensure_deletable(recipe, force=force)

        if not yes and not typer.confirm(f"Delete recipe '{recipe.label}' and its runs?"):
            console.print("[dim]Aborted[/dim]")
            return

        delete_recipe(conn, recipe.id)
    except RecipeCheckError as e:
        raise fail(e) from e
    finally:
        conn.close()

    console.print(f"[green]Deleted[/green] {recipe.label}")
