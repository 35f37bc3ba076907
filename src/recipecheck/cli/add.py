# Copyright (c) Syntropy Systems
"""recipecheck add command."""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, cast

import typer
import yaml

from recipecheck.cli.common import console, fail, open_project
from recipecheck.db import create_recipe, get_connection
from recipecheck.errors import RecipeCheckError
from recipecheck.lifecycle import build_recipe
from recipecheck.models.recipe import Recipe


def _read_records(path: Path) -> list[dict[str, object]]:
    """Read one recipe mapping, or a list of them, from YAML or JSON."""
    try:
        with path.open() as f:
            loaded = yaml.safe_load(f)
    except OSError as e:
        raise fail(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise fail(f"Cannot parse {path}: {e}") from e

    records = loaded if isinstance(loaded, list) else [loaded]
    if not records or not all(isinstance(r, dict) for r in records):
        raise fail(f"{path} must contain a recipe mapping or a list of mappings")
    return cast("list[dict[str, object]]", records)


def add(
    file: Path = typer.Argument(
        ...,
        help="Recipe file (YAML or JSON); may hold a list of recipes",
        exists=True,
        dir_okay=False,
    ),
    created_by: Optional[str] = typer.Option(
        None,
        "--by",
        help="Recorded as created_by",
    ),
) -> None:
    """Add recipes from a file.

    Inputs are canonicalized and hashed before they are stored.
    """
    db_path, _ = open_project()
    records = _read_records(file)

    recipes: list[Recipe] = []
    for record in records:
        if created_by:
            record.setdefault("created_by", created_by)
        try:
            recipes.append(build_recipe(record))
        except RecipeCheckError as e:
            raise fail(e) from e

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        stored = [create_recipe(conn, recipe) for recipe in recipes]
        conn.execute("COMMIT")
    except sqlite3.IntegrityError as e:
        conn.execute("ROLLBACK")
        raise fail(f"Cannot add recipe: {e}") from e
    finally:
        conn.close()

    for recipe in stored:
        console.print(
            f"[green]Added[/green] {recipe.name} "
            f"[dim]({recipe.id[:8]}, {recipe.effective_role}, {recipe.recipe_tier})[/dim]"
        )
