# Copyright (c) Syntropy Systems
"""recipecheck hash command."""
from __future__ import annotations

import json
from pathlib import Path

import typer
import yaml

from recipecheck.canonicalize import canonicalize_recipe_inputs
from recipecheck.cli.common import console, fail
from recipecheck.hashing import hash_canonical


def hash_inputs(
    file: Path = typer.Argument(
        ...,
        help="Inputs file (YAML or JSON mapping)",
        exists=True,
        dir_okay=False,
    ),
    show_removed: bool = typer.Option(
        False,
        "--removed",
        help="List keys dropped during canonicalization",
    ),
    show_canonical: bool = typer.Option(
        False,
        "--canonical",
        help="Print the canonical inputs",
    ),
) -> None:
    """Print the canonical input hash for an inputs file."""
    try:
        with file.open() as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise fail(f"Cannot parse {file}: {e}") from e

    if not isinstance(loaded, dict):
        raise fail(f"{file} must contain a mapping of inputs")

    # Accept a full recipe record as well as bare inputs
    raw = loaded.get("inputs", loaded)
    if not isinstance(raw, dict):
        raise fail("inputs must be a mapping")

    result = canonicalize_recipe_inputs(raw)
    console.print(hash_canonical(result.canonical_inputs), highlight=False)

    if show_removed:
        for removed in result.removed_keys:
            console.print(f"  [dim]removed[/dim] {removed.key}: {removed.reason}")
    if show_canonical:
        console.print_json(json.dumps(result.canonical_inputs))
