# Copyright (c) Syntropy Systems
"""Helpers shared by recipecheck commands."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from recipecheck.config import RecipeCheckConfig, get_db_path, load_config, require_project_dir
from recipecheck.db import StoreBaselineResolver
from recipecheck.engine import load_engine
from recipecheck.errors import RecipeCheckError
from recipecheck.models.run import VersionInfo
from recipecheck.runner import RecipeRunner

console = Console()


def fail(message: object) -> typer.Exit:
    """Print an error line and return the exit to raise."""
    console.print(f"[red]Error:[/red] {message}")
    return typer.Exit(1)


def open_project() -> tuple[Path, RecipeCheckConfig]:
    """Locate the project and load its configuration, exiting on failure."""
    try:
        project_dir = require_project_dir()
        config = load_config(project_dir)
    except (RuntimeError, RecipeCheckError) as e:
        raise fail(e) from e
    return get_db_path(project_dir), config


def build_runner(
    config: RecipeCheckConfig,
    db_path: Path,
    *,
    comparison_mode: str,
    run_context: str,
    engine_ref: Optional[str] = None,
) -> RecipeRunner:
    """Construct a runner from project config, exiting on bad configuration."""
    reference = engine_ref or config.engine
    if not reference:
        msg = "No engine configured. Set 'engine' in .recipecheck/config.yaml or pass --engine."
        raise fail(msg)

    try:
        engine = load_engine(reference)
        return RecipeRunner(
            engine,
            comparison_mode=comparison_mode,
            run_context=run_context,
            version=VersionInfo(
                model_version_id=config.model_version_id,
                model_build_id=config.model_build_id,
                model_snapshot_hash=config.model_snapshot_hash,
            ),
            max_workers=config.max_workers,
            engine_timeout=config.engine_timeout,
            baseline_resolver=StoreBaselineResolver(db_path),
        )
    except RecipeCheckError as e:
        raise fail(e) from e


def status_markup(status: str) -> str:
    style = {"PASS": "green", "FAIL": "red", "SKIP": "yellow"}.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def format_drift(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return f"{value * 100:.4f}%"
