# Copyright (c) Syntropy Systems
"""recipecheck init command."""

from pathlib import Path

import typer
from rich.console import Console

from recipecheck.config import CONFIG_FILE_NAME, DB_FILE_NAME, DEFAULT_CONFIG_YAML, PROJECT_DIR_NAME
from recipecheck.db import init_db

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new recipecheck project.

    Creates a .recipecheck directory with configuration and database.
    """
    target = path.resolve()
    project_dir = target / PROJECT_DIR_NAME

    if project_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {project_dir}")
        return

    project_dir.mkdir(parents=True)

    config_path = project_dir / CONFIG_FILE_NAME
    config_path.write_text(DEFAULT_CONFIG_YAML)

    db_path = project_dir / DB_FILE_NAME
    init_db(db_path)

    console.print(f"[green]Initialized recipecheck project:[/green] {project_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]database:[/dim] {db_path}")
