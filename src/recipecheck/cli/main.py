# Copyright (c) Syntropy Systems
"""Main CLI entry point for recipecheck."""

import logging

import typer
from rich.logging import RichHandler

from recipecheck.cli.add import add
from recipecheck.cli.drift_cmd import drift
from recipecheck.cli.hash_cmd import hash_inputs
from recipecheck.cli.init_cmd import init
from recipecheck.cli.lifecycle_cmds import delete, duplicate, lock, role
from recipecheck.cli.recipes import list_cmd, show
from recipecheck.cli.runs import runs
from recipecheck.cli.test_cmd import test

app = typer.Typer(
    name="recipecheck",
    help=(
        "Golden-output regression testing for calculation recipes. "
        "Re-run saved inputs, compare with tolerances, gate CI."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show debug logging",
    ),
) -> None:
    """Configure logging for every command."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
            force=True,
        )


# Register commands
_ = app.command()(init)
_ = app.command()(add)
_ = app.command(name="list")(list_cmd)
_ = app.command()(show)
_ = app.command(name="hash")(hash_inputs)
_ = app.command()(test)
_ = app.command()(drift)
_ = app.command()(runs)
_ = app.command()(lock)
_ = app.command()(role)
_ = app.command()(duplicate)
_ = app.command()(delete)


if __name__ == "__main__":
    app()
