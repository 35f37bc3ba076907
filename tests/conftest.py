# Copyright (c) Syntropy Systems
"""Pytest fixtures for recipecheck tests."""

import os
import sqlite3
import tempfile
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from recipecheck.models.recipe import Recipe

# Store original cwd at module load time
_original_cwd = Path.cwd()

PROJECT_CONFIG = """\
engine: fake_engine:compute
model_version_id: v2
max_workers: 2
ci:
  blocking_tiers: [smoke]
"""


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def recipe_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary recipecheck project using the fake engine."""
    from recipecheck.db import init_db

    project_dir = temp_dir / ".recipecheck"
    project_dir.mkdir()
    (project_dir / "config.yaml").write_text(PROJECT_CONFIG)

    # Initialize database
    db_path = project_dir / "recipecheck.db"
    init_db(db_path)

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def db_path(recipe_project: Path) -> Path:
    return recipe_project / ".recipecheck" / "recipecheck.db"


@pytest.fixture
def db_connection(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """Get a database connection for the test project."""
    from recipecheck.db import get_connection

    conn = get_connection(db_path)
    yield conn
    conn.close()


def make_recipe(**overrides: Any) -> Recipe:
    """Build a recipe whose expected outputs match fake_engine.compute."""
    data: dict[str, Any] = {
        "id": "recipe-1",
        "name": "Standard belt",
        "slug": "standard-belt",
        "recipe_type": "golden",
        "recipe_tier": "smoke",
        "recipe_status": "active",
        "model_version_id": "v1",
        "inputs": {"belt_width_in": 24, "conveyor_length_in": 120},
        "inputs_hash": "",
        "expected_outputs": {"area_in": 2880, "belt_speed_fpm": 200, "is_wide": False},
        "tolerances": {"area_in": {"abs": 0.01}, "belt_speed_fpm": {"rel": 0.001}},
        "tolerance_policy": "explicit",
    }
    data.update(overrides)
    return Recipe.model_validate(data)


@pytest.fixture
def recipe() -> Recipe:
    return make_recipe()
