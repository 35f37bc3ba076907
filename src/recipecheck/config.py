# Copyright (c) Syntropy Systems
"""Configuration management for recipecheck."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml
from pydantic import ValidationError

from recipecheck.errors import InvalidConfiguration
from recipecheck.models.ci import CIBlockingConfig

PROJECT_DIR_NAME = ".recipecheck"
CONFIG_FILE_NAME = "config.yaml"
DB_FILE_NAME = "recipecheck.db"

DEFAULT_CONFIG_YAML = """\
# Calculation engine, as 'package.module:function'
engine: null

# Engine build identity recorded on every run
model_version_id: null
model_build_id: null
model_snapshot_hash: null

# Concurrent recipe runs (default: cpu count + 4, at most 32)
max_workers: null

# Seconds to wait for one engine call (null: no deadline)
engine_timeout: null

ci:
  blocking_tiers: [smoke]
  always_block: []
  never_block: []
"""


@dataclass
class RecipeCheckConfig:
    """Configuration for recipecheck."""

    # Engine import reference, e.g. "mypkg.calc:compute"
    engine: str | None = None

    model_version_id: str | None = None
    model_build_id: str | None = None
    model_snapshot_hash: str | None = None

    max_workers: int | None = None

    # Seconds; None waits forever
    engine_timeout: float | None = None

    ci: CIBlockingConfig = field(default_factory=CIBlockingConfig)


def find_project_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .recipecheck directory by walking up from start_path.

    Returns None if no .recipecheck directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        project_dir = current / PROJECT_DIR_NAME
        if project_dir.is_dir():
            return project_dir
        current = current.parent

    # Check root
    project_dir = current / PROJECT_DIR_NAME
    if project_dir.is_dir():
        return project_dir

    return None


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    msg = f"{key} must be a string, got {type(value).__name__}"
    raise InvalidConfiguration(msg)


def _parse_ci(raw: object) -> CIBlockingConfig:
    if raw is None:
        return CIBlockingConfig()
    if not isinstance(raw, dict):
        msg = "ci must be a mapping"
        raise InvalidConfiguration(msg)
    try:
        return CIBlockingConfig.model_validate(raw)
    except ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(part) for part in err["loc"])
        msg = f"Invalid ci.{loc}: {err['msg']}"
        raise InvalidConfiguration(msg) from e


def parse_config(data: dict[str, object]) -> RecipeCheckConfig:
    """Build a config from parsed YAML; missing keys keep their defaults."""
    config = RecipeCheckConfig()

    config.engine = _optional_str(data, "engine")
    config.model_version_id = _optional_str(data, "model_version_id")
    config.model_build_id = _optional_str(data, "model_build_id")
    config.model_snapshot_hash = _optional_str(data, "model_snapshot_hash")

    max_workers = data.get("max_workers")
    if max_workers is not None:
        if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
            msg = f"max_workers must be a positive integer, got {max_workers!r}"
            raise InvalidConfiguration(msg)
        config.max_workers = max_workers

    engine_timeout = data.get("engine_timeout")
    if engine_timeout is not None:
        if (
            not isinstance(engine_timeout, (int, float))
            or isinstance(engine_timeout, bool)
            or engine_timeout <= 0
        ):
            msg = f"engine_timeout must be a positive number, got {engine_timeout!r}"
            raise InvalidConfiguration(msg)
        config.engine_timeout = float(engine_timeout)

    config.ci = _parse_ci(data.get("ci"))
    return config


def load_config(project_dir: Path | None = None) -> RecipeCheckConfig:
    """Load configuration from .recipecheck/config.yaml or defaults.

    Looks for config in:
    1. Provided project_dir
    2. Nearest .recipecheck directory walking up
    3. Defaults
    """
    if project_dir is None:
        project_dir = find_project_dir()

    if project_dir is None:
        return RecipeCheckConfig()

    config_path = project_dir / CONFIG_FILE_NAME
    if not config_path.exists():
        return RecipeCheckConfig()

    try:
        with config_path.open() as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        msg = f"Cannot parse {config_path}: {e}"
        raise InvalidConfiguration(msg) from e

    if loaded is None:
        return RecipeCheckConfig()
    if not isinstance(loaded, dict):
        msg = f"{config_path} must contain a mapping"
        raise InvalidConfiguration(msg)

    return parse_config(cast("dict[str, object]", loaded))


def require_project_dir() -> Path:
    """Get the .recipecheck directory or raise an error if not found."""
    project_dir = find_project_dir()
    if project_dir is None:
        msg = "No .recipecheck directory found. Run 'recipecheck init' first."
        raise RuntimeError(msg)
    return project_dir


def get_db_path(project_dir: Path | None = None) -> Path:
    """Get the path to the SQLite database."""
    if project_dir is None:
        project_dir = require_project_dir()
    return project_dir / DB_FILE_NAME
