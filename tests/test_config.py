# Copyright (c) Syntropy Systems
"""Tests for configuration loading."""

from pathlib import Path

import pytest

from recipecheck.config import (
    DEFAULT_CONFIG_YAML,
    find_project_dir,
    get_db_path,
    load_config,
    parse_config,
    require_project_dir,
)
from recipecheck.errors import InvalidConfiguration


class TestFindProjectDir:
    """Tests for project directory discovery."""

    def test_walks_up(self, temp_dir: Path) -> None:
        """Test the nearest .recipecheck above the start path is found."""
        (temp_dir / ".recipecheck").mkdir()
        nested = temp_dir / "a" / "b"
        nested.mkdir(parents=True)

        assert find_project_dir(nested) == (temp_dir / ".recipecheck").resolve()

    def test_require_project_dir(self, recipe_project: Path) -> None:
        """Test require_project_dir uses the working directory."""
        assert require_project_dir() == (recipe_project / ".recipecheck").resolve()
        assert get_db_path().name == "recipecheck.db"


class TestLoadConfig:
    """Tests for load_config and parse_config."""

    def test_project_config(self, recipe_project: Path) -> None:
        """Test values are read from config.yaml."""
        config = load_config(recipe_project / ".recipecheck")

        assert config.engine == "fake_engine:compute"
        assert config.model_version_id == "v2"
        assert config.max_workers == 2
        assert config.ci.blocking_tiers == ["smoke"]

    def test_default_template_parses(self, temp_dir: Path) -> None:
        """Test the generated config file loads to defaults."""
        (temp_dir / "config.yaml").write_text(DEFAULT_CONFIG_YAML)

        config = load_config(temp_dir)

        assert config.engine is None
        assert config.max_workers is None
        assert config.engine_timeout is None
        assert config.ci.always_block == []

    def test_missing_file_defaults(self, temp_dir: Path) -> None:
        """Test a project without config.yaml uses defaults."""
        assert load_config(temp_dir).engine is None

    def test_empty_file_defaults(self, temp_dir: Path) -> None:
        """Test an empty config.yaml uses defaults."""
        (temp_dir / "config.yaml").write_text("")

        assert load_config(temp_dir).ci.blocking_tiers == ["smoke"]

    def test_numeric_versions_become_strings(self) -> None:
        """Test YAML numbers for version ids are kept as text."""
        assert parse_config({"model_version_id": 4.2}).model_version_id == "4.2"

    def test_ci_aliases(self) -> None:
        """Test camelCase ci keys are accepted."""
        config = parse_config({"ci": {"neverBlock": ["flaky"], "alwaysBlock": ["core"]}})

        assert config.ci.never_block == ["flaky"]
        assert config.ci.always_block == ["core"]

    def test_engine_timeout(self) -> None:
        """Test an integer timeout is stored as seconds."""
        assert parse_config({"engine_timeout": 3}).engine_timeout == 3.0

    @pytest.mark.parametrize(
        "data",
        [
            {"max_workers": 0},
            {"max_workers": "4"},
            {"max_workers": True},
            {"engine_timeout": -1},
            {"engine": ["a"]},
            {"ci": ["smoke"]},
            {"ci": {"blocking_tiers": ["nightly"]}},
        ],
    )
    def test_invalid_values(self, data: dict) -> None:
        """Test malformed values raise InvalidConfiguration."""
        with pytest.raises(InvalidConfiguration):
            parse_config(data)

    def test_invalid_yaml(self, temp_dir: Path) -> None:
        """Test unparseable YAML is reported."""
        (temp_dir / "config.yaml").write_text("ci: [unclosed")

        with pytest.raises(InvalidConfiguration, match="Cannot parse"):
            load_config(temp_dir)

    def test_non_mapping(self, temp_dir: Path) -> None:
        """Test a YAML list at the top level is rejected."""
        (temp_dir / "config.yaml").write_text("- engine\n")

        with pytest.raises(InvalidConfiguration, match="must contain a mapping"):
            load_config(temp_dir)
