"""SQLite recipe store with WAL mode and immutability triggers."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from recipecheck.errors import RecipeLockedError, RecipeNotFoundError
from recipecheck.lifecycle import load_recipe
from recipecheck.models.recipe import Recipe
from recipecheck.models.run import RecipeRunResult
from recipecheck.runner import BaselineTarget

logger = logging.getLogger(__name__)

# SQL schema for recipecheck database
SCHEMA = """
-- Recipes (regression fixtures)
CREATE TABLE IF NOT EXISTS recipes (
    id TEXT PRIMARY KEY,
    recipe_type TEXT NOT NULL DEFAULT 'reference',  -- golden, reference
    recipe_tier TEXT NOT NULL DEFAULT 'regression',  -- smoke, regression, edge, longtail
    name TEXT NOT NULL,
    slug TEXT UNIQUE,
    role TEXT,  -- reference, regression, golden, deprecated; NULL for legacy rows

    model_key TEXT NOT NULL DEFAULT 'default',
    model_version_id TEXT NOT NULL,
    model_build_id TEXT,
    model_snapshot_hash TEXT,

    -- Payload (immutable once locked)
    inputs TEXT NOT NULL,  -- JSON
    inputs_hash TEXT NOT NULL,
    expected_outputs TEXT,  -- JSON
    expected_issues TEXT,  -- JSON array
    tolerances TEXT,  -- JSON
    tolerance_policy TEXT NOT NULL DEFAULT 'explicit',
    legacy_outputs TEXT,  -- JSON

    -- Lifecycle
    recipe_status TEXT NOT NULL DEFAULT 'draft',  -- draft, active, locked, deprecated
    locked_at TEXT,
    locked_by TEXT,
    lock_reason TEXT,

    -- Metadata
    source TEXT,
    source_ref TEXT,
    tags TEXT,  -- JSON array
    notes TEXT,
    belt_catalog_version TEXT,

    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    created_by TEXT,
    updated_at TEXT,
    updated_by TEXT
);

-- Recipe runs (append-only)
CREATE TABLE IF NOT EXISTS recipe_runs (
    id TEXT PRIMARY KEY,
    recipe_id TEXT NOT NULL REFERENCES recipes(id) ON DELETE CASCADE,
    run_at TEXT NOT NULL,

    model_version_id TEXT NOT NULL,
    model_build_id TEXT,
    model_snapshot_hash TEXT,
    inputs_hash TEXT NOT NULL,

    actual_outputs TEXT NOT NULL,  -- JSON
    outputs_hash TEXT NOT NULL,
    actual_issues TEXT,  -- JSON array

    comparison_mode TEXT NOT NULL,
    baseline_recipe_run_id TEXT,
    baseline_model_version_id TEXT,

    passed INTEGER,  -- NULL when the comparison was skipped
    output_diff TEXT,  -- JSON array
    issue_diff TEXT,  -- JSON
    max_drift_rel REAL,
    max_drift_field TEXT,

    failure_reason TEXT,
    error_message TEXT,

    run_context TEXT NOT NULL,
    ci_run_id TEXT,
    duration_ms INTEGER NOT NULL DEFAULT 0
);

-- A locked recipe's payload never changes
CREATE TRIGGER IF NOT EXISTS recipes_locked_payload
BEFORE UPDATE OF inputs, inputs_hash, expected_outputs, expected_issues,
                 tolerances, tolerance_policy, legacy_outputs ON recipes
WHEN OLD.recipe_status = 'locked'
BEGIN
    SELECT RAISE(ABORT, 'recipe payload is immutable once locked');
END;

-- Locking is one-way
CREATE TRIGGER IF NOT EXISTS recipes_stay_locked
BEFORE UPDATE OF recipe_status ON recipes
WHEN OLD.recipe_status = 'locked' AND NEW.recipe_status != 'locked'
BEGIN
    SELECT RAISE(ABORT, 'locked recipes cannot be unlocked');
END;

-- Runs are append-only
CREATE TRIGGER IF NOT EXISTS recipe_runs_immutable
BEFORE UPDATE ON recipe_runs
BEGIN
    SELECT RAISE(ABORT, 'recipe runs are immutable');
END;

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_recipes_tier ON recipes(recipe_tier);
CREATE INDEX IF NOT EXISTS idx_recipes_status ON recipes(recipe_status);
CREATE INDEX IF NOT EXISTS idx_recipe_runs_recipe ON recipe_runs(recipe_id, run_at);
CREATE INDEX IF NOT EXISTS idx_recipe_runs_version ON recipe_runs(recipe_id, model_version_id);
"""

RECIPE_JSON_COLUMNS = ("inputs", "expected_outputs", "expected_issues", "tolerances", "legacy_outputs", "tags")
RUN_JSON_COLUMNS = ("actual_outputs", "actual_issues", "output_diff", "issue_diff")

# Columns apply_recipe_update / lock_recipe may change
METADATA_COLUMNS = (
    "name",
    "notes",
    "tags",
    "role",
    "recipe_type",
    "recipe_status",
    "updated_at",
    "updated_by",
)
LOCK_COLUMNS = ("recipe_type", "recipe_status", "locked_at", "locked_by", "lock_reason", "updated_at")


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Get a database connection with proper settings for concurrent access.

    - isolation_level=None for explicit transaction control
    - WAL mode for concurrent readers/writers
    - busy_timeout to wait for locks instead of failing immediately
    - foreign_keys so runs are deleted with their recipe
    - Row factory for dict-like access
    """
    conn = sqlite3.connect(str(db_path), timeout=5.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Initialize the database with the schema."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
    finally:
        conn.close()


def utcnow() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _is_lock_violation(error: sqlite3.IntegrityError) -> bool:
    return "immutable" in str(error) or "unlocked" in str(error)


# --- Recipe Operations ---

def _recipe_row(recipe: Recipe) -> dict[str, Any]:
    data = json.loads(recipe.model_dump_json())
    if recipe.tolerances is not None:
        data["tolerances"] = {field: tol.as_dict() for field, tol in recipe.tolerances.items()}
    for column in RECIPE_JSON_COLUMNS:
        if data.get(column) is not None:
            data[column] = json.dumps(data[column])
    return data


def _deserialize_recipe(row: sqlite3.Row) -> Recipe:
    # JSON columns are parsed by the model's validators
    return load_recipe(dict(row))


def create_recipe(conn: sqlite3.Connection, recipe: Recipe) -> Recipe:
    """Insert a new recipe and return it as stored."""
    row = _recipe_row(recipe)
    if row.get("created_at") is None:
        row["created_at"] = utcnow()
    columns = list(row)
    conn.execute(
        f"INSERT INTO recipes ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
        [row[c] for c in columns],
    )
    logger.debug("Created recipe %s (%s)", recipe.id, recipe.name)
    return _deserialize_recipe(
        conn.execute("SELECT * FROM recipes WHERE id = ?", (recipe.id,)).fetchone()
    )


def get_recipe(conn: sqlite3.Connection, recipe_id: str) -> Optional[Recipe]:
    """Get a recipe by ID."""
    row = conn.execute(
        "SELECT * FROM recipes WHERE id = ?",
        (recipe_id,),
    ).fetchone()

    if row is None:
        return None

    return _deserialize_recipe(row)


def get_recipe_by_slug(conn: sqlite3.Connection, slug: str) -> Optional[Recipe]:
    """Get a recipe by its slug."""
    row = conn.execute(
        "SELECT * FROM recipes WHERE slug = ?",
        (slug,),
    ).fetchone()

    if row is None:
        return None

    return _deserialize_recipe(row)


def find_recipe(conn: sqlite3.Connection, ref: str) -> Recipe:
    """
    Resolve a recipe by id, slug, or unique id prefix.

    Raises RecipeNotFoundError if nothing (or more than one recipe) matches.
    """
    recipe = get_recipe(conn, ref) or get_recipe_by_slug(conn, ref)
    if recipe is not None:
        return recipe

    escaped = ref.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    rows = conn.execute(
        "SELECT * FROM recipes WHERE id LIKE ? ESCAPE '\\' LIMIT 2",
        (f"{escaped}%",),
    ).fetchall()

    if len(rows) == 1:
        return _deserialize_recipe(rows[0])
    if len(rows) > 1:
        msg = f"Recipe reference '{ref}' is ambiguous"
        raise RecipeNotFoundError(msg)

    msg = f"Recipe '{ref}' not found"
    raise RecipeNotFoundError(msg)


def list_recipes(
    conn: sqlite3.Connection,
    recipe_type: Optional[str] = None,
    tier: Optional[str] = None,
    status: Optional[str] = None,
    role: Optional[str] = None,
    tag: Optional[str] = None,
) -> list[Recipe]:
    """List recipes with optional filtering, oldest first.

    ``role`` filters on the effective role, so legacy rows without a role
    column match by their derived role.
    """
    query = "SELECT * FROM recipes WHERE 1=1"
    params: list[Any] = []

    if recipe_type:
        query += " AND recipe_type = ?"
        params.append(recipe_type)

    if tier:
        query += " AND recipe_tier = ?"
        params.append(tier)

    if status:
        query += " AND recipe_status = ?"
        params.append(status)

    if tag:
        query += " AND tags LIKE ?"
        params.append(f'%"{tag}"%')

    query += " ORDER BY created_at, id"

    recipes = [_deserialize_recipe(row) for row in conn.execute(query, params).fetchall()]
    if role:
        recipes = [r for r in recipes if r.effective_role == role]
    return recipes


def _update_columns(
    conn: sqlite3.Connection,
    recipe: Recipe,
    columns: tuple[str, ...],
) -> Recipe:
    row = _recipe_row(recipe)
    assignments = ", ".join(f"{c} = ?" for c in columns)
    try:
        cursor = conn.execute(
            f"UPDATE recipes SET {assignments} WHERE id = ?",
            [*(row[c] for c in columns), recipe.id],
        )
    except sqlite3.IntegrityError as e:
        if _is_lock_violation(e):
            raise RecipeLockedError(str(e)) from e
        raise

    if cursor.rowcount == 0:
        msg = f"Recipe '{recipe.id}' not found"
        raise RecipeNotFoundError(msg)

    stored = get_recipe(conn, recipe.id)
    if stored is None:
        msg = f"Recipe '{recipe.id}' not found"
        raise RecipeNotFoundError(msg)
    return stored


def update_recipe(conn: sqlite3.Connection, recipe: Recipe) -> Recipe:
    """Persist metadata changes produced by lifecycle.apply_recipe_update."""
    logger.debug("Updating recipe %s", recipe.id)
    return _update_columns(conn, recipe, METADATA_COLUMNS)


def lock_recipe_record(conn: sqlite3.Connection, recipe: Recipe) -> Recipe:
    """Persist a recipe locked by lifecycle.lock_recipe."""
    logger.debug("Locking recipe %s", recipe.id)
    return _update_columns(conn, recipe, LOCK_COLUMNS)


def update_recipe_payload(conn: sqlite3.Connection, recipe: Recipe) -> Recipe:
    """
    Replace a draft recipe's payload.

    The store refuses this for locked recipes (RecipeLockedError).
    """
    return _update_columns(
        conn,
        recipe,
        (
            "inputs",
            "inputs_hash",
            "expected_outputs",
            "expected_issues",
            "tolerances",
            "tolerance_policy",
            "legacy_outputs",
            "updated_at",
        ),
    )


def delete_recipe(conn: sqlite3.Connection, recipe_id: str) -> bool:
    """Delete a recipe and its runs. Returns False if it did not exist."""
    cursor = conn.execute("DELETE FROM recipes WHERE id = ?", (recipe_id,))
    logger.debug("Deleted recipe %s (%d row)", recipe_id, cursor.rowcount)
    return cursor.rowcount > 0


# --- Run Operations ---

def record_run(conn: sqlite3.Connection, result: RecipeRunResult) -> None:
    """Append a run result."""
    row = result.model_dump(mode="json", by_alias=True)
    # Field comparisons keep missing-vs-null only when unset fields are dropped
    row["output_diff"] = json.loads(result.to_json()).get("output_diff")
    for column in RUN_JSON_COLUMNS:
        if row[column] is not None:
            row[column] = json.dumps(row[column])
    if row["passed"] is not None:
        row["passed"] = int(row["passed"])

    columns = list(row)
    conn.execute(
        f"INSERT INTO recipe_runs ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
        [row[c] for c in columns],
    )
    logger.debug("Recorded run %s for recipe %s (%s)", result.id, result.recipe_id, result.status)


def record_runs(conn: sqlite3.Connection, results: list[RecipeRunResult]) -> None:
    """Append several run results in one transaction."""
    try:
        conn.execute("BEGIN IMMEDIATE")
        for result in results:
            record_run(conn, result)
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise


def _deserialize_run(row: sqlite3.Row) -> RecipeRunResult:
    data = dict(row)
    for column in RUN_JSON_COLUMNS:
        if data[column] is not None:
            data[column] = json.loads(data[column])
    if data["passed"] is not None:
        data["passed"] = bool(data["passed"])
    # Omit NULL columns so they stay unset, as when the run was recorded
    return RecipeRunResult.model_validate({k: v for k, v in data.items() if v is not None})


def get_run(conn: sqlite3.Connection, run_id: str) -> Optional[RecipeRunResult]:
    """Get a run by ID."""
    row = conn.execute(
        "SELECT * FROM recipe_runs WHERE id = ?",
        (run_id,),
    ).fetchone()

    if row is None:
        return None

    return _deserialize_run(row)


def get_recipe_runs(
    conn: sqlite3.Connection,
    recipe_id: Optional[str] = None,
    limit: int = 20,
) -> list[RecipeRunResult]:
    """Get runs, newest first, optionally for one recipe."""
    query = "SELECT * FROM recipe_runs WHERE 1=1"
    params: list[Any] = []

    if recipe_id:
        query += " AND recipe_id = ?"
        params.append(recipe_id)

    query += " ORDER BY run_at DESC, rowid DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(query, params).fetchall()
    return [_deserialize_run(row) for row in rows]


def get_latest_run(
    conn: sqlite3.Connection,
    recipe_id: str,
    model_version_id: Optional[str] = None,
    with_outputs: bool = False,
) -> Optional[RecipeRunResult]:
    """Most recent run of a recipe, optionally for one engine version.

    with_outputs skips runs where the engine failed.
    """
    query = "SELECT * FROM recipe_runs WHERE recipe_id = ?"
    params: list[Any] = [recipe_id]

    if model_version_id is not None:
        query += " AND model_version_id = ?"
        params.append(model_version_id)

    if with_outputs:
        query += " AND failure_reason IS NULL"

    query += " ORDER BY run_at DESC, rowid DESC LIMIT 1"

    row = conn.execute(query, params).fetchone()
    if row is None:
        return None

    return _deserialize_run(row)


class StoreBaselineResolver:
    """Resolve ``previous``/``baseline`` comparison targets from stored runs.

    - previous: the given run id, else the recipe's latest recorded run
    - baseline: the given run id, else the latest run on baseline_model_version

    Runs that failed to produce outputs are never used as a target.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def __call__(
        self,
        recipe: Recipe,
        mode: str,
        baseline_run_id: Optional[str],
        baseline_model_version: Optional[str],
    ) -> Optional[BaselineTarget]:
        # Runner threads each open their own connection
        conn = get_connection(self.db_path)
        try:
            run = self._find(conn, recipe, mode, baseline_run_id, baseline_model_version)
        finally:
            conn.close()

        if run is None or run.failure_reason is not None or run.recipe_id != recipe.id:
            return None

        return BaselineTarget(
            outputs=dict(run.actual_outputs),
            run_id=run.id,
            model_version_id=run.model_version_id,
        )

    @staticmethod
    def _find(
        conn: sqlite3.Connection,
        recipe: Recipe,
        mode: str,
        baseline_run_id: Optional[str],
        baseline_model_version: Optional[str],
    ) -> Optional[RecipeRunResult]:
        if baseline_run_id is not None:
            return get_run(conn, baseline_run_id)
        if mode == "previous":
            return get_latest_run(conn, recipe.id, with_outputs=True)
        if mode == "baseline" and baseline_model_version is not None:
            return get_latest_run(conn, recipe.id, baseline_model_version, with_outputs=True)
        return None
