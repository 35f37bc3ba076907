# Copyright (c) Syntropy Systems
"""Recipe lifecycle: role changes, duplication, locking, deletion.

Every operation returns a new Recipe; nothing is mutated in place.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError

from recipecheck.canonicalize import DEFAULT_RULES, CanonicalizationRules, canonicalize_recipe_inputs
from recipecheck.errors import (
    InvalidConfiguration,
    RecipeLockedError,
    RecipeLockError,
    RecipeProtectedError,
    RoleChangeError,
)
from recipecheck.hashing import hash_canonical
from recipecheck.models.recipe import RECIPE_ROLES, Recipe, derive_role_from_legacy

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from recipecheck.models.recipe import RecipeRole, RecipeStatus, RecipeType, RecipeUpdate

__all__ = [
    "RECIPE_ROLES",
    "apply_recipe_update",
    "build_recipe",
    "derive_role_from_legacy",
    "duplicate_recipe",
    "ensure_deletable",
    "legacy_fields_for_role",
    "load_recipe",
    "lock_recipe",
]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def load_recipe(data: Mapping[str, object]) -> Recipe:
    """Validate a recipe record, failing fast on malformed tolerances or fields."""
    try:
        return Recipe.model_validate(data)
    except ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(part) for part in err["loc"])
        msg = f"Invalid recipe: {loc}: {err['msg']}"
        raise InvalidConfiguration(msg) from e


def legacy_fields_for_role(role: RecipeRole) -> tuple[RecipeType, RecipeStatus]:
    """Map a role onto the legacy (recipe_type, recipe_status) pair."""
    if role == "golden":
        return "golden", "active"
    if role == "deprecated":
        return "reference", "deprecated"
    if role == "regression":
        return "reference", "active"
    return "reference", "draft"


def apply_recipe_update(
    recipe: Recipe,
    update: RecipeUpdate,
    now: Optional[str] = None,
) -> Recipe:
    """Apply a metadata update and return the updated recipe.

    Raises:
        RoleChangeError: Downgrading a golden recipe, or promoting to golden
            without a reason
        InvalidConfiguration: Empty name

    """
    timestamp = now or _now()
    current_role = recipe.effective_role
    changes: dict[str, object] = {"updated_at": timestamp}

    if update.role is not None:
        if current_role == "golden" and update.role != "golden":
            msg = "Cannot downgrade from golden role: golden recipes are protected"
            raise RoleChangeError(msg)
        if update.role == "golden" and current_role != "golden" and not update.role_change_reason:
            msg = "Reason required when upgrading to golden role"
            raise RoleChangeError(msg)

    if update.name is not None:
        if not update.name.strip():
            msg = "Name must be a non-empty string"
            raise InvalidConfiguration(msg)
        changes["name"] = update.name.strip()

    if update.notes is not None:
        changes["notes"] = update.notes
    if update.tags is not None:
        changes["tags"] = list(update.tags)
    if update.updated_by is not None:
        changes["updated_by"] = update.updated_by

    if update.role is not None:
        recipe_type, recipe_status = legacy_fields_for_role(update.role)
        changes["role"] = update.role
        changes["recipe_type"] = recipe_type
        # A locked recipe stays locked whatever its role
        changes["recipe_status"] = "locked" if recipe.is_locked else recipe_status

        if update.role_change_reason:
            existing = recipe.notes or ""
            note = (
                f"[{timestamp}] Role changed from {current_role} to "
                f"{update.role}: {update.role_change_reason}"
            )
            changes["notes"] = f"{existing}\n\n{note}" if existing else note

    return recipe.model_copy(update=changes)


def duplicate_recipe(recipe: Recipe, new_id: str, now: Optional[str] = None) -> Recipe:
    """Copy a recipe's payload into a new, unlocked, non-golden recipe."""
    source_role = recipe.effective_role
    new_role: RecipeRole = "reference" if source_role == "golden" else source_role
    recipe_type, recipe_status = legacy_fields_for_role(new_role)
    timestamp = now or _now()

    return recipe.model_copy(
        update={
            "id": new_id,
            "name": f"{recipe.name} (copy)",
            "slug": None,
            "role": new_role,
            "recipe_type": recipe_type,
            "recipe_status": recipe_status,
            "notes": f"Duplicated from recipe {recipe.id} ({recipe.name})",
            "locked_at": None,
            "locked_by": None,
            "lock_reason": None,
            "created_at": timestamp,
            "created_by": None,
            "updated_at": timestamp,
            "updated_by": None,
        },
        deep=True,
    )


def lock_recipe(
    recipe: Recipe,
    locked_by: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[str] = None,
) -> Recipe:
    """Lock a golden recipe so its payload can no longer change.

    Raises:
        RecipeLockedError: Already locked
        RecipeLockError: Not golden, or missing expected outputs or
            tolerances, or not using an explicit tolerance policy

    """
    if recipe.is_locked:
        msg = f"Recipe '{recipe.label}' is already locked"
        raise RecipeLockedError(msg)

    problems: list[str] = []
    if recipe.effective_role != "golden":
        problems.append("only golden recipes can be locked")
    if recipe.expected_outputs is None:
        problems.append("expected_outputs are required")
    if recipe.tolerances is None:
        problems.append("tolerances are required")
    if recipe.tolerance_policy != "explicit":
        problems.append("tolerance_policy must be 'explicit'")
    if problems:
        msg = f"Cannot lock recipe '{recipe.label}': " + "; ".join(problems)
        raise RecipeLockError(msg)

    timestamp = now or _now()
    return recipe.model_copy(
        update={
            "recipe_type": "golden",
            "recipe_status": "locked",
            "locked_at": timestamp,
            "locked_by": locked_by,
            "lock_reason": reason,
            "updated_at": timestamp,
        }
    )


def ensure_deletable(recipe: Recipe, *, force: bool = False) -> None:
    """Raise if the recipe must not be deleted. ``force`` skips the check."""
    if force:
        return
    if recipe.effective_role == "golden":
        msg = f"Recipe '{recipe.label}' is golden and cannot be deleted"
        raise RecipeProtectedError(msg)


def build_recipe(
    data: Mapping[str, object],
    rules: CanonicalizationRules = DEFAULT_RULES,
    now: Optional[str] = None,
) -> Recipe:
    """Create a new recipe from a user-supplied record.

    Inputs are canonicalized before storing and ``inputs_hash`` is computed
    from the canonical inputs. A missing id gets a fresh one.
    """
    record = dict(data)
    raw_inputs = record.get("inputs") or {}
    if not isinstance(raw_inputs, Mapping):
        msg = "Invalid recipe: inputs must be a mapping"
        raise InvalidConfiguration(msg)

    canonical = canonicalize_recipe_inputs(raw_inputs, rules)
    for removed in canonical.removed_keys:
        logger.debug("Dropped input %s: %s", removed.key, removed.reason)

    timestamp = now or _now()
    record["inputs"] = canonical.canonical_inputs
    record["inputs_hash"] = hash_canonical(canonical.canonical_inputs)
    record.setdefault("id", uuid.uuid4().hex)
    record.setdefault("created_at", timestamp)
    record.setdefault("updated_at", timestamp)

    recipe = load_recipe(record)
    if recipe.is_locked:
        msg = "Invalid recipe: new recipes cannot start locked; use lock_recipe"
        raise InvalidConfiguration(msg)
    return recipe
