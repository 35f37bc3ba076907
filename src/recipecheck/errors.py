# Copyright (c) Syntropy Systems
"""Exception types raised by recipecheck."""
from __future__ import annotations


class RecipeCheckError(Exception):
    """Base class for recipecheck errors."""


class InvalidConfiguration(RecipeCheckError, ValueError):
    """A tolerance, comparison mode, or config value is malformed."""


class RecipeNotFoundError(RecipeCheckError, LookupError):
    """No recipe matches the given id or slug."""


class RecipeLockedError(RecipeCheckError):
    """Attempted to change the payload of a locked recipe."""


class RecipeLockError(RecipeCheckError):
    """Recipe does not satisfy the requirements for locking."""


class RoleChangeError(RecipeCheckError):
    """Role transition is not allowed."""


class RecipeProtectedError(RecipeCheckError):
    """Recipe is protected from deletion."""


class EngineTimeoutError(RecipeCheckError, TimeoutError):
    """The calculation engine did not return before the deadline."""
