# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for recipecheck."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict, JsonValue
from typing_extensions import TypeAlias

JSONValue: TypeAlias = JsonValue


class RecipeBaseModel(BaseModel):
    """Base model with shared config for recipecheck schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
        ser_json_inf_nan="constants",
    )


class FrozenModel(BaseModel):
    """Base model for records that never change after creation."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
        frozen=True,
        ser_json_inf_nan="constants",
    )
