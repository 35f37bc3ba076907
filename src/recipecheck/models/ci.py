# Copyright (c) Syntropy Systems
"""Pydantic models for CI blocking decisions."""

from __future__ import annotations

from pydantic import Field

from .base import FrozenModel
from .recipe import Recipe, RecipeTier
from .run import RecipeRunResult


class CIBlockingConfig(FrozenModel):
    """Which recipe failures should fail a CI run.

    Supplied per invocation; ``always_block``/``never_block`` key on slug.
    """

    blocking_tiers: list[RecipeTier] = Field(
        default_factory=lambda: ["smoke"],
        alias="blockingTiers",
    )
    always_block: list[str] = Field(default_factory=list, alias="alwaysBlock")
    never_block: list[str] = Field(default_factory=list, alias="neverBlock")


DEFAULT_CI_CONFIG = CIBlockingConfig()


class CIBlockingResult(FrozenModel):
    """Decision for a single recipe run."""

    block: bool
    reason: str


class CIBlocker(FrozenModel):
    """A recipe run that blocks CI."""

    recipe: Recipe
    result: RecipeRunResult
    reason: str


class CICheckReport(FrozenModel):
    """Aggregated CI decision over a batch of recipe runs."""

    should_block: bool
    checked: int
    blockers: list[CIBlocker] = Field(default_factory=list)
    summary: str


class CIOutcome(FrozenModel):
    """Exit code plus structured and human-readable summaries."""

    exit_code: int
    report: CICheckReport
    summary: str
