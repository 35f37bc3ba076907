# Copyright (c) Syntropy Systems
"""Pydantic models for recipes, comparisons, runs and CI checks."""
