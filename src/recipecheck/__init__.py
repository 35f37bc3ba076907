"""
recipecheck - Golden-output regression testing for calculation recipes.

Canonicalize inputs, re-run the engine, compare with tolerances, gate CI.
"""

from recipecheck.canonicalize import canonicalize_recipe_inputs, normalize_inputs
from recipecheck.ci import check_ci_blocking, evaluate_ci, get_ci_exit_code, should_block_ci
from recipecheck.compare import compare_field, compare_issues, compare_outputs
from recipecheck.hashing import MISSING, canonical_stringify, hash_canonical, strip_undefined
from recipecheck.runner import RecipeRunner, run_recipe

__version__ = "0.3.0"
__all__ = [
    "MISSING",
    "RecipeRunner",
    "__version__",
    "canonical_stringify",
    "canonicalize_recipe_inputs",
    "check_ci_blocking",
    "compare_field",
    "compare_issues",
    "compare_outputs",
    "evaluate_ci",
    "get_ci_exit_code",
    "hash_canonical",
    "normalize_inputs",
    "run_recipe",
    "should_block_ci",
    "strip_undefined",
]
