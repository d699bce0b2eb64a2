"""
manifold/spec - Manifest model for agents, prompts, rulepacks and recipes.

This package provides the manifest layer:
- Types: immutable records parsed from YAML manifests
- Loader: ManifestStore, a read-only snapshot of a manifest repository
- Prompts: {{var}} filling with optional Mustache-style sections
- Validation: JSON-schema and cross-manifest checks

Usage:
    from manifold.spec import ManifestError, Recipe, recipe_from_dict
    from manifold.spec.loader import ManifestStore
    from manifold.spec.validation import validate_repository
"""

from .errors import (
    ManifestError,
    ManifestNotFoundError,
    ManifestParseError,
    RecipeCompileError,
    UnknownToolError,
)
from .types import (
    Agent,
    AIToolsConfig,
    Feature,
    Project,
    Prompt,
    Recipe,
    RecipeLoop,
    RecipeStep,
    Rulepack,
    agent_from_dict,
    feature_from_dict,
    project_from_dict,
    prompt_from_dict,
    recipe_from_dict,
    rulepack_from_dict,
)

__all__ = [
    "AIToolsConfig",
    "Agent",
    "Feature",
    "ManifestError",
    "ManifestNotFoundError",
    "ManifestParseError",
    "Project",
    "Prompt",
    "Recipe",
    "RecipeCompileError",
    "RecipeLoop",
    "RecipeStep",
    "Rulepack",
    "UnknownToolError",
    "agent_from_dict",
    "feature_from_dict",
    "project_from_dict",
    "prompt_from_dict",
    "recipe_from_dict",
    "rulepack_from_dict",
]
