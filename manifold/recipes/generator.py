"""
generator.py - Write compiled recipe scripts for a project.

Scripts land in ``<output>/<project>/<tool>/<recipes dir>/``:

    .output/my-app/claude-code/.claude/.cs.recipes/bugfix-loop.sh
    .output/my-app/cursor/.cursor/.cs.recipes/feature-login.sh

Failures are contained per recipe and per feature: a recipe without steps
or a feature pointing at a missing recipe is reported and skipped, the rest
of the run continues.

Usage:
    from manifold.recipes.generator import generate_project

    report = generate_project(store, "my-app", tools=["claude-code"])
    for script in report.written:
        print(script.path)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from manifold.config.resolver import OverrideResolver
from manifold.recipes.backends import BackendRegistry, ToolBackend, default_registry
from manifold.recipes.compiler import CompileRun
from manifold.spec.errors import RecipeCompileError
from manifold.spec.types import Project, Recipe

logger = logging.getLogger(__name__)

SCRIPT_MODE = 0o755


@dataclass(frozen=True)
class GeneratedScript:
    """A script written to disk."""
    path: Path
    recipe_id: str
    tool: str
    feature_id: Optional[str] = None


@dataclass
class GenerationReport:
    """Outcome of a generation run."""
    written: List[GeneratedScript] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (unit, reason)

    def extend(self, other: "GenerationReport") -> None:
        self.written.extend(other.written)
        self.skipped.extend(other.skipped)

    def skip(self, unit: str, reason: str) -> None:
        self.skipped.append((unit, reason))


def tool_output_dir(settings, project_id: str, backend: ToolBackend) -> Path:
    """Directory receiving generated recipes for a project and tool."""
    return settings.output_root / project_id / backend.id / backend.recipes_dir


def write_script(path: Path, text: str) -> Path:
    """Write an executable script, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    os.chmod(path, SCRIPT_MODE)
    return path


def recipe_targets_tool(recipe: Recipe, tool: str) -> bool:
    """A recipe without a tools list targets every tool."""
    return not recipe.tools or tool in recipe.tools


def generate_recipes_for_tool(
    store,
    project: Project,
    tool: str,
    generated_at: Optional[datetime] = None,
    registry: Optional[BackendRegistry] = None,
) -> GenerationReport:
    """Compile and write every recipe enabled for a project and tool.

    Args:
        store: ManifestStore snapshot.
        project: Target project (recipe whitelist/blacklist applies).
        tool: Target tool name.
        generated_at: Timestamp embedded in script headers.
        registry: Backend registry; built-in backends when omitted.

    Returns:
        GenerationReport listing written and skipped recipes.

    Raises:
        UnknownToolError: If tool has no backend.
    """
    registry = registry or default_registry()
    backend = registry.get(tool)
    report = GenerationReport()

    recipes_dir = store.settings.dir_path("recipes")
    if not recipes_dir.is_dir():
        logger.warning("No recipes directory at %s; nothing to generate", recipes_dir)
        report.skip("recipes", f"missing directory {recipes_dir}")
        return report

    run = CompileRun(store, project=project, registry=registry)
    out_dir = tool_output_dir(store.settings, project.id, backend)

    for recipe_id in store.list_recipes():
        recipe = store.get_recipe(recipe_id)
        if not recipe_targets_tool(recipe, tool):
            logger.debug("Recipe %s does not target %s", recipe_id, tool)
            continue
        if not run.resolver.should_include_recipe(recipe_id, project):
            logger.info("Recipe %s excluded by project %s", recipe_id, project.id)
            continue

        try:
            text = run.compile(recipe, tool, generated_at)
        except RecipeCompileError as e:
            logger.error("%s (%s)", e, store.recipe_path(recipe_id))
            report.skip(recipe_id, e.reason)
            continue

        path = write_script(out_dir / f"{recipe_id}.sh", text)
        report.written.append(GeneratedScript(path=path, recipe_id=recipe_id, tool=tool))
        logger.info("Generated %s", path)

    return report


def feature_tools(feature, recipe: Recipe, defaults: Iterable[str]) -> Tuple[str, ...]:
    """Tools for a feature: feature binding, else recipe, else defaults."""
    if feature.recipe and feature.recipe.tools:
        return feature.recipe.tools
    if recipe.tools:
        return recipe.tools
    return tuple(defaults)


def generate_feature_recipes(
    store,
    project: Project,
    tools: Optional[Iterable[str]] = None,
    generated_at: Optional[datetime] = None,
    registry: Optional[BackendRegistry] = None,
) -> GenerationReport:
    """Compile and write ``feature-<id>.sh`` for every feature bound to a recipe.

    Args:
        store: ManifestStore snapshot.
        project: Project owning the features.
        tools: Restrict generation to these tools; all applicable when omitted.
        generated_at: Timestamp embedded in script headers.
        registry: Backend registry; built-in backends when omitted.

    Returns:
        GenerationReport listing written and skipped features.
    """
    registry = registry or default_registry()
    resolver = OverrideResolver.from_store(store)
    wanted = set(tools) if tools else None
    report = GenerationReport()

    for feature in store.load_features(project.id):
        if feature.recipe is None:
            continue

        recipe = store.get_recipe(feature.recipe.id)
        if recipe is None:
            logger.warning(
                "Feature %s references missing recipe '%s'; skipping",
                feature.id, feature.recipe.id,
            )
            report.skip(f"feature-{feature.id}", f"recipe {feature.recipe.id} not found")
            continue

        run = CompileRun(store, project=project, feature=feature, resolver=resolver, registry=registry)
        for tool in feature_tools(feature, recipe, store.settings.default_tools):
            if wanted is not None and tool not in wanted:
                continue
            if not registry.has(tool):
                logger.warning("Feature %s targets unknown tool '%s'; skipping", feature.id, tool)
                report.skip(f"feature-{feature.id}", f"unknown tool {tool}")
                continue

            try:
                text = run.compile(recipe, tool, generated_at)
            except RecipeCompileError as e:
                logger.error("Feature %s: %s", feature.id, e)
                report.skip(f"feature-{feature.id}", e.reason)
                break

            out_dir = tool_output_dir(store.settings, project.id, registry.get(tool))
            path = write_script(out_dir / f"feature-{feature.id}.sh", text)
            report.written.append(GeneratedScript(
                path=path, recipe_id=recipe.id, tool=tool, feature_id=feature.id,
            ))
            logger.info("Generated %s", path)

    return report


def generate_project(
    store,
    project_id: str,
    tools: Optional[Iterable[str]] = None,
    generated_at: Optional[datetime] = None,
    registry: Optional[BackendRegistry] = None,
) -> GenerationReport:
    """Generate recipe and feature scripts for a project.

    Raises:
        ManifestNotFoundError: If the project does not exist.
        UnknownToolError: If a requested tool has no backend.
    """
    project = store.load_project(project_id)
    selected = tuple(tools) if tools else tuple(store.settings.default_tools)
    registry = registry or default_registry()

    report = GenerationReport()
    for tool in selected:
        report.extend(generate_recipes_for_tool(store, project, tool, generated_at, registry))
    report.extend(generate_feature_recipes(store, project, tools, generated_at, registry))
    return report
