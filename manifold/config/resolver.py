"""Override resolution across feature, project, agent and prompt layers.

The resolver answers three questions for a compilation run:

1. Which model does a unit of work use?
   feature.model > project.ai_tools.model > agent.defaults.model > prompt.model
2. Which rules apply to an agent?
   Rulepacks are expanded depth-first through ``extends`` (parents first),
   each rulepack contributing at most once.
3. Is an agent/prompt/rulepack/recipe id enabled for a project?
   Whitelist if configured, else blacklist if configured, else included.
   Rulepacks additionally pass a language-tag check against the project's
   tech stacks.

Resolved values are derived on demand and never stored on the manifests.

Usage:
    from manifold.config.resolver import OverrideResolver, resolve_model

    resolver = OverrideResolver.from_store(store)
    model = resolve_model(feature, project, agent)
    rules = resolver.resolve_rulepacks(["python-base"], project)
    backend_rules = resolver.resolve_agent_rules(agent, project, languages=["python"])
    if resolver.should_include_agent("reviewer", project):
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from manifold.spec.types import Agent, Feature, Project, Prompt, Rulepack

logger = logging.getLogger(__name__)

CATEGORIES = ("agents", "prompts", "rulepacks", "recipes")

# Rulepack tags treated as language-specific even when no project stack names them.
KNOWN_LANGUAGES: FrozenSet[str] = frozenset({
    "java", "kotlin", "python", "typescript", "javascript", "go",
    "rust", "c++", "c#", "ruby", "php", "swift",
})

MODEL_SOURCE_LABELS = {
    "feature": "feature-level (highest priority)",
    "project": "project-level",
    "agent": "agent-level (default)",
    "prompt": "prompt-level",
}


@dataclass(frozen=True)
class ModelResolution:
    """Effective model and the layer it came from."""
    model: Optional[str]
    source: Optional[str]  # "feature" | "project" | "agent" | "prompt" | None

    @property
    def label(self) -> str:
        if self.source is None:
            return "none"
        return MODEL_SOURCE_LABELS[self.source]


# =============================================================================
# Model Resolution
# =============================================================================


def resolve_model_source(
    feature: Optional[Feature] = None,
    project: Optional[Project] = None,
    agent: Optional[Agent] = None,
    prompt: Optional[Prompt] = None,
) -> ModelResolution:
    """Resolve the effective model and report which layer supplied it."""
    layers = (
        ("feature", feature.model if feature else None),
        ("project", project.ai_tools.model if project else None),
        ("agent", agent.defaults.model if agent else None),
        ("prompt", prompt.model if prompt else None),
    )
    for source, model in layers:
        if model:
            return ModelResolution(model=model, source=source)
    return ModelResolution(model=None, source=None)


def resolve_model(
    feature: Optional[Feature] = None,
    project: Optional[Project] = None,
    agent: Optional[Agent] = None,
    prompt: Optional[Prompt] = None,
) -> Optional[str]:
    """Return the highest-priority model, or None when no layer sets one.

    None means "emit no model flag"; it is not an error.
    """
    return resolve_model_source(feature, project, agent, prompt).model


# =============================================================================
# Inclusion Filtering
# =============================================================================


def _prompt_matches(entry: str, prompt_id: str, prompt_path: Optional[str]) -> bool:
    """Match a whitelist/blacklist entry against a prompt.

    Full path (or id) equality wins first; otherwise the final path segment
    of the prompt is compared with the entry.
    """
    path = prompt_path or prompt_id
    if entry == path or entry == prompt_id:
        return True
    return path.rsplit("/", 1)[-1] == entry


class OverrideResolver:
    """Resolves models, rules and inclusion for one compilation run.

    Args:
        rulepack_lookup: Callable returning a Rulepack for an id or None.
            A ManifestStore's ``get_rulepack`` is the usual source; a plain
            dict's ``get`` works for tests.
        prompt_paths: Optional map of prompt id to slash-separated path, used
            when a bare prompt id is filtered against path entries.
    """

    def __init__(
        self,
        rulepack_lookup: Callable[[str], Optional[Rulepack]],
        prompt_paths: Optional[Dict[str, str]] = None,
    ):
        self._lookup = rulepack_lookup
        self._prompt_paths = dict(prompt_paths or {})
        self._reported_conflicts: Set[Tuple[str, str]] = set()

    @classmethod
    def from_store(cls, store) -> "OverrideResolver":
        """Build a resolver backed by a ManifestStore."""
        return cls(store.get_rulepack, store.prompt_paths())

    # -------------------------------------------------------------------------
    # Inclusion
    # -------------------------------------------------------------------------

    def _lists(self, project: Optional[Project], category: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        if project is None:
            return (), ()
        whitelist, blacklist = project.ai_tools.lists_for(category)
        if whitelist and blacklist:
            key = (project.id, category)
            if key not in self._reported_conflicts:
                self._reported_conflicts.add(key)
                logger.error(
                    "Project '%s' sets both whitelist_%s and blacklist_%s; "
                    "these are mutually exclusive. Applying the whitelist.",
                    project.id, category, category,
                )
        return whitelist, blacklist

    def is_included(self, category: str, item_id: str, project: Optional[Project]) -> bool:
        """Inclusion decision for an id in a category ("agents", "rulepacks", ...)."""
        if category not in CATEGORIES:
            raise ValueError(f"Unknown category: {category}")
        if category == "prompts":
            return self.should_include_prompt(item_id, project)

        whitelist, blacklist = self._lists(project, category)
        if whitelist:
            return item_id in whitelist
        if blacklist:
            return item_id not in blacklist
        return True

    def should_include_agent(self, agent_id: str, project: Optional[Project]) -> bool:
        return self.is_included("agents", agent_id, project)

    def should_include_recipe(self, recipe_id: str, project: Optional[Project]) -> bool:
        return self.is_included("recipes", recipe_id, project)

    def should_include_prompt(
        self,
        prompt_id: str,
        project: Optional[Project],
        prompt_path: Optional[str] = None,
    ) -> bool:
        """Inclusion decision for a prompt given by bare id or slash path.

        Args:
            prompt_id: Prompt id, or a slash-qualified path such as
                "refactor/extract-method".
            project: Project whose ai_tools lists apply.
            prompt_path: Path of the prompt when known; looked up from the
                id when omitted.
        """
        whitelist, blacklist = self._lists(project, "prompts")
        if not whitelist and not blacklist:
            return True

        path = prompt_path or self._prompt_paths.get(prompt_id) or prompt_id
        bare_id = prompt_id.rsplit("/", 1)[-1]

        if whitelist:
            return any(_prompt_matches(entry, bare_id, path) for entry in whitelist)
        return not any(_prompt_matches(entry, bare_id, path) for entry in blacklist)

    # -------------------------------------------------------------------------
    # Rulepacks
    # -------------------------------------------------------------------------

    def _stack_allows(
        self,
        rulepack: Rulepack,
        project: Project,
        languages: Optional[Sequence[str]],
    ) -> bool:
        """Language-tag check applied after the list decision.

        With a language context (the given languages, else the project's
        tech_stack languages) a language-specific rulepack must share a tag
        with it. Without one, rulepacks tagged with a language used by any of
        the project's stacks are left to the stack-specific contexts.
        """
        if not rulepack.tags:
            return True
        tags = {tag.lower() for tag in rulepack.tags}
        project_languages = set(project.all_languages())
        context = [lang.lower() for lang in (languages or project.tech_stack.languages)]

        if context:
            specific = tags & (KNOWN_LANGUAGES | project_languages)
            return not specific or bool(tags & set(context))
        return not tags & project_languages

    def should_include_rulepack(
        self,
        rulepack_id: str,
        project: Optional[Project],
        languages: Optional[Sequence[str]] = None,
    ) -> bool:
        """Inclusion decision for a rulepack, including the tech-stack check.

        Args:
            rulepack_id: Rulepack id.
            project: Project whose lists and tech stacks apply.
            languages: Languages of a stack-specific context; the project's
                tech_stack languages are used when omitted.
        """
        if not self.is_included("rulepacks", rulepack_id, project):
            return False
        if project is None:
            return True
        rulepack = self._lookup(rulepack_id)
        return rulepack is None or self._stack_allows(rulepack, project, languages)

    def resolve_rulepacks(
        self,
        rulepack_ids,
        project: Optional[Project] = None,
        referenced_by: str = "",
        languages: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """Flatten rulepacks into an ordered list of rules.

        Parents listed in ``extends`` are expanded before the rulepack's own
        rules. Each rulepack contributes at most once; rule text itself is
        never de-duplicated. Missing ids and cyclic ``extends`` are logged and
        skipped. Rulepacks excluded for the project are skipped together with
        whatever they would have pulled in.

        Args:
            rulepack_ids: Ids to expand, in order.
            project: Optional project for rulepack inclusion filtering.
            referenced_by: Name of the referencing manifest, for warnings.
            languages: Optional stack-specific language context.

        Returns:
            Flat list of rule strings.
        """
        rules: List[str] = []
        visited: Set[str] = set()
        for rulepack_id in rulepack_ids:
            self._expand(rulepack_id, project, languages, visited, [], rules, referenced_by)
        return rules

    def _expand(
        self,
        rulepack_id: str,
        project: Optional[Project],
        languages: Optional[Sequence[str]],
        visited: Set[str],
        stack: List[str],
        rules: List[str],
        referenced_by: str,
    ) -> None:
        if rulepack_id in stack:
            cycle = " -> ".join(stack[stack.index(rulepack_id):] + [rulepack_id])
            logger.warning("Cyclic rulepack inheritance truncated: %s", cycle)
            return
        if rulepack_id in visited:
            return

        if project is not None and not self.is_included("rulepacks", rulepack_id, project):
            logger.debug("Rulepack '%s' excluded by project '%s'", rulepack_id, project.id)
            return

        rulepack = self._lookup(rulepack_id)
        if rulepack is None:
            parent = stack[-1] if stack else referenced_by
            if parent:
                logger.warning("Rulepack not found: %s (referenced by %s)", rulepack_id, parent)
            else:
                logger.warning("Rulepack not found: %s", rulepack_id)
            return

        if project is not None and not self._stack_allows(rulepack, project, languages):
            logger.debug("Rulepack '%s' excluded by tech stack of project '%s'", rulepack_id, project.id)
            return

        visited.add(rulepack_id)
        stack.append(rulepack_id)
        for parent_id in rulepack.extends:
            self._expand(parent_id, project, languages, visited, stack, rules, referenced_by)
        stack.pop()
        rules.extend(rulepack.rules)

    def resolve_agent_rules(
        self,
        agent: Agent,
        project: Optional[Project] = None,
        languages: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """Rules for an agent: its rulepacks, then the project's custom rules."""
        rules = self.resolve_rulepacks(
            agent.rulepacks, project, referenced_by=f"agent {agent.id}", languages=languages,
        )
        if project is not None:
            rules.extend(project.ai_tools.custom_rules)
        return rules

    def resolve_project_rules(
        self,
        project: Project,
        languages: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """Project-level rules: preferred_rulepacks flattened, then custom_rules."""
        rules = self.resolve_rulepacks(
            project.ai_tools.preferred_rulepacks,
            project,
            referenced_by=f"project {project.id}",
            languages=languages,
        )
        rules.extend(project.ai_tools.custom_rules)
        return rules
