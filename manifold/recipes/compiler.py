"""
compiler.py - Compile recipes into bash scripts.

The compiler turns one Recipe into one self-contained bash script for one
tool. It never runs anything; it only emits text. Compilation happens in
four phases:

1. Partition steps around the optional loop (pre-loop, loop body, post-loop).
2. Lower each step: variable substitution, document hand-off, conversation
   continuation, backend invocation, condition guards.
3. Wrap the loop body in a counted ``for`` loop.
4. Assemble header, directory/log setup, variables and the step groups.

Usage:
    from manifold.recipes.compiler import CompileRun

    run = CompileRun(store, project=project)
    script_text = run.compile(store.load_recipe("bugfix-loop"), "claude-code")
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from manifold.config.resolver import OverrideResolver, resolve_model, resolve_model_source
from manifold.recipes.backends import BackendRegistry, StepInvocation, ToolBackend, default_registry
from manifold.recipes.backends.base import DEFAULT_DOCS_DIR, document_path, shell_escape
from manifold.recipes.script import Blank, Block, Comment, Line, Node, Script
from manifold.spec.errors import RecipeCompileError
from manifold.spec.types import (
    Agent,
    CheckType,
    ConditionType,
    ConversationStrategy,
    Feature,
    LoopConditionType,
    Project,
    Recipe,
    RecipeStep,
)

logger = logging.getLogger(__name__)

DEFAULT_LOGS_DIR = ".recipe-logs"

_TEMPLATE_VAR_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.-]+)\s*\}\}")


# =============================================================================
# Helpers
# =============================================================================


def shell_var_name(key: str) -> str:
    """Upper-case a variable key into a valid shell variable name."""
    name = re.sub(r"[^A-Z0-9_]", "_", key.upper())
    if name[:1].isdigit():
        name = "_" + name
    return name


def substitute_variables(text: str, keys) -> str:
    """Replace ``{{key}}`` with ``${KEY}`` for every declared key.

    Placeholders for undeclared keys are left as they are.
    """
    declared = set(keys)

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key in declared:
            return "${" + shell_var_name(key) + "}"
        return match.group(0)

    return _TEMPLATE_VAR_RE.sub(replace, text)


def _references_to_shell(text: str) -> str:
    """Turn every ``{{name}}`` in a variable default into ``${NAME}``."""
    return _TEMPLATE_VAR_RE.sub(lambda m: "${" + shell_var_name(m.group(1)) + "}", text)


def document_var_name(path: str) -> str:
    """Shell variable holding the content of an included document."""
    basename = path.rsplit("/", 1)[-1]
    return "DOC_CONTENT_" + re.sub(r"[^A-Z0-9]", "_", basename.upper())


def document_var_names(paths) -> List[str]:
    """Distinct shell variables for a step's documents, in order.

    Paths that map to the same name get a numeric suffix (``_2``, ``_3``...).
    """
    names: List[str] = []
    used: Set[str] = set()
    for path in paths:
        base = name = document_var_name(path)
        counter = 1
        while name in used:
            counter += 1
            name = f"{base}_{counter}"
        used.add(name)
        names.append(name)
    return names


def _single_quote(text: str) -> str:
    return "'" + text.replace("'", "'\\''") + "'"


class AgentCache:
    """Per-run cache of agents keyed by id, remembering misses too."""

    def __init__(self, lookup):
        self._lookup = lookup
        self._agents: Dict[str, Optional[Agent]] = {}

    def get(self, agent_id: str) -> Optional[Agent]:
        if agent_id not in self._agents:
            self._agents[agent_id] = self._lookup(agent_id)
        return self._agents[agent_id]

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)


@dataclass(frozen=True)
class Partition:
    """Steps grouped around the loop."""
    pre_loop: Tuple[RecipeStep, ...]
    loop_body: Tuple[RecipeStep, ...] = ()
    post_loop: Tuple[RecipeStep, ...] = ()

    @property
    def has_loop(self) -> bool:
        return bool(self.loop_body)


def partition_steps(recipe: Recipe) -> Partition:
    """Split recipe steps into pre-loop, loop-body and post-loop groups.

    Loop step ids that do not exist are ignored with a warning; when none of
    them exist the recipe is treated as having no loop. Steps lying between
    loop steps without being named by the loop belong to no group and are
    reported.
    """
    steps = recipe.steps
    if recipe.loop is None or not recipe.loop.steps:
        return Partition(pre_loop=steps)

    index_of = {step.id: i for i, step in enumerate(steps)}
    indices = []
    for step_id in recipe.loop.steps:
        if step_id in index_of:
            indices.append(index_of[step_id])
        else:
            logger.warning("Recipe %s: loop references unknown step '%s'", recipe.id, step_id)

    if not indices:
        return Partition(pre_loop=steps)

    first, last = min(indices), max(indices)
    in_loop = set(indices)
    for i in range(first, last + 1):
        if i not in in_loop:
            logger.warning(
                "Recipe %s: step '%s' lies inside the loop range but is not "
                "listed in loop.steps; it is not emitted",
                recipe.id, steps[i].id,
            )

    return Partition(
        pre_loop=steps[:first],
        loop_body=tuple(steps[i] for i in range(first, last + 1) if i in in_loop),
        post_loop=steps[last + 1:],
    )


# =============================================================================
# Compilation Run
# =============================================================================


class CompileRun:
    """Context for compiling recipes against one manifest snapshot.

    Owns the agent cache and the resolver for the run; nothing is shared with
    other runs.

    Args:
        store: ManifestStore snapshot to read agents and rulepacks from.
        project: Project in effect (model and agent filtering), if any.
        feature: Feature in effect (model override, context variables), if any.
        resolver: Override resolver; built from the store when omitted.
        registry: Backend registry; built-in backends when omitted.
    """

    def __init__(
        self,
        store,
        project: Optional[Project] = None,
        feature: Optional[Feature] = None,
        resolver: Optional[OverrideResolver] = None,
        registry: Optional[BackendRegistry] = None,
    ):
        self.store = store
        self.project = project
        self.feature = feature
        self.resolver = resolver or OverrideResolver.from_store(store)
        self.registry = registry or default_registry()
        self.agents = AgentCache(store.get_agent)

        settings = getattr(store, "settings", None)
        self.docs_dir = getattr(settings, "docs_dir", DEFAULT_DOCS_DIR)
        self.logs_dir = getattr(settings, "logs_dir", DEFAULT_LOGS_DIR)

    @property
    def feature_context(self) -> Dict[str, str]:
        if self.feature and self.feature.recipe:
            return self.feature.recipe.context_dict
        return {}

    def variable_defaults(self, recipe: Recipe) -> Dict[str, str]:
        """Default value per variable key; feature context wins over recipe."""
        defaults = dict(recipe.variables_dict)
        defaults.update(self.feature_context)
        return defaults

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def compile(self, recipe: Recipe, tool: str, generated_at: Optional[datetime] = None) -> str:
        """Compile a recipe for a tool and return the script text.

        Raises:
            RecipeCompileError: If the recipe has no steps.
            UnknownToolError: If no backend is registered for tool.
        """
        return self.build_script(recipe, tool, generated_at).render()

    def build_script(
        self,
        recipe: Recipe,
        tool: str,
        generated_at: Optional[datetime] = None,
    ) -> Script:
        """Compile a recipe into script IR."""
        if not recipe.steps:
            raise RecipeCompileError(recipe.id, "recipe has no steps")

        backend = self.registry.get(tool)
        partition = partition_steps(recipe)
        step_numbers = {step.id: i + 1 for i, step in enumerate(recipe.steps)}

        script = Script()
        script.extend(self._header(recipe, backend, generated_at))
        script.extend(self._setup(recipe, backend))
        script.extend(self._variables(recipe))

        for index, step in enumerate(partition.pre_loop):
            script.extend(self.lower_step(recipe, step, index, step_numbers[step.id], backend))

        if partition.has_loop:
            script.extend(self._loop(recipe, partition, step_numbers, backend))

        for index, step in enumerate(partition.post_loop):
            script.extend(self.lower_step(recipe, step, index, step_numbers[step.id], backend))

        done = "Feature" if self.feature else "Recipe"
        script.line(f'echo "✅ {done} completed!"')
        return script

    # -------------------------------------------------------------------------
    # Phase 2: step lowering
    # -------------------------------------------------------------------------

    def step_model(self, recipe: Recipe, step: RecipeStep, agent: Agent) -> Optional[str]:
        """step.model > recipe.model > feature > project > agent default."""
        return step.model or recipe.model or resolve_model(self.feature, self.project, agent)

    def build_task(self, recipe: Recipe, step: RecipeStep) -> str:
        """Task text with variables substituted and hand-off sections appended."""
        task = substitute_variables(step.task, self.variable_defaults(recipe))

        if step.include_documents:
            parts = [task, "", "## Reference Documents (Context)", ""]
            names = document_var_names(step.include_documents)
            for path, var in zip(step.include_documents, names):
                parts.extend([
                    f"### Document: `{path}`",
                    "",
                    "${" + var + "}",
                    "",
                ])
            parts.append("**Please use the documents above as context for your work.**")
            task = "\n".join(parts)

        if step.output_document:
            task += (
                "\n\n**IMPORTANT**: Save your complete response to the file: "
                f"`{step.output_document}`"
            )
        return task

    def _document_loaders(self, step: RecipeStep) -> List[Node]:
        if not step.include_documents:
            return []
        nodes: List[Node] = [Comment("Load documents for this step")]
        names = document_var_names(step.include_documents)
        for path, var in zip(step.include_documents, names):
            location = document_path(self.docs_dir, path)
            nodes.append(Block(
                f'if [ -f "{location}" ]; then',
                [Line(f'{var}=$(cat "{location}")')],
                else_body=[Line(f'{var}="[Document not found: {shell_escape(path)}]"')],
            ))
        return nodes

    def _condition_guard(self, step: RecipeStep) -> List[Node]:
        condition = step.condition
        if condition is None or condition.type != ConditionType.ON_SUCCESS:
            return []

        check = condition.check
        if check is None:
            return [Comment("Condition: on-success (no check configured)")]

        if check.type == CheckType.CONTAINS:
            expected = shell_escape(check.value)
            return [Block(
                f'if [[ "$RESPONSE" != *"{expected}"* ]]; then',
                [
                    Line(f'echo "⚠️  Condition not met (expected: {expected})"'),
                    Line("exit 1"),
                ],
            )]
        if check.type == CheckType.REGEX:
            return [
                Line(f"STEP_PATTERN={_single_quote(check.pattern)}"),
                Block(
                    'if [[ ! "$RESPONSE" =~ $STEP_PATTERN ]]; then',
                    [
                        Line(f'echo "⚠️  Condition not met (pattern: {shell_escape(check.pattern)})"'),
                        Line("exit 1"),
                    ],
                ),
            ]
        if check.type == CheckType.COMMAND:
            return [Block(f"if ! {check.cmd}; then", [
                Line(f'echo "⚠️  Condition not met (command failed: {shell_escape(check.cmd)})"'),
                Line("exit 1"),
            ])]

        prompt = shell_escape(check.prompt or "Approve this step's result? (y/n) ")
        return [
            Line(f'read -r -p "{prompt}" REPLY'),
            Block('if [[ ! "$REPLY" =~ ^[Yy]$ ]]; then', [
                Line('echo "⚠️  Condition not met (not approved)"'),
                Line("exit 1"),
            ]),
        ]

    def _confirmation(self) -> List[Node]:
        return [
            Line('read -r -p "Continue to next step? (y/n) " REPLY'),
            Block('if [[ ! "$REPLY" =~ ^[Yy]$ ]]; then', [
                Line('echo "⏸️  Recipe execution paused by user."'),
                Line("exit 0"),
            ]),
        ]

    def lower_step(
        self,
        recipe: Recipe,
        step: RecipeStep,
        index: int,
        step_number: int,
        backend: ToolBackend,
    ) -> List[Node]:
        """Lower one step into script nodes.

        Args:
            recipe: Recipe the step belongs to.
            step: Step to lower.
            index: Position of the step within its partition.
            step_number: 1-based position of the step within the recipe.
            backend: Target tool backend.

        Returns:
            Nodes for the step, ending with a blank line.
        """
        title = f"Step {step_number}: {step.id} ({step.agent})"
        agent = self.agents.get(step.agent)
        if agent is None:
            logger.warning(
                "Recipe %s: agent '%s' not found for step '%s'; skipping step",
                recipe.id, step.agent, step.id,
            )
            return [
                Comment(f"{title} skipped: agent '{step.agent}' not found"),
                Line(f'echo "⚠️  Skipping step {step.id}: agent {step.agent} not found"'),
                Blank(),
            ]
        if self.project is not None and not self.resolver.should_include_agent(agent.id, self.project):
            logger.warning(
                "Recipe %s: agent '%s' is excluded by project '%s'; skipping step '%s'",
                recipe.id, agent.id, self.project.id, step.id,
            )
            return [
                Comment(f"{title} skipped: agent '{agent.id}' excluded by project {self.project.id}"),
                Line(f'echo "⚠️  Skipping step {step.id}: agent {agent.id} excluded"'),
                Blank(),
            ]

        strategy_continues = recipe.conversation_strategy == ConversationStrategy.CONTINUE
        continuation = (
            strategy_continues
            and step.continue_conversation is not False
            and index > 0
        )
        invocation = StepInvocation(
            recipe_id=recipe.id,
            step=step,
            step_number=step_number,
            agent=agent,
            task=self.build_task(recipe, step),
            model=self.step_model(recipe, step, agent),
            continuation=continuation,
            chain_start=strategy_continues and not continuation,
            options=recipe.options_for(backend.id),
            documents=step.include_documents,
            docs_dir=self.docs_dir,
        )

        body: List[Node] = []
        body.extend(self._document_loaders(step))
        body.extend(backend.emit_step(invocation))
        body.extend(backend.emit_output_document(invocation))
        body.extend(self._condition_guard(step))

        condition = step.condition
        if condition is not None and condition.type == ConditionType.FILE_EXISTS and condition.check:
            path = shell_escape(condition.check.value)
            body = [Block(
                f'if [ -f "{path}" ]; then',
                [Line(f'echo "  (Skipping: file {path} exists)"')],
                else_body=body,
            )]
        elif condition is not None and condition.type == ConditionType.USER_DECISION:
            prompt = shell_escape(
                (condition.check.prompt if condition.check else "") or f"Execute step {step.id}? (y/n) "
            )
            body = [
                Line(f'read -r -p "{prompt}" REPLY'),
                Block(
                    'if [[ "$REPLY" =~ ^[Yy]$ ]]; then',
                    body,
                    else_body=[Line(f'echo "  (Skipping step {step.id})"')],
                ),
            ]
        elif condition is not None and condition.type == ConditionType.ON_FAILURE:
            body.insert(0, Comment("Condition: on-failure is evaluated by the caller"))

        nodes: List[Node] = [
            Comment(title),
            Line(f'echo "▶️  {title}"'),
        ]
        nodes.extend(body)
        if step.wait_for_confirmation:
            nodes.extend(self._confirmation())
        nodes.append(Line('echo ""'))
        nodes.append(Blank())
        return nodes

    # -------------------------------------------------------------------------
    # Phase 3: loop
    # -------------------------------------------------------------------------

    def _loop(
        self,
        recipe: Recipe,
        partition: Partition,
        step_numbers: Dict[str, int],
        backend: ToolBackend,
    ) -> List[Node]:
        loop = recipe.loop
        max_iterations = loop.max_iterations
        body: List[Node] = [
            Line('echo ""'),
            Line(f'echo "▶️  Iteration $iteration/{max_iterations}"'),
        ]
        for index, step in enumerate(partition.loop_body):
            body.extend(self.lower_step(recipe, step, index, step_numbers[step.id], backend))

        condition = loop.condition
        if condition is not None and condition.type == LoopConditionType.COMMAND and condition.cmd:
            body.append(Block(f"if {condition.cmd}; then", [
                Line('echo "✓ Loop condition met, exiting loop."'),
                Line("break"),
            ]))
        elif condition is not None and condition.type == LoopConditionType.USER_DECISION:
            prompt = shell_escape(condition.prompt or "Continue loop? (y/n) ")
            body.append(Block(f'if [ "$iteration" -lt {max_iterations} ]; then', [
                Line(f'read -r -p "{prompt}" REPLY'),
                Block('if [[ ! "$REPLY" =~ ^[Yy]$ ]]; then', [
                    Line('echo "✓ Loop stopped by user."'),
                    Line("break"),
                ]),
            ]))

        names = " → ".join(step.id for step in partition.loop_body)
        return [
            Comment(f"Loop: {names} (max {max_iterations} iterations)"),
            Block(f"for iteration in $(seq 1 {max_iterations}); do", body, closer="done"),
            Blank(),
        ]

    # -------------------------------------------------------------------------
    # Phase 4: assembly
    # -------------------------------------------------------------------------

    def _model_header(self, recipe: Recipe) -> str:
        resolution = resolve_model_source(self.feature, self.project)
        if resolution.model:
            return f"{resolution.model} ({resolution.label})"
        if recipe.model:
            return f"{recipe.model} (recipe-level)"
        return "agent defaults"

    def _header(
        self,
        recipe: Recipe,
        backend: ToolBackend,
        generated_at: Optional[datetime],
    ) -> List[Node]:
        timestamp = (generated_at or datetime.now(timezone.utc)).isoformat()
        nodes: List[Node] = [Line("#!/bin/bash"), Blank()]
        if self.feature:
            nodes.append(Comment(f"Feature: {self.feature.id}"))
        nodes.append(Comment(f"Recipe: {recipe.id}"))
        if recipe.description:
            nodes.append(Comment(f"Description: {recipe.description.strip()}"))
        if self.project:
            nodes.append(Comment(f"Project: {self.project.id}"))
        nodes.extend([
            Comment(f"Tool: {backend.id}"),
            Comment(f"Model: {self._model_header(recipe)}"),
            Comment(f"Generated: {timestamp}"),
            Blank(),
            Line("set -e"),
            Blank(),
        ])
        return nodes

    def _setup(self, recipe: Recipe, backend: ToolBackend) -> List[Node]:
        log_name = f"feature-{self.feature.id}" if self.feature else recipe.id
        nodes: List[Node] = [
            Comment("Setup directories"),
            Line(f'RECIPE_DOCS_DIR="{self.docs_dir}"'),
            Line(f'RECIPE_LOGS_DIR="{self.logs_dir}"'),
            Line('mkdir -p "$RECIPE_DOCS_DIR" "$RECIPE_LOGS_DIR"'),
            Blank(),
            Comment("Setup logging"),
            Line(f'LOG_FILE="$RECIPE_LOGS_DIR/{log_name}-$(date +%Y%m%d-%H%M%S).log"'),
            Line('echo "📝 Logging to: $LOG_FILE"'),
            Line('echo ""'),
            Blank(),
            Comment("Redirect all output to both console and log file"),
            Line('exec > >(tee -a "$LOG_FILE") 2>&1'),
            Blank(),
        ]
        nodes.extend(backend.emit_context_loader())
        nodes.extend([
            Blank(),
            Comment("Load project context for system prompts"),
            Line('echo "📋 Loading project context..."'),
            Line("load_project_context"),
            Block(
                'if [ -n "$PROJECT_CONTEXT" ]; then',
                [Line('echo "✓ Project context loaded"')],
                else_body=[Line('echo "⚠️  No project context found"')],
            ),
            Line('echo ""'),
            Blank(),
        ])
        return nodes

    def _variables(self, recipe: Recipe) -> List[Node]:
        defaults = self.variable_defaults(recipe)
        if not defaults:
            return []
        context = self.feature_context
        nodes: List[Node] = [Comment("Variables (override via environment)")]
        for key, value in defaults.items():
            source = "  # feature context" if key in context else ""
            default = _references_to_shell(shell_escape(value))
            nodes.append(Line(f': ${{{shell_var_name(key)}:="{default}"}}{source}'))
        nodes.append(Blank())
        return nodes


def compile_recipe(
    store,
    recipe_id: str,
    tool: str,
    project: Optional[Project] = None,
    feature: Optional[Feature] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """Compile a recipe by id with a fresh CompileRun.

    Raises:
        ManifestNotFoundError: If the recipe does not exist.
        RecipeCompileError: If the recipe has no steps.
        UnknownToolError: If tool has no backend.
    """
    run = CompileRun(store, project=project, feature=feature)
    return run.compile(store.load_recipe(recipe_id), tool, generated_at)
