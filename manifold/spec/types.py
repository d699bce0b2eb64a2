"""
types.py - Dataclasses for manifest entities.

These types are the immutable records the resolver and the recipe compiler
work on. Every entity is parsed from YAML through a ``*_from_dict`` function;
unknown keys are ignored and omitted keys take the defaults declared here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class ConversationStrategy(Enum):
    """How consecutive recipe steps share a conversation."""
    SEPARATE = "separate"
    CONTINUE = "continue"


class ConditionType(Enum):
    """When a step condition is evaluated."""
    ALWAYS = "always"
    ON_SUCCESS = "on-success"
    ON_FAILURE = "on-failure"
    USER_DECISION = "user-decision"
    FILE_EXISTS = "file_exists"


class CheckType(Enum):
    """How a step condition inspects the captured response."""
    CONTAINS = "contains"
    REGEX = "regex"
    COMMAND = "command"
    USER_APPROVAL = "user-approval"


class LoopConditionType(Enum):
    """Early-exit strategy for a recipe loop."""
    MAX_ITERATIONS = "max-iterations"
    COMMAND = "command"
    USER_DECISION = "user-decision"


DEFAULT_MAX_ITERATIONS = 3


# =============================================================================
# Rulepacks, Agents, Prompts
# =============================================================================


@dataclass(frozen=True)
class Rulepack:
    """A named, inheritable bundle of rule strings."""
    id: str
    rules: Tuple[str, ...] = ()
    extends: Tuple[str, ...] = ()
    version: str = ""
    description: str = ""
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AgentPrompt:
    """Prompt configuration of an agent."""
    system: str = ""
    user_template: str = ""


@dataclass(frozen=True)
class AgentDefaults:
    """Default invocation parameters of an agent."""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass(frozen=True)
class Agent:
    """A persona usable inside a recipe step."""
    id: str
    purpose: str = ""
    version: str = ""
    description: str = ""
    rulepacks: Tuple[str, ...] = ()
    prompt: AgentPrompt = field(default_factory=AgentPrompt)
    constraints: Tuple[str, ...] = ()
    defaults: AgentDefaults = field(default_factory=AgentDefaults)
    capabilities: Tuple[str, ...] = ()
    tools: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PromptVariable:
    """A placeholder declared by a prompt template."""
    name: str
    required: bool = False
    description: str = ""
    default: Optional[str] = None


@dataclass(frozen=True)
class Prompt:
    """A reusable template with {{var}} placeholders.

    source_path is the slash-separated location of the prompt file relative
    to the prompts directory, without extension (e.g. "refactor/extract-method").
    """
    id: str
    content: str = ""
    description: str = ""
    version: str = ""
    model: Optional[str] = None
    variables: Tuple[PromptVariable, ...] = ()
    tags: Tuple[str, ...] = ()
    source_path: str = ""


# =============================================================================
# Projects and Features
# =============================================================================


@dataclass(frozen=True)
class AIToolsConfig:
    """Per-project AI tool preferences.

    For each category the whitelist and the blacklist are mutually exclusive.
    """
    model: Optional[str] = None
    whitelist_agents: Tuple[str, ...] = ()
    blacklist_agents: Tuple[str, ...] = ()
    whitelist_prompts: Tuple[str, ...] = ()
    blacklist_prompts: Tuple[str, ...] = ()
    whitelist_rulepacks: Tuple[str, ...] = ()
    blacklist_rulepacks: Tuple[str, ...] = ()
    whitelist_recipes: Tuple[str, ...] = ()
    blacklist_recipes: Tuple[str, ...] = ()
    preferred_agents: Tuple[str, ...] = ()
    preferred_rulepacks: Tuple[str, ...] = ()
    custom_rules: Tuple[str, ...] = ()

    def lists_for(self, category: str) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
        """Return (whitelist, blacklist) for a category such as "agents"."""
        return (
            getattr(self, f"whitelist_{category}"),
            getattr(self, f"blacklist_{category}"),
        )


@dataclass(frozen=True)
class TechStack:
    """Technologies used by a project, or by one named part of it."""
    languages: Tuple[str, ...] = ()
    frontend: Tuple[str, ...] = ()
    backend: Tuple[str, ...] = ()
    database: Tuple[str, ...] = ()
    infrastructure: Tuple[str, ...] = ()
    tools: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Project:
    """A target project and its AI tool preferences.

    tech_stack describes the whole project; tech_stacks holds named
    sub-stacks (e.g. "backend", "frontend") as (name, TechStack) pairs.
    """
    id: str
    name: str = ""
    version: str = ""
    description: str = ""
    ai_tools: AIToolsConfig = field(default_factory=AIToolsConfig)
    tech_stack: TechStack = field(default_factory=TechStack)
    tech_stacks: Tuple[Tuple[str, TechStack], ...] = ()
    source_dir: str = ""

    def stack(self, name: str) -> Optional[TechStack]:
        """Return the named sub-stack, or None."""
        return dict(self.tech_stacks).get(name)

    def all_languages(self) -> Tuple[str, ...]:
        """Lower-cased languages of the project stack and every sub-stack."""
        seen: Dict[str, None] = {}
        for stack in (self.tech_stack, *(s for _, s in self.tech_stacks)):
            for language in stack.languages:
                seen.setdefault(language.lower(), None)
        return tuple(seen)


@dataclass(frozen=True)
class FeatureRecipe:
    """Recipe binding of a feature."""
    id: str
    context: Tuple[Tuple[str, str], ...] = ()
    tools: Tuple[str, ...] = ()

    @property
    def context_dict(self) -> Dict[str, str]:
        return dict(self.context)


@dataclass(frozen=True)
class Feature:
    """A project-scoped unit of work bound to a recipe."""
    id: str
    name: str = ""
    version: str = ""
    description: str = ""
    model: Optional[str] = None
    recipe: Optional[FeatureRecipe] = None


# =============================================================================
# Recipes
# =============================================================================


@dataclass(frozen=True)
class ConditionCheck:
    """The check half of a step condition."""
    type: CheckType
    value: str = ""
    pattern: str = ""
    cmd: str = ""
    prompt: str = ""


@dataclass(frozen=True)
class StepCondition:
    """Gate evaluated for a recipe step."""
    type: ConditionType = ConditionType.ALWAYS
    check: Optional[ConditionCheck] = None


@dataclass(frozen=True)
class RecipeStep:
    """One agent invocation in a recipe."""
    id: str
    agent: str
    task: str
    model: Optional[str] = None
    output_document: Optional[str] = None
    include_documents: Tuple[str, ...] = ()
    continue_conversation: Optional[bool] = None
    wait_for_confirmation: bool = False
    condition: Optional[StepCondition] = None


@dataclass(frozen=True)
class LoopCondition:
    """Early-exit condition of a recipe loop."""
    type: LoopConditionType = LoopConditionType.MAX_ITERATIONS
    cmd: str = ""
    prompt: str = ""


@dataclass(frozen=True)
class RecipeLoop:
    """A counted iteration over a contiguous group of steps."""
    steps: Tuple[str, ...] = ()
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    condition: Optional[LoopCondition] = None


@dataclass(frozen=True)
class Recipe:
    """A declarative multi-step workflow."""
    id: str
    steps: Tuple[RecipeStep, ...] = ()
    description: str = ""
    version: str = ""
    tags: Tuple[str, ...] = ()
    tools: Tuple[str, ...] = ()
    variables: Tuple[Tuple[str, str], ...] = ()
    model: Optional[str] = None
    loop: Optional[RecipeLoop] = None
    conversation_strategy: ConversationStrategy = ConversationStrategy.SEPARATE
    tool_options: Tuple[Tuple[str, Tuple[Tuple[str, Any], ...]], ...] = ()

    @property
    def variables_dict(self) -> Dict[str, str]:
        return dict(self.variables)

    def options_for(self, tool: str) -> Dict[str, Any]:
        """Return the toolOptions block for a tool, or an empty dict."""
        for name, options in self.tool_options:
            if name == tool:
                return {key: _thaw(value) for key, value in options}
        return {}

    def step_ids(self) -> Tuple[str, ...]:
        return tuple(step.id for step in self.steps)


# =============================================================================
# Parsing helpers
# =============================================================================


def _freeze(value: Any) -> Any:
    """Convert lists to tuples so option values stay hashable."""
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, dict):
        return tuple((k, _freeze(v)) for k, v in value.items())
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def _str_tuple(values: Any) -> Tuple[str, ...]:
    if not values:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(str(v) for v in values)


def _str_pairs(mapping: Any) -> Tuple[Tuple[str, str], ...]:
    if not mapping:
        return ()
    return tuple((str(k), "" if v is None else str(v)) for k, v in mapping.items())


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def rulepack_from_dict(data: Dict[str, Any]) -> Rulepack:
    """Parse a Rulepack from a dictionary."""
    return Rulepack(
        id=data["id"],
        rules=_str_tuple(data.get("rules", [])),
        extends=_str_tuple(data.get("extends", [])),
        version=str(data.get("version", "")),
        description=data.get("description", "") or "",
        tags=_str_tuple(data.get("tags", [])),
    )


def agent_from_dict(data: Dict[str, Any]) -> Agent:
    """Parse an Agent from a dictionary."""
    prompt_data = data.get("prompt") or {}
    defaults_data = data.get("defaults") or {}

    return Agent(
        id=data["id"],
        purpose=data.get("purpose", "") or "",
        version=str(data.get("version", "")),
        description=data.get("description", "") or "",
        rulepacks=_str_tuple(data.get("rulepacks", [])),
        prompt=AgentPrompt(
            system=prompt_data.get("system", "") or "",
            user_template=prompt_data.get("user_template", "") or "",
        ),
        constraints=_str_tuple(data.get("constraints", [])),
        defaults=AgentDefaults(
            model=_optional_str(defaults_data.get("model")),
            temperature=defaults_data.get("temperature"),
            max_tokens=defaults_data.get("max_tokens"),
        ),
        capabilities=_str_tuple(data.get("capabilities", [])),
        tools=_str_tuple(data.get("tools", [])),
    )


def prompt_from_dict(data: Dict[str, Any], source_path: str = "") -> Prompt:
    """Parse a Prompt from a dictionary."""
    variables = tuple(
        PromptVariable(
            name=v["name"],
            required=bool(v.get("required", False)),
            description=v.get("description", "") or "",
            default=_optional_str(v.get("default")),
        )
        for v in data.get("variables", []) or []
    )

    return Prompt(
        id=data["id"],
        content=data.get("content", "") or "",
        description=data.get("description", "") or "",
        version=str(data.get("version", "")),
        model=_optional_str(data.get("model")),
        variables=variables,
        tags=_str_tuple(data.get("tags", [])),
        source_path=source_path or data["id"],
    )


def ai_tools_from_dict(data: Dict[str, Any]) -> AIToolsConfig:
    """Parse the ai_tools block of a project."""
    return AIToolsConfig(
        model=_optional_str(data.get("model")),
        whitelist_agents=_str_tuple(data.get("whitelist_agents")),
        blacklist_agents=_str_tuple(data.get("blacklist_agents")),
        whitelist_prompts=_str_tuple(data.get("whitelist_prompts")),
        blacklist_prompts=_str_tuple(data.get("blacklist_prompts")),
        whitelist_rulepacks=_str_tuple(data.get("whitelist_rulepacks")),
        blacklist_rulepacks=_str_tuple(data.get("blacklist_rulepacks")),
        whitelist_recipes=_str_tuple(data.get("whitelist_recipes")),
        blacklist_recipes=_str_tuple(data.get("blacklist_recipes")),
        preferred_agents=_str_tuple(data.get("preferred_agents")),
        preferred_rulepacks=_str_tuple(data.get("preferred_rulepacks")),
        custom_rules=_str_tuple(data.get("custom_rules")),
    )


def tech_stack_from_dict(data: Dict[str, Any]) -> TechStack:
    """Parse a tech_stack block (or one entry of tech_stacks)."""
    return TechStack(
        languages=_str_tuple(data.get("languages")),
        frontend=_str_tuple(data.get("frontend")),
        backend=_str_tuple(data.get("backend")),
        database=_str_tuple(data.get("database")),
        infrastructure=_str_tuple(data.get("infrastructure")),
        tools=_str_tuple(data.get("tools")),
    )


def project_from_dict(data: Dict[str, Any], source_dir: str = "") -> Project:
    """Parse a Project from a dictionary."""
    stacks = data.get("tech_stacks") or {}
    return Project(
        id=data["id"],
        name=data.get("name", "") or "",
        version=str(data.get("version", "")),
        description=data.get("description", "") or "",
        ai_tools=ai_tools_from_dict(data.get("ai_tools") or {}),
        tech_stack=tech_stack_from_dict(data.get("tech_stack") or {}),
        tech_stacks=tuple(
            (str(name), tech_stack_from_dict(stack or {})) for name, stack in stacks.items()
        ),
        source_dir=source_dir,
    )


def feature_from_dict(data: Dict[str, Any]) -> Feature:
    """Parse a Feature from a dictionary."""
    recipe_data = data.get("recipe")
    recipe = None
    if recipe_data and recipe_data.get("id"):
        recipe = FeatureRecipe(
            id=recipe_data["id"],
            context=_str_pairs(recipe_data.get("context")),
            tools=_str_tuple(recipe_data.get("tools")),
        )

    return Feature(
        id=data["id"],
        name=data.get("name", "") or "",
        version=str(data.get("version", "")),
        description=data.get("description", "") or "",
        model=_optional_str(data.get("model")),
        recipe=recipe,
    )


def _condition_from_dict(data: Optional[Dict[str, Any]]) -> Optional[StepCondition]:
    if not data:
        return None

    check_data = data.get("check")
    check = None
    if check_data:
        check = ConditionCheck(
            type=CheckType(check_data.get("type", "contains")),
            value=str(check_data.get("value", "") or ""),
            pattern=str(check_data.get("pattern", "") or ""),
            cmd=str(check_data.get("cmd", "") or ""),
            prompt=str(check_data.get("prompt", "") or ""),
        )

    return StepCondition(
        type=ConditionType(data.get("type", "always")),
        check=check,
    )


def recipe_step_from_dict(data: Dict[str, Any]) -> RecipeStep:
    """Parse a RecipeStep from a dictionary."""
    return RecipeStep(
        id=data["id"],
        agent=data["agent"],
        task=data.get("task", "") or "",
        model=_optional_str(data.get("model")),
        output_document=_optional_str(data.get("outputDocument")),
        include_documents=_str_tuple(data.get("includeDocuments")),
        continue_conversation=data.get("continueConversation"),
        wait_for_confirmation=bool(data.get("waitForConfirmation", False)),
        condition=_condition_from_dict(data.get("condition")),
    )


def _loop_from_dict(data: Optional[Dict[str, Any]]) -> Optional[RecipeLoop]:
    if not data:
        return None

    condition_data = data.get("condition")
    condition = None
    if condition_data:
        condition = LoopCondition(
            type=LoopConditionType(condition_data.get("type", "max-iterations")),
            cmd=str(condition_data.get("cmd", "") or ""),
            prompt=str(condition_data.get("prompt", "") or ""),
        )

    return RecipeLoop(
        steps=_str_tuple(data.get("steps")),
        max_iterations=int(data.get("maxIterations") or DEFAULT_MAX_ITERATIONS),
        condition=condition,
    )


def recipe_from_dict(data: Dict[str, Any]) -> Recipe:
    """Parse a Recipe from a dictionary."""
    tool_options = tuple(
        (str(tool), _freeze(dict(options or {})))
        for tool, options in (data.get("toolOptions") or {}).items()
    )

    return Recipe(
        id=data["id"],
        steps=tuple(recipe_step_from_dict(s) for s in data.get("steps", []) or []),
        description=data.get("description", "") or "",
        version=str(data.get("version", "")),
        tags=_str_tuple(data.get("tags")),
        tools=_str_tuple(data.get("tools")),
        variables=_str_pairs(data.get("variables")),
        model=_optional_str(data.get("model")),
        loop=_loop_from_dict(data.get("loop")),
        conversation_strategy=ConversationStrategy(
            data.get("conversationStrategy", "separate")
        ),
        tool_options=tool_options,
    )
