"""
base.py - ToolBackend interface for recipe compilation.

A backend owns the invocation syntax of one target tool: how an agent is
addressed, how a conversation is continued, which permission flags exist.
The compiler hands it a fully-prepared StepInvocation and gets script nodes
back; it never branches on the tool name itself.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

from manifold.recipes.script import Block, Comment, Line, Node
from manifold.spec.types import Agent, RecipeStep

DEFAULT_DOCS_DIR = ".recipe-docs"


@dataclass(frozen=True)
class BackendCapabilities:
    """What a backend can express."""
    id: str
    label: str
    programmatic: bool = True
    supports_continuation: bool = False
    supports_model_flag: bool = False


@dataclass(frozen=True)
class StepInvocation:
    """Everything a backend needs to emit one recipe step.

    task is the fully-substituted task text (variables replaced, document
    section and output instruction appended) and is not yet shell-escaped.
    """
    recipe_id: str
    step: RecipeStep
    step_number: int
    agent: Agent
    task: str
    model: Optional[str] = None
    continuation: bool = False
    chain_start: bool = False
    options: Dict[str, Any] = field(default_factory=dict)
    documents: Tuple[str, ...] = ()
    docs_dir: str = DEFAULT_DOCS_DIR


def shell_escape(text: str) -> str:
    """Escape text for embedding inside a double-quoted bash string.

    Backslashes, double quotes and backticks are escaped. ``$`` is left alone
    so ``${VAR}`` references still expand.
    """
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("`", "\\`")


def option_list(value: Any) -> List[str]:
    """Normalise a tool option that may be a string or a list of strings."""
    if value is None or value is False:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def document_path(docs_dir: str, path: str) -> str:
    """Location of a hand-off document inside the documents directory."""
    return f"{docs_dir}/{PurePosixPath(path).name}"


class ToolBackend(ABC):
    """Abstract base class for tool backends."""

    #: Directory (relative to the project output) holding generated recipes
    recipes_dir: str = ".cs.recipes"

    #: Candidate files holding project context, checked in order
    context_files: Tuple[str, ...] = ()

    @property
    @abstractmethod
    def id(self) -> str:
        """Tool name this backend is registered under."""
        ...

    @property
    def label(self) -> str:
        return self.id

    @abstractmethod
    def capabilities(self) -> BackendCapabilities:
        """Return what this backend supports."""
        ...

    @abstractmethod
    def emit_step(self, invocation: StepInvocation) -> List[Node]:
        """Emit the nodes invoking the agent and capturing ``$RESPONSE``."""
        ...

    def emit_output_document(self, invocation: StepInvocation) -> List[Node]:
        """Emit the nodes saving ``$RESPONSE`` to the step's output document."""
        path = invocation.step.output_document
        if not path:
            return []
        target = document_path(invocation.docs_dir, path)
        return [
            Line(f'echo "$RESPONSE" > "{target}"'),
            Line(f'echo "✓ Document saved: {shell_escape(path)}"'),
        ]

    def emit_context_loader(self) -> List[Node]:
        """Emit a ``load_project_context`` function for this tool."""
        body: List[Node] = [Line('PROJECT_CONTEXT=""')]
        for path in self.context_files:
            body.append(Block(
                f'if [ -z "$PROJECT_CONTEXT" ] && [ -f "{path}" ]; then',
                [Line(f'PROJECT_CONTEXT=$(cat "{path}")')],
            ))
        return [
            Comment("Function to load project context"),
            Block("load_project_context() {", body, closer="}"),
        ]
