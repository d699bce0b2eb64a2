"""
backends - Tool backend registry.

Each target tool is a ToolBackend registered under its tool name. Adding a
tool means registering a backend; the compiler looks backends up here.

Usage:
    from manifold.recipes.backends import get_backend, list_backends

    backend = get_backend("copilot-cli")
    nodes = backend.emit_step(invocation)
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from manifold.spec.errors import UnknownToolError
from .base import (
    BackendCapabilities,
    StepInvocation,
    ToolBackend,
    document_path,
    option_list,
    shell_escape,
)
from .claude import ClaudeCodeBackend
from .copilot import CopilotCliBackend
from .manual import ManualBackend

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Maps tool names to backends."""

    def __init__(self):
        self._backends: Dict[str, ToolBackend] = {}

    def register(self, backend: ToolBackend, replace: bool = False) -> None:
        """Register a backend under its id.

        Raises:
            ValueError: If the id is taken and replace is False.
        """
        if backend.id in self._backends and not replace:
            raise ValueError(f"Backend already registered for tool: {backend.id}")
        self._backends[backend.id] = backend
        logger.debug("Registered backend %s (%s)", backend.id, type(backend).__name__)

    def get(self, tool: str) -> ToolBackend:
        """Get the backend for a tool.

        Raises:
            UnknownToolError: If no backend is registered for tool.
        """
        backend = self._backends.get(tool)
        if backend is None:
            raise UnknownToolError(tool, self.ids())
        return backend

    def has(self, tool: str) -> bool:
        return tool in self._backends

    def ids(self) -> List[str]:
        return sorted(self._backends)

    def all(self) -> List[ToolBackend]:
        return [self._backends[tool] for tool in self.ids()]


def create_default_registry() -> BackendRegistry:
    """Build a registry holding every built-in backend."""
    registry = BackendRegistry()
    registry.register(ClaudeCodeBackend())
    registry.register(CopilotCliBackend())
    registry.register(ManualBackend(
        "cursor", "Cursor Composer", ".cursor/.cs.recipes",
        context_files=(".cursor/project-rules.json",),
    ))
    registry.register(ManualBackend(
        "windsurf", "Windsurf Cascade", ".windsurf/.cs.recipes",
        context_files=(".windsurf/rules/project-context.md",),
    ))
    registry.register(ManualBackend(
        "github-copilot", "GitHub Copilot Chat", ".github/.cs.recipes",
        context_files=(".github/copilot-instructions.md",),
    ))
    return registry


_default_registry: Optional[BackendRegistry] = None


def default_registry() -> BackendRegistry:
    """Shared registry of built-in backends (backends hold no run state)."""
    global _default_registry
    if _default_registry is None:
        _default_registry = create_default_registry()
    return _default_registry


def get_backend(tool: str) -> ToolBackend:
    """Get a built-in backend by tool name.

    Raises:
        UnknownToolError: If tool is not recognized.
    """
    return default_registry().get(tool)


def list_backends() -> List[str]:
    return default_registry().ids()


__all__ = [
    "BackendCapabilities",
    "BackendRegistry",
    "ClaudeCodeBackend",
    "CopilotCliBackend",
    "ManualBackend",
    "StepInvocation",
    "ToolBackend",
    "create_default_registry",
    "default_registry",
    "document_path",
    "get_backend",
    "list_backends",
    "option_list",
    "shell_escape",
]
