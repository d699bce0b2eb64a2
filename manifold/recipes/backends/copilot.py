"""
copilot.py - Backend for the GitHub Copilot CLI.

Agents are addressed with an ``@agent`` prefix in the prompt. Permissions are
expressed as boolean and repeated list flags.

Tool options (``toolOptions.copilot-cli``):
    allowAllTools -> --allow-all-tools
    allowAllPaths -> --allow-all-paths
    disallowTempDir -> --disallow-temp-dir
    addDirs -> --add-dir "<dir>" per entry
    allowTools -> --allow-tool "<tool>" per entry
    denyTools -> --deny-tool "<tool>" per entry
"""

from __future__ import annotations

from typing import List

from manifold.recipes.script import Line, Node
from .base import (
    BackendCapabilities,
    StepInvocation,
    ToolBackend,
    option_list,
    shell_escape,
)

_BOOLEAN_FLAGS = (
    ("allowAllTools", "--allow-all-tools"),
    ("allowAllPaths", "--allow-all-paths"),
    ("disallowTempDir", "--disallow-temp-dir"),
)

_REPEATED_FLAGS = (
    ("addDirs", "--add-dir"),
    ("allowTools", "--allow-tool"),
    ("denyTools", "--deny-tool"),
)


class CopilotCliBackend(ToolBackend):
    """Mention-syntax backend emitting ``copilot`` invocations."""

    recipes_dir = ".cs.recipes"
    context_files = (".github/copilot-instructions.md",)

    @property
    def id(self) -> str:
        return "copilot-cli"

    @property
    def label(self) -> str:
        return "GitHub Copilot CLI"

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            id=self.id,
            label=self.label,
            programmatic=True,
            supports_continuation=True,
            supports_model_flag=True,
        )

    def build_flags(self, invocation: StepInvocation) -> List[str]:
        flags: List[str] = []
        if invocation.continuation:
            flags.append("--continue")
        if invocation.model:
            flags.append(f'--model "{shell_escape(invocation.model)}"')

        options = invocation.options
        for key, flag in _BOOLEAN_FLAGS:
            if options.get(key):
                flags.append(flag)
        for key, flag in _REPEATED_FLAGS:
            for value in option_list(options.get(key)):
                flags.append(f'{flag} "{shell_escape(value)}"')
        return flags

    def emit_step(self, invocation: StepInvocation) -> List[Node]:
        flags = self.build_flags(invocation)
        flags_str = (" " + " ".join(flags)) if flags else ""
        prompt = shell_escape(f"@{invocation.agent.id} {invocation.task}")
        return [
            Line('echo "⚡ Executing with copilot-cli..."'),
            Line(f'RESPONSE=$(copilot -p "{prompt}"{flags_str})'),
            Line('echo "$RESPONSE"'),
        ]
