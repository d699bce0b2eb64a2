"""
claude.py - Backend for the Claude Code CLI.

Claude Code runs non-interactively with ``--print`` and can continue a
conversation. The first step of a continuation chain captures the
conversation id from the response so later steps resume that exact session;
when no id was captured they fall back to ``--continue``.

Tool options (``toolOptions.claude-code``):
    allowedTools: list or comma string -> --allowedTools "a,b"
    disallowedTools: list or comma string -> --disallowedTools "a,b"
    permissionMode: --permission-mode value (default: acceptEdits)
"""

from __future__ import annotations

from typing import List

from manifold.recipes.script import Block, Comment, Line, Node
from .base import (
    BackendCapabilities,
    StepInvocation,
    ToolBackend,
    option_list,
    shell_escape,
)

DEFAULT_PERMISSION_MODE = "acceptEdits"

# Matches "Conversation ID: <id>" or "session_id: <id>" in CLI output
CONVERSATION_ID_PATTERN = "(Conversation ID|session_id): [A-Za-z0-9-]+"


class ClaudeCodeBackend(ToolBackend):
    """Conversation-capable backend emitting ``claude`` invocations."""

    recipes_dir = ".claude/.cs.recipes"
    context_files = (".claude/project-context.json", "CLAUDE.md")

    @property
    def id(self) -> str:
        return "claude-code"

    @property
    def label(self) -> str:
        return "Claude Code"

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            id=self.id,
            label=self.label,
            programmatic=True,
            supports_continuation=True,
            supports_model_flag=True,
        )

    def build_flags(self, invocation: StepInvocation) -> List[str]:
        """Flags between the agent mention and the prompt, in emission order."""
        flags: List[str] = []
        if invocation.continuation:
            flags.append('"${CONTINUE_ARGS[@]}"')
        if invocation.model:
            flags.append(f'--model "{shell_escape(invocation.model)}"')

        options = invocation.options
        allowed = option_list(options.get("allowedTools"))
        if allowed:
            flags.append(f'--allowedTools "{shell_escape(",".join(allowed))}"')
        disallowed = option_list(options.get("disallowedTools"))
        if disallowed:
            flags.append(f'--disallowedTools "{shell_escape(",".join(disallowed))}"')

        mode = options.get("permissionMode") or DEFAULT_PERMISSION_MODE
        flags.append(f'--permission-mode "{shell_escape(mode)}"')
        flags.append('--append-system-prompt "$SYSTEM_PROMPT"')
        return flags

    def emit_step(self, invocation: StepInvocation) -> List[Node]:
        step = invocation.step
        nodes: List[Node] = [
            Comment("Build system prompt with project context and recipe info"),
            Line('SYSTEM_PROMPT=""'),
            Block('if [ -n "$PROJECT_CONTEXT" ]; then', [
                Line('SYSTEM_PROMPT="$PROJECT_CONTEXT\\n\\n---\\n\\n"'),
            ]),
            Line(
                f'SYSTEM_PROMPT="${{SYSTEM_PROMPT}}Recipe: {invocation.recipe_id}'
                f'\\nStep: {invocation.step_number} ({step.id})"'
            ),
        ]
        if invocation.agent.prompt.system:
            system = shell_escape(invocation.agent.prompt.system.strip())
            nodes.append(Line(f'SYSTEM_PROMPT="${{SYSTEM_PROMPT}}\\n\\n{system}"'))

        if invocation.continuation:
            nodes.extend([
                Line("CONTINUE_ARGS=(--continue)"),
                Block('if [ -n "$CONVERSATION_ID" ]; then', [
                    Line('CONTINUE_ARGS=(--resume "$CONVERSATION_ID")'),
                ]),
            ])

        flags = " ".join(self.build_flags(invocation))
        task = shell_escape(invocation.task)
        nodes.extend([
            Line('echo "⚡ Executing with claude-code..."'),
            Line(f'RESPONSE=$(claude @{invocation.agent.id} {flags} --print "{task}")'),
            Line('echo "$RESPONSE"'),
        ])

        if invocation.chain_start:
            nodes.extend([
                Comment("Capture conversation id for the following steps"),
                Line(
                    'CONVERSATION_ID=$(echo "$RESPONSE" | '
                    f"grep -oE '{CONVERSATION_ID_PATTERN}' | head -n 1 | "
                    "sed -E 's/.*: //' || true)"
                ),
            ])
        return nodes
