"""
manual.py - Human-in-the-loop backend for editor-integrated assistants.

Editors such as Cursor or Windsurf have no command line to drive, so the
script prints instructions and blocks until the user confirms. ``RESPONSE``
is left empty, which makes every response check downstream fail.
"""

from __future__ import annotations

from typing import List, Tuple

from manifold.recipes.script import Block, Comment, Line, Node
from .base import (
    BackendCapabilities,
    StepInvocation,
    ToolBackend,
    document_path,
    shell_escape,
)


class ManualBackend(ToolBackend):
    """Backend emitting instructions for a tool operated by hand.

    Args:
        tool_id: Tool name the backend is registered under.
        label: Human-readable name of the assistant surface.
        recipes_dir: Output directory for generated recipes.
        context_files: Candidate project context files.
    """

    def __init__(
        self,
        tool_id: str,
        label: str,
        recipes_dir: str,
        context_files: Tuple[str, ...] = (),
    ):
        self._id = tool_id
        self._label = label
        self.recipes_dir = recipes_dir
        self.context_files = context_files

    @property
    def id(self) -> str:
        return self._id

    @property
    def label(self) -> str:
        return self._label

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            id=self.id,
            label=self.label,
            programmatic=False,
        )

    def emit_step(self, invocation: StepInvocation) -> List[Node]:
        nodes: List[Node] = [
            Comment(f"Manual: open {self.label} and execute:"),
            Comment(f"Agent: @{invocation.agent.id}"),
        ]
        if invocation.model:
            nodes.append(Comment(f"Model: {invocation.model}"))
        if invocation.documents:
            nodes.append(Comment("Attach documents:"))
            for path in invocation.documents:
                nodes.append(Comment(f"  - {document_path(invocation.docs_dir, path)}"))
        nodes.append(Comment(f"@{invocation.agent.id} {invocation.task}"))

        nodes.extend([
            Line(
                f'echo "⚠️  Please execute step {invocation.step_number} '
                f'({invocation.step.id}) in {shell_escape(self.label)}"'
            ),
            Line(f'echo "   Agent: @{invocation.agent.id}"'),
            Line('read -r -p "Press Enter when done... " _'),
            Line('RESPONSE=""'),
        ])
        return nodes

    def emit_output_document(self, invocation: StepInvocation) -> List[Node]:
        path = invocation.step.output_document
        if not path:
            return []
        target = document_path(invocation.docs_dir, path)
        return [
            Line(f'echo "📄 Save the response manually to: {target}"'),
            Block(f'if [ ! -f "{target}" ]; then', [
                Line(f'echo "⚠️  Document not saved yet: {target}"'),
            ]),
        ]
