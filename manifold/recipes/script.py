"""
script.py - Intermediate representation for generated bash scripts.

Backends and the compiler build lists of nodes; ``render`` turns them into
text once, at the end. Indentation of nested blocks is applied here and
nowhere else.

Only the first physical line of a multi-line ``Line`` is indented: the rest
belongs to a quoted string (usually task text) and is emitted verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

INDENT = "  "


@dataclass(frozen=True)
class Line:
    """A single shell statement."""
    text: str


@dataclass(frozen=True)
class Comment:
    """A comment; multi-line text becomes one comment line per line."""
    text: str = ""


@dataclass(frozen=True)
class Blank:
    """An empty line."""
    pass


@dataclass(frozen=True)
class Block:
    """A compound statement such as ``if``/``for`` with an indented body."""
    opener: str
    body: Sequence["Node"] = ()
    closer: str = "fi"
    else_body: Optional[Sequence["Node"]] = None


Node = Union[Line, Comment, Blank, Block]


def _render_node(node: Node, depth: int, out: List[str]) -> None:
    prefix = INDENT * depth
    if isinstance(node, Blank):
        out.append("")
    elif isinstance(node, Comment):
        lines = node.text.split("\n") if node.text else [""]
        for text in lines:
            out.append(f"{prefix}# {text}".rstrip())
    elif isinstance(node, Line):
        out.append(prefix + node.text)
    elif isinstance(node, Block):
        out.append(prefix + node.opener)
        for child in node.body:
            _render_node(child, depth + 1, out)
        if node.else_body is not None:
            out.append(prefix + "else")
            for child in node.else_body:
                _render_node(child, depth + 1, out)
        out.append(prefix + node.closer)
    else:
        raise TypeError(f"Unsupported script node: {node!r}")


def render(nodes: Sequence[Node], depth: int = 0) -> str:
    """Render nodes to script text terminated by a newline."""
    out: List[str] = []
    for node in nodes:
        _render_node(node, depth, out)
    return "\n".join(out) + "\n"


@dataclass
class Script:
    """Mutable list of nodes with small helpers for building it."""
    nodes: List[Node] = field(default_factory=list)

    def line(self, text: str) -> "Script":
        self.nodes.append(Line(text))
        return self

    def comment(self, text: str = "") -> "Script":
        self.nodes.append(Comment(text))
        return self

    def blank(self) -> "Script":
        self.nodes.append(Blank())
        return self

    def add(self, node: Node) -> "Script":
        self.nodes.append(node)
        return self

    def extend(self, nodes: Sequence[Node]) -> "Script":
        self.nodes.extend(nodes)
        return self

    def render(self) -> str:
        return render(self.nodes)
