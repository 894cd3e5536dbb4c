"""Syntax tree nodes produced by the formula parser."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Node:
    """Base class for formula syntax tree nodes."""

    position: int


@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class FieldRef(Node):
    """Reference to a record field; dotted for cross-object paths."""

    name: str


@dataclass(frozen=True)
class UnaryOp(Node):
    operator: str
    operand: Node


@dataclass(frozen=True)
class BinaryOp(Node):
    operator: str
    left: Node
    right: Node


@dataclass(frozen=True)
class Call(Node):
    """Function call; `name` is upper-cased."""

    name: str
    args: tuple[Node, ...]


def iter_nodes(node: Node):
    """Yield `node` and every descendant, depth first."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        if isinstance(current, UnaryOp):
            stack.append(current.operand)
        elif isinstance(current, BinaryOp):
            stack.append(current.right)
            stack.append(current.left)
        elif isinstance(current, Call):
            stack.extend(reversed(current.args))


def field_references(node: Node) -> list[str]:
    """Distinct field references in first-seen order."""
    seen: dict[str, None] = {}
    for child in iter_nodes(node):
        if isinstance(child, FieldRef):
            seen.setdefault(child.name, None)
    return list(seen)
