"""Turns loaded documents into flat or tree-shaped display lines."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from bson import ObjectId

from .models import Document, ViewMode

CYCLE_MARKER = "<cycle>"


class NodeKind(str, Enum):
    """Shape of a value inside a document."""

    PRIMITIVE = "primitive"
    DOCUMENT = "document"
    LIST = "list"


@dataclass(frozen=True, slots=True)
class DocumentNode:
    """A field (or list element) and, for containers, its children."""

    label: str
    kind: NodeKind
    value: Any = None
    children: tuple[DocumentNode, ...] = ()


@dataclass(frozen=True, slots=True)
class TreeLine:
    """One rendered line; ``depth`` is the indent level."""

    depth: int
    text: str


def format_primitive(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, ObjectId):
        return f'ObjectId("{value}")'
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return f"Binary({len(value)} bytes)"
    return str(value)


def to_node(label: str, value: Any, _path: frozenset[int] = frozenset()) -> DocumentNode:
    """Classify ``value`` and recurse into containers."""

    if isinstance(value, Mapping) or _is_sequence(value):
        if id(value) in _path:
            return DocumentNode(label, NodeKind.PRIMITIVE, CYCLE_MARKER)
        path = _path | {id(value)}
        if isinstance(value, Mapping):
            children = tuple(to_node(str(key), child, path) for key, child in value.items())
            return DocumentNode(label, NodeKind.DOCUMENT, children=children)
        children = tuple(to_node(f"[{idx}]", child, path) for idx, child in enumerate(value))
        return DocumentNode(label, NodeKind.LIST, children=children)
    return DocumentNode(label, NodeKind.PRIMITIVE, value)


def document_nodes(document: Document) -> tuple[DocumentNode, ...]:
    return to_node("", document).children


def render_flat(document: Document) -> str:
    """Single-line ``key: value, ...`` rendering in stored field order."""

    return ", ".join(_flat_field(node) for node in document_nodes(document))


def render_tree(document: Document) -> list[TreeLine]:
    """One line per field, children indented one level below their parent."""

    lines: list[TreeLine] = []
    for node in document_nodes(document):
        _walk(node, 0, lines)
    return lines


def present(document: Document, mode: ViewMode) -> tuple[TreeLine, ...]:
    """Display lines for ``document`` in the requested view mode."""

    if mode is ViewMode.TREE:
        return tuple(render_tree(document))
    return (TreeLine(0, render_flat(document)),)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _flat_field(node: DocumentNode) -> str:
    return f"{node.label}: {_flat_value(node)}"


def _flat_value(node: DocumentNode) -> str:
    if node.kind is NodeKind.DOCUMENT:
        return "{" + ", ".join(_flat_field(child) for child in node.children) + "}"
    if node.kind is NodeKind.LIST:
        return "[" + ", ".join(_flat_value(child) for child in node.children) + "]"
    return format_primitive(node.value)


def _walk(node: DocumentNode, depth: int, lines: list[TreeLine]) -> None:
    if node.kind is NodeKind.PRIMITIVE:
        lines.append(TreeLine(depth, f"{node.label}: {format_primitive(node.value)}"))
        return
    if node.kind is NodeKind.DOCUMENT:
        summary = "{…}" if node.children else "{}"
    else:
        summary = "[…]" if node.children else "[]"
    lines.append(TreeLine(depth, f"{node.label}: {summary}"))
    for child in node.children:
        _walk(child, depth + 1, lines)


__all__ = [
    "CYCLE_MARKER",
    "DocumentNode",
    "NodeKind",
    "TreeLine",
    "document_nodes",
    "format_primitive",
    "present",
    "render_flat",
    "render_tree",
    "to_node",
]
