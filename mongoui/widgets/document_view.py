"""Renders a tab's document page in flat or tree form."""

from __future__ import annotations

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Container, VerticalScroll
from textual.widgets import Static, Tree
from textual.widgets.tree import TreeNode

from mongoui.models import Tab, ViewMode
from mongoui.presenter import DocumentNode, NodeKind, document_nodes, format_primitive, render_flat


class DocumentView(Container):
    """Shows one line per document (flat) or an expandable tree per document."""

    DEFAULT_CSS = """
    DocumentView {
        height: 1fr;
        border-top: solid $surface-darken-2;
    }

    DocumentView .flat-documents {
        height: auto;
    }

    DocumentView .document-tree {
        height: 1fr;
    }

    DocumentView .empty-documents {
        color: $text-muted;
        padding: 1;
    }
    """

    def __init__(self) -> None:
        super().__init__(classes="document-view")
        self._signature: tuple[object, ...] | None = None
        self._flat = Static("", classes="flat-documents")
        self._scroll = VerticalScroll(self._flat)
        self._tree: Tree[None] = Tree("documents", classes="document-tree")
        self._tree.show_root = False
        self._empty = Static("No collection selected.", classes="empty-documents")

    def compose(self) -> ComposeResult:
        yield self._empty
        yield self._scroll
        yield self._tree

    def on_mount(self) -> None:
        self._show(empty=True)

    def show(self, tab: Tab | None) -> None:
        """Render ``tab``'s documents; cheap when nothing changed."""

        signature = None if tab is None else (tab.id, tab.view_mode, tab.loaded_at, id(tab.documents))
        if signature == self._signature:
            return
        self._signature = signature
        if tab is None:
            self._empty.update("No collection selected.")
            self._show(empty=True)
            return
        if not tab.documents:
            self._empty.update("No documents matched." if tab.loaded_at else "Not loaded yet.")
            self._show(empty=True)
            return
        if tab.view_mode is ViewMode.TREE:
            self._render_tree(tab)
        else:
            self._render_flat(tab)

    def _render_flat(self, tab: Tab) -> None:
        lines = Text()
        for idx, document in enumerate(tab.documents):
            if idx:
                lines.append("\n")
            lines.append(f"{idx + 1:>3}  ", style="dim")
            lines.append(render_flat(document))
        self._flat.update(lines)
        self._show(tree=False)

    def _render_tree(self, tab: Tab) -> None:
        self._tree.clear()
        for idx, document in enumerate(tab.documents):
            label = Text(f"#{idx + 1}")
            if "_id" in document:
                label.append(f"  _id: {format_primitive(document['_id'])}", style="dim")
            parent = self._tree.root.add(label, expand=idx == 0)
            for node in document_nodes(document):
                _add_node(parent, node)
        self._tree.root.expand()
        self._show(tree=True)

    def _show(self, *, empty: bool = False, tree: bool = False) -> None:
        self._empty.display = empty
        self._scroll.display = not empty and not tree
        self._tree.display = not empty and tree


def _add_node(parent: TreeNode[None], node: DocumentNode) -> None:
    if node.kind is NodeKind.PRIMITIVE:
        parent.add_leaf(Text(f"{node.label}: {format_primitive(node.value)}"))
        return
    if node.kind is NodeKind.DOCUMENT:
        summary = "{…}" if node.children else "{}"
    else:
        summary = "[…]" if node.children else "[]"
    branch = parent.add(Text(f"{node.label}: {summary}"), allow_expand=bool(node.children))
    for child in node.children:
        _add_node(branch, child)


__all__ = ["DocumentView"]
