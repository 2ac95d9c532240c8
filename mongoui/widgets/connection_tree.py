"""Sidebar tree of servers and their discovered collections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Union

from rich.text import Text
from textual import on
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import Static, Tree

from mongoui.models import ConnectionProfile
from mongoui.session import SessionStore


@dataclass(frozen=True, slots=True)
class ServerNode:
    profile_id: str


@dataclass(frozen=True, slots=True)
class CollectionNode:
    profile_id: str
    collection: str


NodeData = Union[ServerNode, CollectionNode]


class ConnectionTree(Container):
    """Lists saved servers; expanding one discovers its collections."""

    DEFAULT_CSS = """
    ConnectionTree {
        width: 28;
        min-width: 22;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    ConnectionTree .sidebar-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    ConnectionTree .sidebar-hint {
        color: $text-muted;
        margin-top: 1;
    }

    #connection-tree {
        height: 1fr;
        background: $surface-darken-2;
    }
    """

    BINDINGS = [
        Binding("a", "add_server", "Add server"),
        Binding("e", "edit_server", "Edit server", show=False),
        Binding("delete", "delete_server", "Delete server", show=False),
        Binding("t", "test_server", "Test server", show=False),
    ]

    def __init__(self, store: SessionStore) -> None:
        super().__init__(id="connection-sidebar")
        self._store = store
        self._tree: Tree[NodeData] | None = None
        self._signature: tuple[object, ...] | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Connections", classes="sidebar-heading")
        tree: Tree[NodeData] = Tree("servers", id="connection-tree")
        tree.show_root = False
        tree.root.expand()
        self._tree = tree
        yield tree
        yield Static("a add · e edit · t test · del delete", classes="sidebar-hint")

    async def on_mount(self) -> None:
        self._unsubscribe = self._store.subscribe(self._handle_store_update)
        self._handle_store_update(self._store)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def highlighted_profile_id(self) -> str | None:
        if self._tree is None or self._tree.cursor_node is None:
            return None
        data = self._tree.cursor_node.data
        if isinstance(data, (ServerNode, CollectionNode)):
            return data.profile_id
        return None

    def _handle_store_update(self, store: SessionStore) -> None:
        signature = tuple(_profile_signature(profile) for profile in store.profiles)
        if signature == self._signature:
            return
        self._signature = signature
        self._rebuild(store.profiles)

    def _rebuild(self, profiles: tuple[ConnectionProfile, ...]) -> None:
        tree = self._tree
        if tree is None:
            return
        cursor = tree.cursor_line
        tree.clear()
        for profile in profiles:
            label = Text(f"{profile.name} ({profile.host}:{profile.port})")
            node = tree.root.add(label, data=ServerNode(profile.id), expand=profile.expanded)
            if profile.expanded and not profile.collections:
                node.add_leaf(Text("No collections", style="dim"))
            for collection in profile.collections:
                node.add_leaf(Text(collection), data=CollectionNode(profile.id, collection))
        if cursor >= 0:
            tree.cursor_line = min(cursor, max(tree.last_line, 0))

    @on(Tree.NodeExpanded)
    def _handle_node_expanded(self, event: Tree.NodeExpanded[NodeData]) -> None:
        data = event.node.data
        if isinstance(data, ServerNode):
            event.stop()
            self._store.expand_server(data.profile_id)

    @on(Tree.NodeCollapsed)
    def _handle_node_collapsed(self, event: Tree.NodeCollapsed[NodeData]) -> None:
        data = event.node.data
        if isinstance(data, ServerNode):
            event.stop()
            self._store.collapse_server(data.profile_id)

    @on(Tree.NodeSelected)
    def _handle_node_selected(self, event: Tree.NodeSelected[NodeData]) -> None:
        data = event.node.data
        if isinstance(data, CollectionNode):
            event.stop()
            opener = getattr(self.app, "open_collection", None)
            if opener is not None:
                opener(data.profile_id, data.collection)

    def action_add_server(self) -> None:
        self._call_app("add_server_dialog")

    def action_edit_server(self) -> None:
        self._call_app("edit_server_dialog", self.highlighted_profile_id)

    def action_delete_server(self) -> None:
        self._call_app("delete_server", self.highlighted_profile_id)

    def action_test_server(self) -> None:
        self._call_app("test_server", self.highlighted_profile_id)

    def _call_app(self, name: str, *args: str | None) -> None:
        if any(arg is None for arg in args):
            return
        handler = getattr(self.app, name, None)
        if handler is not None:
            handler(*args)


def _profile_signature(profile: ConnectionProfile) -> tuple[object, ...]:
    return (profile.id, profile.name, profile.host, profile.port, profile.expanded, profile.collections)


__all__ = ["CollectionNode", "ConnectionTree", "ServerNode"]
