"""Widget library for the Textual UI."""

from __future__ import annotations

from .connection_tree import ConnectionTree
from .document_view import DocumentView
from .pane_grid import PaneGrid, PaneView
from .server_form import ServerForm
from .sidebar_panel import SidebarPanel
from .status_bar import StatusBar

__all__ = [
    "ConnectionTree",
    "DocumentView",
    "PaneGrid",
    "PaneView",
    "ServerForm",
    "SidebarPanel",
    "StatusBar",
]
