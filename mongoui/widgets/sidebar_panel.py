"""Connection sidebar wrapped with a draggable width handle."""

from __future__ import annotations

from typing import Callable

from textual import events
from textual.app import ComposeResult
from textual.containers import Container
from textual.widgets import Static

from mongoui.session import SessionStore

from .connection_tree import ConnectionTree

MIN_WIDTH = 18
MAX_WIDTH = 64
DEFAULT_WIDTH = 30


class SidebarPanel(Container):
    """Hosts the connection tree; dragging the handle changes its width."""

    DEFAULT_CSS = """
    SidebarPanel {
        layout: horizontal;
        height: 1fr;
    }

    SidebarResizeHandle {
        width: 1;
        min-width: 1;
        height: 100%;
        background: $surface-darken-2;
        color: $text-muted;
    }

    SidebarResizeHandle.hover,
    SidebarResizeHandle.dragging {
        background: $primary;
        color: $text;
    }
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        initial_width: int | None = None,
        on_width_change: Callable[[int], None] | None = None,
    ) -> None:
        super().__init__(id="sidebar-panel")
        self.sidebar = ConnectionTree(store)
        self._on_width_change = on_width_change or (lambda _: None)
        self._width = clamp_width(initial_width or DEFAULT_WIDTH)
        self._drag_origin: tuple[int, int] | None = None
        self.styles.flex = "0 0 auto"

    @property
    def resizing(self) -> bool:
        return self._drag_origin is not None

    @property
    def sidebar_width(self) -> int:
        return self._width

    def compose(self) -> ComposeResult:
        self._apply_width(self._width)
        yield self.sidebar
        yield SidebarResizeHandle(self)

    def begin_resize(self, screen_x: int) -> None:
        self._drag_origin = (screen_x, self._width)

    def update_resize(self, screen_x: int) -> None:
        if self._drag_origin is None:
            return
        start_x, start_width = self._drag_origin
        self._apply_width(clamp_width(start_width + screen_x - start_x))

    def end_resize(self) -> None:
        if self._drag_origin is None:
            return
        self._drag_origin = None
        self._on_width_change(self._width)

    def _apply_width(self, width: int) -> None:
        self._width = width
        self.sidebar.styles.width = width
        self.sidebar.styles.min_width = width
        self.sidebar.styles.max_width = width
        self.styles.width = width + 1


class SidebarResizeHandle(Static):
    """One-column strip that drags the sidebar edge."""

    def __init__(self, panel: SidebarPanel) -> None:
        super().__init__("┃", id="sidebar-resize-handle")
        self._panel = panel

    def on_mouse_down(self, event: events.MouseDown) -> None:
        self.capture_mouse()
        self._panel.begin_resize(event.screen_x)
        self.set_class(True, "dragging")

    def on_mouse_move(self, event: events.MouseMove) -> None:
        self._panel.update_resize(event.screen_x)

    def on_mouse_up(self, event: events.MouseUp) -> None:
        self.release_mouse()
        self._panel.end_resize()
        self.set_class(False, "dragging")

    def on_enter(self, event: events.Enter) -> None:  # pragma: no cover - UI affordance
        self.set_class(True, "hover")

    def on_leave(self, event: events.Leave) -> None:  # pragma: no cover - UI affordance
        self.set_class(False, "hover")


def clamp_width(width: int) -> int:
    return max(MIN_WIDTH, min(MAX_WIDTH, width))


__all__ = ["SidebarPanel", "clamp_width"]
