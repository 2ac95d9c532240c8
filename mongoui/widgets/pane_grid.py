"""Side-by-side panes, each with its own tab strip and query bar."""

from __future__ import annotations

from typing import Callable

from rich.text import Text
from textual import events
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, Input, Static

from mongoui.models import Pane, Tab, ViewMode
from mongoui.session import SessionStore

from .document_view import DocumentView


class PaneGrid(Horizontal):
    """Keeps one ``PaneView`` mounted per pane in the session store."""

    DEFAULT_CSS = """
    PaneGrid {
        height: 1fr;
    }
    """

    def __init__(self, store: SessionStore) -> None:
        super().__init__(id="pane-grid")
        self._store = store
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._store.subscribe(self._handle_store_update)
        self._handle_store_update(self._store)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_store_update(self, store: SessionStore) -> None:
        live = {pane.id for pane in store.panes}
        views = {view.pane_id: view for view in self.query(PaneView)}
        for pane_id, view in views.items():
            if pane_id not in live:
                view.remove()
        for pane in store.panes:
            if pane.id not in views:
                self.mount(PaneView(store, pane.id))
            else:
                views[pane.id].sync()


class PaneView(Vertical):
    """One pane: tab strip, filter/projection inputs, and the document view."""

    DEFAULT_CSS = """
    PaneView {
        width: 1fr;
        border: round $surface-darken-1;
        padding: 0 1;
    }

    PaneView.active {
        border: round $primary;
    }

    PaneView .tab-strip {
        height: auto;
        max-height: 3;
    }

    PaneView .tab-strip Button {
        margin-right: 1;
    }

    PaneView .tab-strip .no-tabs {
        color: $text-muted;
    }

    PaneView .query-bar {
        height: auto;
        margin-top: 1;
    }

    PaneView .query-bar Input {
        width: 1fr;
    }
    """

    def __init__(self, store: SessionStore, pane_id: str) -> None:
        super().__init__(classes="pane-view")
        self.pane_id = pane_id
        self._store = store
        self._tab_signature: tuple[object, ...] | None = None
        self._strip = Horizontal(classes="tab-strip")
        self._filter = Input(placeholder='Filter, e.g. {"status": "active"}', classes="filter-input")
        self._projection = Input(placeholder='Projection, e.g. {"name": 1}', classes="projection-input")
        self._view_button = Button("Tree", classes="view-button", compact=True)
        self._refresh_button = Button("Refresh", classes="refresh-button", variant="primary", compact=True)
        self._documents = DocumentView()

    def compose(self) -> ComposeResult:
        yield self._strip
        yield Horizontal(
            self._filter,
            self._projection,
            self._refresh_button,
            self._view_button,
            classes="query-bar",
        )
        yield self._documents

    def on_mount(self) -> None:
        self.sync()

    @property
    def pane_index(self) -> int | None:
        for idx, pane in enumerate(self._store.panes):
            if pane.id == self.pane_id:
                return idx
        return None

    def sync(self) -> None:
        """Bring the widgets in line with the store."""

        index = self.pane_index
        if index is None:
            return
        pane = self._store.panes[index]
        self.set_class(index == self._store.active_pane_index, "active")
        self._sync_strip(pane)
        tab = pane.active_tab
        self._sync_inputs(tab)
        self._documents.show(tab)

    def _sync_strip(self, pane: Pane) -> None:
        signature = (tuple((tab.id, tab.collection) for tab in pane.tabs), pane.active_index)
        if signature == self._tab_signature:
            return
        self._tab_signature = signature
        self._strip.remove_children()
        if not pane.tabs:
            self._strip.mount(Static("No open tabs", classes="no-tabs"))
            return
        buttons: list[Button] = []
        for idx, tab in enumerate(pane.tabs):
            buttons.append(_TabButton(tab, active=idx == pane.active_index))
            buttons.append(_CloseTabButton(tab))
        self._strip.mount(*buttons)

    def _sync_inputs(self, tab: Tab | None) -> None:
        enabled = tab is not None
        for widget in (self._filter, self._projection, self._refresh_button, self._view_button):
            widget.disabled = not enabled
        if tab is None:
            return
        if self._filter.value != tab.filter_text:
            self._filter.value = tab.filter_text
        if self._projection.value != tab.projection_text:
            self._projection.value = tab.projection_text
        self._view_button.label = "Flat" if tab.view_mode is ViewMode.TREE else "Tree"

    def _active_tab(self) -> Tab | None:
        index = self.pane_index
        if index is None:
            return None
        return self._store.panes[index].active_tab

    def on_input_changed(self, event: Input.Changed) -> None:
        event.stop()
        tab = self._active_tab()
        if tab is None:
            return
        if event.input is self._filter and event.value != tab.filter_text:
            self._store.set_filter(tab.id, event.value)
        elif event.input is self._projection and event.value != tab.projection_text:
            self._store.set_projection(tab.id, event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        tab = self._active_tab()
        if tab is not None:
            self._store.refresh(tab.id)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        index = self.pane_index
        if index is None:
            return
        button = event.button
        pane = self._store.panes[index]
        if isinstance(button, (_TabButton, _CloseTabButton)):
            tab_index = pane.index_of(button.tab_id)
            if tab_index is None:
                return
            if isinstance(button, _CloseTabButton):
                self._store.close_tab(index, tab_index)
            else:
                self._store.set_active_tab(index, tab_index)
            return
        tab = pane.active_tab
        if tab is None:
            return
        if button is self._refresh_button:
            self._store.refresh(tab.id)
        elif button is self._view_button:
            self._store.toggle_view_mode(tab.id)

    def on_descendant_focus(self, event: events.DescendantFocus) -> None:
        index = self.pane_index
        if index is not None and index != self._store.active_pane_index:
            self._store.set_active_pane(index)


class _TabButton(Button):
    """Selects a tab."""

    def __init__(self, tab: Tab, *, active: bool) -> None:
        super().__init__(Text(tab.title), variant="primary" if active else "default", compact=True)
        self.tab_id = tab.id


class _CloseTabButton(Button):
    """Closes a tab."""

    def __init__(self, tab: Tab) -> None:
        super().__init__("×", compact=True)
        self.tab_id = tab.id


__all__ = ["PaneGrid", "PaneView"]
