"""Status bar widget that mirrors session store information."""

from __future__ import annotations

from typing import Callable

from rich.text import Text
from textual.widgets import Static

from mongoui.session import SessionStore


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }

    StatusBar.error {
        background: $error 40%;
    }
    """

    def __init__(self, store: SessionStore) -> None:
        super().__init__("", id="status-bar")
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
        self.update(Text(" | ".join(status_parts(store))))
        self.set_class(store.error_message is not None, "error")


def status_parts(store: SessionStore) -> list[str]:
    """Plain-text segments shown in the status bar."""

    parts = [
        f"Servers: {len(store.profiles)}",
        f"Pane {store.active_pane_index + 1}/{len(store.panes)}",
    ]
    tab = store.active_tab
    if tab is not None:
        try:
            server = store.profile_for(tab).name
        except LookupError:
            server = "?"
        parts.append(f"{server} / {tab.collection}")
        parts.append(f"{len(tab.documents)} doc(s), {tab.view_mode.value}")
        if tab.loaded_at is not None:
            parts.append(f"Loaded: {tab.loaded_at.astimezone().strftime('%H:%M:%S')}")
    if store.loading:
        parts.append("Loading…")
    if store.error_message:
        parts.append(f"Error: {store.error_message.splitlines()[0][:120]}")
    return parts


__all__ = ["StatusBar", "status_parts"]
