"""Command palette providers for core app features."""

from __future__ import annotations

from typing import Iterable

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .session import SessionStore

# (label, app method, help)
SESSION_ACTIONS: tuple[tuple[str, str, str], ...] = (
    ("Split pane", "split_pane", "Open a new empty pane to the right."),
    ("Close pane", "close_pane", "Close the active pane (the last pane stays)."),
    ("Refresh active tab", "refresh_active_tab", "Re-run the active tab's query."),
    ("Toggle view mode", "toggle_view_mode", "Switch between flat and tree rendering."),
    ("Close tab", "close_active_tab", "Close the active tab."),
    ("Add server", "add_server_dialog", "Register a new connection."),
    ("Clear error", "clear_error", "Dismiss the current error message."),
)

# (label prefix, app method, help)
SERVER_ACTIONS: tuple[tuple[str, str, str], ...] = (
    ("Expand server", "expand_server", "Discover collections on this server."),
    ("Edit server", "edit_server_dialog", "Change connection details."),
    ("Test server", "test_server", "Check that the server is reachable."),
    ("Delete server", "delete_server", "Remove the server and close its tabs."),
)


class SessionActionsProvider(Provider):
    """Expose pane, tab, and error actions."""

    async def search(self, query: str) -> Hits:
        matcher = self.matcher(query)
        for label, method, help_text in SESSION_ACTIONS:
            score = matcher.match(label)
            if score > 0:
                yield Hit(
                    score=score,
                    match_display=matcher.highlight(label),
                    command=self._build_callback(method),
                    help=help_text,
                )

    async def discover(self) -> Hits:
        for label, method, help_text in SESSION_ACTIONS:
            yield DiscoveryHit(
                display=label,
                command=self._build_callback(method),
                help=help_text,
            )

    def _build_callback(self, method: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            action = getattr(self.app, method, None)
            if action is None:
                return
            action()

        return _run


class ServerActionsProvider(Provider):
    """Expose per-server actions for every saved connection."""

    async def search(self, query: str) -> Hits:
        matcher = self.matcher(query)
        for label, command, help_text in self._entries():
            score = matcher.match(label)
            if score > 0:
                yield Hit(score=score, match_display=matcher.highlight(label), command=command, help=help_text)

    async def discover(self) -> Hits:
        for label, command, help_text in self._entries():
            yield DiscoveryHit(display=label, command=command, help=help_text)

    def _entries(self) -> Iterable[tuple[str, IgnoreReturnCallbackType, str]]:
        store = self._store
        if store is None:
            return
        for profile in store.profiles:
            for prefix, method, help_text in SERVER_ACTIONS:
                yield f"{prefix}: {profile.name}", self._build_callback(method, profile.id), help_text

    @property
    def _store(self) -> SessionStore | None:
        store = getattr(self.app, "store", None)
        if isinstance(store, SessionStore):
            return store
        return None

    def _build_callback(self, method: str, profile_id: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            action = getattr(self.app, method, None)
            if action is None:
                return
            action(profile_id)

        return _run


__all__ = ["SERVER_ACTIONS", "SESSION_ACTIONS", "ServerActionsProvider", "SessionActionsProvider"]
