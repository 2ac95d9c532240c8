"""Textual application entry point for mongoui."""

from __future__ import annotations

import logging
from typing import Callable

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Footer, Header

from .config import LOG_FILE, AppConfig, load_config, save_config
from .errors import MongouiError, NotFoundError, ValidationError
from .models import ConnectionProfile
from .providers import ServerActionsProvider, SessionActionsProvider
from .query import DemoQueryService, MongoQueryService, QueryService
from .registry import ConnectionRegistry, ConnectionStorage
from .session import SessionStore
from .widgets import PaneGrid, ServerForm, SidebarPanel, StatusBar

LOG = logging.getLogger(__name__)

_THEMES = {"dark": "textual-dark", "light": "textual-light"}


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


def build_store(config: AppConfig) -> SessionStore:
    """Wire the registry and query service selected by ``config``."""

    registry = ConnectionRegistry(ConnectionStorage(config.resolved_connections_file()))
    query_service: QueryService
    if config.demo_mode:
        query_service = DemoQueryService()
    else:
        query_service = MongoQueryService(connect_timeout_ms=config.query.connect_timeout_ms)
    return SessionStore(registry, query_service, result_limit=config.query.result_limit)


class MongouiApp(App[None]):
    """Browse MongoDB collections across split panes."""

    TITLE = "mongoui"
    COMMANDS = App.COMMANDS | {SessionActionsProvider, ServerActionsProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit"),
        Binding("ctrl+r", "refresh_tab", "Refresh"),
        Binding("ctrl+t", "toggle_view", "Flat/Tree"),
        Binding("ctrl+w", "close_tab", "Close tab"),
        Binding("f2", "split_pane", "Split"),
        Binding("f3", "close_pane", "Unsplit"),
        Binding("ctrl+n", "add_server", "Add server"),
        Binding("escape", "clear_error", "Clear error", show=False),
        Binding("ctrl+p", "command_palette", "Commands"),
    ]

    def __init__(self, config: AppConfig | None = None, *, store: SessionStore | None = None) -> None:
        super().__init__()
        self._config = config or _load_app_config()
        self._store = store or build_store(self._config)
        self._last_error: str | None = None
        self._pending_notifications: list[tuple[str, str]] = []
        self._store_unsubscribe: Callable[[], None] | None = self._store.subscribe(self._handle_store_update)

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        sidebar = SidebarPanel(
            self._store,
            initial_width=self._config.layout.sidebar_width,
            on_width_change=self.remember_sidebar_width,
        )
        yield Horizontal(sidebar, PaneGrid(self._store), id="content")
        yield StatusBar(self._store)
        yield Footer()

    async def on_mount(self) -> None:
        self.theme = _THEMES.get(self._config.theme, _THEMES["dark"])
        await self._store.load_connections()
        self._flush_pending_notifications()

    def on_unmount(self) -> None:
        if self._store_unsubscribe:
            self._store_unsubscribe()
            self._store_unsubscribe = None

    @property
    def store(self) -> SessionStore:
        """Expose the session store for providers and tests."""

        return self._store

    @property
    def config(self) -> AppConfig:
        return self._config

    # -- intents ---------------------------------------------------------

    def open_collection(self, profile_id: str, collection: str) -> None:
        self._guard(lambda: self._store.open_collection(self._store.active_pane_index, profile_id, collection))

    def split_pane(self) -> None:
        self._store.add_pane()

    def close_pane(self) -> None:
        if not self._store.remove_pane(self._store.active_pane_index):
            self._safe_notify("The last pane cannot be closed.", severity="warning")

    def refresh_active_tab(self) -> None:
        tab = self._store.active_tab
        if tab is not None:
            self._store.refresh(tab.id)

    def toggle_view_mode(self) -> None:
        tab = self._store.active_tab
        if tab is not None:
            self._store.toggle_view_mode(tab.id)

    def close_active_tab(self) -> None:
        pane = self._store.active_pane
        if pane.active_index is not None:
            self._store.close_tab(self._store.active_pane_index, pane.active_index)

    def expand_server(self, profile_id: str) -> None:
        self._guard(lambda: self._store.expand_server(profile_id))

    def delete_server(self, profile_id: str) -> None:
        def _delete() -> None:
            profile = self._store.delete_server(profile_id)
            self._safe_notify(f"Deleted {profile.name}.")

        self._guard(_delete)

    def test_server(self, profile_id: str) -> None:
        try:
            profile = self._store.profile(profile_id)
        except NotFoundError as exc:
            self._safe_notify(str(exc), severity="error")
            return
        self.run_worker(self._report_probe(profile), exclusive=False)

    async def probe_profile(self, profile: ConnectionProfile) -> bool:
        return await self._store.test_server(profile)

    def add_server_dialog(self) -> None:
        self.push_screen(ServerForm(), self._handle_new_server)

    def edit_server_dialog(self, profile_id: str) -> None:
        try:
            profile = self._store.profile(profile_id)
        except NotFoundError as exc:
            self._safe_notify(str(exc), severity="error")
            return
        self.push_screen(ServerForm(profile), self._handle_edited_server)

    def clear_error(self) -> None:
        self._store.clear_error()

    def remember_sidebar_width(self, width: int) -> None:
        """Persist the sidebar width when it changes."""

        if self._config.layout.sidebar_width == width:
            return
        self._config = self._config.with_layout(sidebar_width=width)
        try:
            save_config(self._config)
        except OSError:
            LOG.warning("Could not save config", exc_info=True)

    # -- bindings --------------------------------------------------------

    def action_refresh_tab(self) -> None:
        self.refresh_active_tab()

    def action_toggle_view(self) -> None:
        self.toggle_view_mode()

    def action_close_tab(self) -> None:
        self.close_active_tab()

    def action_split_pane(self) -> None:
        self.split_pane()

    def action_close_pane(self) -> None:
        self.close_pane()

    def action_add_server(self) -> None:
        self.add_server_dialog()

    def action_clear_error(self) -> None:
        self.clear_error()

    # -- internals -------------------------------------------------------

    def _handle_new_server(self, profile: ConnectionProfile | None) -> None:
        if profile is None:
            return
        self._guard(lambda: self._store.add_server(profile))

    def _handle_edited_server(self, profile: ConnectionProfile | None) -> None:
        if profile is None:
            return
        self._guard(lambda: self._store.update_server(profile.id, profile))

    async def _report_probe(self, profile: ConnectionProfile) -> None:
        if await self._store.test_server(profile):
            self._safe_notify(f"{profile.name} is reachable.")
        else:
            self._safe_notify(f"{profile.name} is unreachable.", severity="warning")

    def _guard(self, intent: Callable[[], object]) -> None:
        try:
            intent()
        except (ValidationError, NotFoundError) as exc:
            self._safe_notify(str(exc), severity="error")
        except MongouiError as exc:
            LOG.exception("Action failed")
            self._safe_notify(str(exc), severity="error")

    def _handle_store_update(self, store: SessionStore) -> None:
        message = store.error_message
        if message and message != self._last_error:
            self._safe_notify(message, severity="error")
        self._last_error = message

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            self.notify(message, severity=severity)
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            self.notify(message, severity=severity)


def configure_logging(config: AppConfig) -> None:
    """Send log records to a file; the terminal belongs to the TUI."""

    LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=LOG_FILE,
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    """Invoke the Textual application."""

    config = _load_app_config()
    configure_logging(config)
    MongouiApp(config).run()


if __name__ == "__main__":
    main()
