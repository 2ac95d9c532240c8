"""Session store: panes, tabs, and the loads that feed them."""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

from .errors import MongouiError, NotFoundError, PersistenceError
from .models import ConnectionProfile, Document, Pane, Tab, ViewMode
from .query import DEFAULT_LIMIT, QueryService
from .registry import ConnectionRegistry

LOG = logging.getLogger(__name__)

StoreListener = Callable[["SessionStore"], None]


class SessionStore:
    """Single owner of the pane/tab tree and the connection registry.

    Every mutation goes through a method on this class and runs on the event
    loop. Loads run as tasks; each is stamped with a per-target sequence
    number and its result is applied only if no newer load for the same tab
    (or profile) was issued meanwhile, and only if the target still exists.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        query_service: QueryService,
        *,
        result_limit: int = DEFAULT_LIMIT,
    ) -> None:
        self._registry = registry
        self._query = query_service
        self._result_limit = result_limit
        self._panes: list[Pane] = [Pane()]
        self._active_pane_index = 0
        self._error_message: str | None = None
        self._in_flight = 0
        self._sequences: dict[str, int] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._listeners: set[StoreListener] = set()

    # -- read side -------------------------------------------------------

    @property
    def profiles(self) -> tuple[ConnectionProfile, ...]:
        return self._registry.list()

    @property
    def panes(self) -> tuple[Pane, ...]:
        return tuple(self._panes)

    @property
    def active_pane_index(self) -> int:
        return self._active_pane_index

    @property
    def active_pane(self) -> Pane:
        return self._panes[self._active_pane_index]

    @property
    def active_tab(self) -> Tab | None:
        return self.active_pane.active_tab

    @property
    def loading(self) -> bool:
        """True while any discovery or document load is in flight."""

        return self._in_flight > 0

    @property
    def error_message(self) -> str | None:
        return self._error_message

    @property
    def result_limit(self) -> int:
        return self._result_limit

    @property
    def query_service(self) -> QueryService:
        return self._query

    def profile(self, profile_id: str) -> ConnectionProfile:
        return self._registry.get(profile_id)

    def profile_for(self, tab: Tab) -> ConnectionProfile:
        return self._registry.get(tab.profile_id)

    def find_tab(self, tab_id: str) -> Tab | None:
        for pane in self._panes:
            for tab in pane.tabs:
                if tab.id == tab_id:
                    return tab
        return None

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Subscribe to store updates; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    # -- panes -----------------------------------------------------------

    def add_pane(self) -> Pane:
        pane = Pane()
        self._panes.append(pane)
        self._active_pane_index = len(self._panes) - 1
        self._notify()
        return pane

    def remove_pane(self, index: int) -> bool:
        """Remove a pane unless it is the last one; returns whether it was removed."""

        if len(self._panes) <= 1:
            return False
        pane = self._pane(index)
        self._panes.pop(index)
        for tab in pane.tabs:
            self._sequences.pop(_tab_key(tab.id), None)
        if self._active_pane_index >= len(self._panes):
            self._active_pane_index = len(self._panes) - 1
        self._notify()
        return True

    def set_active_pane(self, index: int) -> None:
        self._pane(index)
        self._active_pane_index = index
        self._notify()

    # -- tabs ------------------------------------------------------------

    def set_active_tab(self, pane_index: int, tab_index: int) -> None:
        pane = self._pane(pane_index)
        if not 0 <= tab_index < len(pane.tabs):
            raise NotFoundError(f"Pane {pane_index} has no tab {tab_index}.")
        pane.active_index = tab_index
        self._active_pane_index = pane_index
        self._notify()

    def open_collection(self, pane_index: int, profile_id: str, collection: str) -> asyncio.Task[None] | None:
        """Activate the pane's tab for this collection, creating and loading it if needed.

        Returns the load task for a new tab, ``None`` when an existing tab was reused.
        """

        pane = self._pane(pane_index)
        self._registry.get(profile_id)
        self._active_pane_index = pane_index
        for idx, tab in enumerate(pane.tabs):
            if tab.matches(profile_id, collection):
                pane.active_index = idx
                self._notify()
                return None
        tab = Tab(profile_id=profile_id, collection=collection)
        pane.tabs.append(tab)
        pane.active_index = len(pane.tabs) - 1
        task = self._schedule_documents(tab)
        self._notify()
        return task

    def close_tab(self, pane_index: int, tab_index: int) -> Tab | None:
        pane = self._pane(pane_index)
        if not 0 <= tab_index < len(pane.tabs):
            return None
        previous = pane.active_index
        removed = pane.tabs.pop(tab_index)
        self._sequences.pop(_tab_key(removed.id), None)
        pane.active_index = _clamp_active(previous, len(pane.tabs))
        self._notify()
        return removed

    def set_filter(self, tab_id: str, filter_text: str) -> None:
        self._tab(tab_id).filter_text = filter_text
        self._notify()

    def set_projection(self, tab_id: str, projection_text: str) -> None:
        self._tab(tab_id).projection_text = projection_text
        self._notify()

    def set_view_mode(self, tab_id: str, mode: ViewMode) -> None:
        self._tab(tab_id).view_mode = ViewMode(mode)
        self._notify()

    def toggle_view_mode(self, tab_id: str) -> ViewMode:
        tab = self._tab(tab_id)
        tab.view_mode = ViewMode.TREE if tab.view_mode is ViewMode.FLAT else ViewMode.FLAT
        self._notify()
        return tab.view_mode

    def refresh(self, tab_id: str) -> asyncio.Task[None]:
        """Re-run the tab's query with its current filter and projection."""

        task = self._schedule_documents(self._tab(tab_id))
        self._notify()
        return task

    # -- servers ---------------------------------------------------------

    def expand_server(self, profile_id: str) -> asyncio.Task[None]:
        profile = self._registry.get(profile_id)
        seq = self._issue(_profile_key(profile_id))
        task = self._spawn(self._load_collections(profile, seq), profile)
        self._notify()
        return task

    def collapse_server(self, profile_id: str) -> None:
        try:
            self._registry.set_expanded(profile_id, False)
        except PersistenceError as exc:
            self._persistence_failed(exc)
        self._notify()

    def add_server(self, profile: ConnectionProfile) -> ConnectionProfile:
        """Register a profile; ``ValidationError`` reaches the caller."""

        try:
            self._registry.add(profile)
        except PersistenceError as exc:
            self._persistence_failed(exc)
        self._notify()
        return self._registry.get(profile.id)

    def update_server(self, profile_id: str, profile: ConnectionProfile) -> ConnectionProfile:
        try:
            self._registry.update(profile_id, profile)
        except PersistenceError as exc:
            self._persistence_failed(exc)
        self._notify()
        return self._registry.get(profile_id)

    def delete_server(self, profile_id: str) -> ConnectionProfile:
        """Remove a profile and every tab that references it, in one step."""

        profile = self._registry.get(profile_id)
        try:
            self._registry.remove(profile_id)
        except PersistenceError as exc:
            self._persistence_failed(exc)
        self._sequences.pop(_profile_key(profile_id), None)
        self._drop_tabs(lambda tab: tab.profile_id == profile_id)
        LOG.info("Server deleted", extra={"profile": profile.name})
        self._notify()
        return profile

    async def test_server(self, profile: ConnectionProfile) -> bool:
        self._in_flight += 1
        self._notify()
        try:
            return await self._query.test_connection(profile)
        finally:
            self._in_flight -= 1
            self._notify()

    async def load_connections(self) -> tuple[ConnectionProfile, ...]:
        """Read saved profiles off the event loop and install them."""

        profiles, warning = await asyncio.to_thread(self._registry.read_stored)
        self._registry.restore(profiles, warning)
        if warning:
            self._error_message = warning
        known = {profile.id for profile in profiles}
        self._drop_tabs(lambda tab: tab.profile_id not in known)
        self._notify()
        return self._registry.list()

    def clear_error(self) -> None:
        if self._error_message is None:
            return
        self._error_message = None
        self._notify()

    async def wait_idle(self) -> None:
        """Wait for every in-flight load, including ones issued while waiting."""

        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    # -- loads -----------------------------------------------------------

    def _schedule_documents(self, tab: Tab) -> asyncio.Task[None]:
        profile = self._registry.get(tab.profile_id)
        seq = self._issue(_tab_key(tab.id))
        return self._spawn(
            self._load_documents(tab, profile, tab.filter_text, tab.projection_text, seq),
            profile,
        )

    async def _load_documents(
        self,
        tab: Tab,
        profile: ConnectionProfile,
        filter_text: str,
        projection_text: str,
        seq: int,
    ) -> None:
        try:
            documents = await self._query.query_documents(
                profile,
                tab.collection,
                filter_text,
                projection_text,
                self._result_limit,
            )
        except MongouiError as exc:
            if self._is_current_tab_load(tab, seq):
                self._error_message = f"Failed to load documents: {profile.redact(str(exc))}"
                LOG.warning("Document load failed", extra={"collection": tab.collection, "profile": profile.name})
            return
        if not self._is_current_tab_load(tab, seq):
            LOG.debug("Discarding stale document load", extra={"tab": tab.id, "seq": seq})
            return
        self._apply_documents(tab, documents)

    def _apply_documents(self, tab: Tab, documents: tuple[Document, ...]) -> None:
        tab.documents = tuple(documents)
        tab.loaded_at = datetime.now(tz=timezone.utc)

    async def _load_collections(self, profile: ConnectionProfile, seq: int) -> None:
        key = _profile_key(profile.id)
        try:
            collections = await self._query.discover_collections(profile)
        except MongouiError as exc:
            if self._is_current(key, seq) and self._registry.contains(profile.id):
                self._error_message = f"Failed to load collections: {profile.redact(str(exc))}"
                LOG.warning("Collection discovery failed", extra={"profile": profile.name})
            return
        if not (self._is_current(key, seq) and self._registry.contains(profile.id)):
            LOG.debug("Discarding stale collection discovery", extra={"profile": profile.name, "seq": seq})
            return
        try:
            self._registry.replace_collections(profile.id, collections)
        except PersistenceError as exc:
            self._persistence_failed(exc)

    def _spawn(self, coro: Coroutine[Any, Any, None], profile: ConnectionProfile) -> asyncio.Task[None]:
        loop = asyncio.get_running_loop()
        self._in_flight += 1
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(functools.partial(self._on_load_done, profile))
        return task

    def _on_load_done(self, profile: ConnectionProfile, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        self._in_flight = max(0, self._in_flight - 1)
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                LOG.error("Load task crashed", exc_info=exc)
                self._error_message = f"Unexpected error: {self._redact(profile.redact(str(exc)))}"
        self._notify()

    def _issue(self, key: str) -> int:
        seq = self._sequences.get(key, 0) + 1
        self._sequences[key] = seq
        return seq

    def _is_current(self, key: str, seq: int) -> bool:
        return self._sequences.get(key) == seq

    def _is_current_tab_load(self, tab: Tab, seq: int) -> bool:
        return (
            self._is_current(_tab_key(tab.id), seq)
            and self.find_tab(tab.id) is tab
            and self._registry.contains(tab.profile_id)
        )

    # -- helpers ---------------------------------------------------------

    def _pane(self, index: int) -> Pane:
        if not 0 <= index < len(self._panes):
            raise NotFoundError(f"Pane {index} does not exist.")
        return self._panes[index]

    def _tab(self, tab_id: str) -> Tab:
        tab = self.find_tab(tab_id)
        if tab is None:
            raise NotFoundError(f"Tab '{tab_id}' is not open.")
        return tab

    def _drop_tabs(self, predicate: Callable[[Tab], bool]) -> None:
        for pane in self._panes:
            active = pane.active_tab
            kept = [tab for tab in pane.tabs if not predicate(tab)]
            if len(kept) == len(pane.tabs):
                continue
            for tab in pane.tabs:
                if predicate(tab):
                    self._sequences.pop(_tab_key(tab.id), None)
            previous = pane.active_index
            pane.tabs[:] = kept
            if active is not None and active in kept:
                pane.active_index = kept.index(active)
            else:
                pane.active_index = _clamp_active(previous, len(kept))

    def _redact(self, message: str) -> str:
        for profile in self._registry.list():
            message = profile.redact(message)
        return message

    def _persistence_failed(self, exc: PersistenceError) -> None:
        LOG.warning("Saving connections failed", extra={"error": str(exc)})
        self._error_message = f"Failed to save connections: {exc}"

    def _notify(self) -> None:
        for listener in tuple(self._listeners):
            listener(self)


def _clamp_active(previous: int | None, size: int) -> int | None:
    if size == 0:
        return None
    return min(previous if previous is not None else 0, size - 1)


def _tab_key(tab_id: str) -> str:
    return f"tab:{tab_id}"


def _profile_key(profile_id: str) -> str:
    return f"profile:{profile_id}"


__all__ = ["SessionStore", "StoreListener"]
