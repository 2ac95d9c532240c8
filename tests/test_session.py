"""Tests for the session store: panes, tabs, and async loads."""

from __future__ import annotations

import asyncio
import json
import random
from pathlib import Path
from typing import Any

import pytest

from mongoui.errors import DatabaseConnectionError, NotFoundError, QueryError, ValidationError
from mongoui.models import ConnectionProfile, ViewMode
from mongoui.query import DemoQueryService
from mongoui.registry import ConnectionRegistry, ConnectionStorage
from mongoui.session import SessionStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _StubQueryService:
    def __init__(self, collections=(), documents=None) -> None:  # type: ignore[no-untyped-def]
        self.collections = tuple(collections)
        self.documents: dict[str, tuple[dict[str, Any], ...]] = documents or {}
        self.failure: Exception | None = None
        self.calls: list[tuple[str, str, str, int]] = []
        self.probes = 0

    async def discover_collections(self, profile):  # type: ignore[no-untyped-def]
        if self.failure is not None:
            raise self.failure
        return self.collections

    async def query_documents(self, profile, collection, filter_text, projection_text, limit=100):  # type: ignore[no-untyped-def]
        self.calls.append((collection, filter_text, projection_text, limit))
        if self.failure is not None:
            raise self.failure
        return self.documents.get(collection, ())

    async def test_connection(self, profile):  # type: ignore[no-untyped-def]
        self.probes += 1
        await asyncio.sleep(0)
        return True


class _GatedQueryService(_StubQueryService):
    """Holds every document load until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.pending: list[_PendingLoad] = []

    async def query_documents(self, profile, collection, filter_text, projection_text, limit=100):  # type: ignore[no-untyped-def]
        self.calls.append((collection, filter_text, projection_text, limit))
        load = _PendingLoad(filter_text)
        self.pending.append(load)
        await load.gate.wait()
        if load.error is not None:
            raise load.error
        return load.documents


class _PendingLoad:
    def __init__(self, filter_text: str) -> None:
        self.filter_text = filter_text
        self.gate = asyncio.Event()
        self.documents: tuple[dict[str, Any], ...] = ()
        self.error: Exception | None = None

    def succeed(self, *documents: dict[str, Any]) -> None:
        self.documents = documents
        self.gate.set()

    def fail(self, error: Exception) -> None:
        self.error = error
        self.gate.set()


def _store(tmp_path: Path, service=None, **kwargs) -> SessionStore:  # type: ignore[no-untyped-def]
    registry = ConnectionRegistry(ConnectionStorage(tmp_path / "connections.json"))
    return SessionStore(registry, service or _StubQueryService(), **kwargs)


def _profile(name: str = "Local", **kwargs: Any) -> ConnectionProfile:
    return ConnectionProfile(name=name, host="localhost", **kwargs)


def test_store_starts_with_one_empty_pane(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert len(store.panes) == 1
    assert store.active_pane_index == 0
    assert store.active_pane.active_index is None
    assert store.active_tab is None
    assert store.loading is False
    assert store.error_message is None


def test_last_pane_cannot_be_removed(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert store.remove_pane(0) is False
    assert len(store.panes) == 1


def test_add_and_remove_panes_keep_active_index_in_range(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.add_pane()
    store.add_pane()

    assert store.active_pane_index == 2
    assert store.remove_pane(2) is True
    assert store.active_pane_index == 1
    store.set_active_pane(0)
    assert store.remove_pane(1) is True
    assert store.active_pane_index == 0
    assert len(store.panes) == 1


def test_set_active_pane_rejects_unknown_index(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with pytest.raises(NotFoundError):
        store.set_active_pane(3)
    assert store.active_pane_index == 0


def test_listeners_are_notified_until_unsubscribed(tmp_path: Path) -> None:
    store = _store(tmp_path)
    seen: list[int] = []

    unsubscribe = store.subscribe(lambda state: seen.append(len(state.panes)))
    store.add_pane()
    unsubscribe()
    store.add_pane()

    assert seen == [2]


@pytest.mark.anyio
async def test_open_collection_creates_tab_and_loads_documents(tmp_path: Path) -> None:
    service = _StubQueryService(documents={"shop.users": ({"_id": 1}, {"_id": 2})})
    store = _store(tmp_path, service, result_limit=25)
    profile = store.add_server(_profile())

    task = store.open_collection(0, profile.id, "shop.users")
    assert task is not None
    assert store.loading is True
    await task

    tab = store.active_tab
    assert tab is not None
    assert tab.collection == "shop.users"
    assert tab.documents == ({"_id": 1}, {"_id": 2})
    assert tab.loaded_at is not None
    assert service.calls == [("shop.users", "{}", "{}", 25)]
    assert store.loading is False


@pytest.mark.anyio
async def test_open_collection_reuses_existing_tab_without_reloading(tmp_path: Path) -> None:
    service = _StubQueryService()
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())

    await store.open_collection(0, profile.id, "shop.users")  # type: ignore[misc]
    await store.open_collection(0, profile.id, "shop.orders")  # type: ignore[misc]
    reused = store.open_collection(0, profile.id, "shop.users")

    assert reused is None
    assert [tab.collection for tab in store.active_pane.tabs] == ["shop.users", "shop.orders"]
    assert store.active_pane.active_index == 0
    assert len(service.calls) == 2


@pytest.mark.anyio
async def test_open_collection_activates_the_target_pane(tmp_path: Path) -> None:
    store = _store(tmp_path)
    profile = store.add_server(_profile())
    store.add_pane()

    await store.open_collection(0, profile.id, "shop.users")  # type: ignore[misc]

    assert store.active_pane_index == 0
    assert store.panes[1].tabs == []


@pytest.mark.anyio
async def test_open_collection_rejects_unknown_profile(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with pytest.raises(NotFoundError):
        store.open_collection(0, "missing", "shop.users")
    assert store.active_pane.tabs == []


@pytest.mark.anyio
async def test_close_tab_moves_selection_to_a_neighbour(tmp_path: Path) -> None:
    store = _store(tmp_path)
    profile = store.add_server(_profile())
    for name in ("a", "b", "c"):
        store.open_collection(0, profile.id, f"db.{name}")
    await store.wait_idle()
    pane = store.active_pane
    assert pane.active_index == 2

    assert store.close_tab(0, 2) is not None
    assert [tab.collection for tab in pane.tabs] == ["db.a", "db.b"]
    assert pane.active_index == 1

    store.close_tab(0, 0)
    assert pane.active_index == 0
    assert pane.active_tab is not None and pane.active_tab.collection == "db.b"

    store.close_tab(0, 0)
    assert pane.tabs == []
    assert pane.active_index is None


@pytest.mark.anyio
async def test_close_tab_out_of_range_is_ignored(tmp_path: Path) -> None:
    store = _store(tmp_path)
    profile = store.add_server(_profile())
    await store.open_collection(0, profile.id, "db.a")  # type: ignore[misc]

    assert store.close_tab(0, 5) is None
    assert len(store.active_pane.tabs) == 1


@pytest.mark.anyio
async def test_set_active_tab_rejects_unknown_index(tmp_path: Path) -> None:
    store = _store(tmp_path)
    profile = store.add_server(_profile())
    await store.open_collection(0, profile.id, "db.a")  # type: ignore[misc]

    with pytest.raises(NotFoundError):
        store.set_active_tab(0, 1)
    assert store.active_pane.active_index == 0


@pytest.mark.anyio
async def test_filter_projection_and_view_mode_edits_do_not_load(tmp_path: Path) -> None:
    service = _StubQueryService()
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())
    await store.open_collection(0, profile.id, "db.a")  # type: ignore[misc]
    tab = store.active_tab
    assert tab is not None

    store.set_filter(tab.id, '{"name": "Alice"}')
    store.set_projection(tab.id, '{"name": 1}')
    store.set_view_mode(tab.id, ViewMode.TREE)
    assert store.toggle_view_mode(tab.id) is ViewMode.FLAT

    assert len(service.calls) == 1
    assert tab.filter_text == '{"name": "Alice"}'
    assert tab.projection_text == '{"name": 1}'

    await store.refresh(tab.id)
    assert service.calls[-1] == ("db.a", '{"name": "Alice"}', '{"name": 1}', 100)


@pytest.mark.anyio
async def test_failed_refresh_keeps_previous_documents(tmp_path: Path) -> None:
    service = _StubQueryService(documents={"db.a": ({"_id": 1},)})
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())
    await store.open_collection(0, profile.id, "db.a")  # type: ignore[misc]
    tab = store.active_tab
    assert tab is not None
    loaded_at = tab.loaded_at

    service.failure = QueryError("unknown operator: $bogus")
    await store.refresh(tab.id)

    assert tab.documents == ({"_id": 1},)
    assert tab.loaded_at == loaded_at
    assert store.error_message == "Failed to load documents: unknown operator: $bogus"
    assert store.loading is False


@pytest.mark.anyio
async def test_load_errors_never_expose_the_password(tmp_path: Path) -> None:
    service = _StubQueryService()
    service.failure = DatabaseConnectionError("Authentication failed for hunter2")
    store = _store(tmp_path, service)
    profile = store.add_server(_profile(username="admin", password="hunter2"))

    await store.open_collection(0, profile.id, "db.a")  # type: ignore[misc]

    assert store.error_message is not None
    assert "hunter2" not in store.error_message
    assert "***" in store.error_message


@pytest.mark.anyio
async def test_second_of_two_rapid_refreshes_wins(tmp_path: Path) -> None:
    service = _GatedQueryService()
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())
    store.open_collection(0, profile.id, "db.a")
    tab = store.active_tab
    assert tab is not None

    store.set_filter(tab.id, '{"v": 1}')
    store.refresh(tab.id)
    store.set_filter(tab.id, '{"v": 2}')
    newest = store.refresh(tab.id)
    await asyncio.sleep(0)
    initial, older, latest = service.pending
    assert latest.filter_text == '{"v": 2}'

    latest.succeed({"v": 2})
    await newest
    older.succeed({"v": 1})
    initial.fail(QueryError("too late"))
    await store.wait_idle()

    assert tab.documents == ({"v": 2},)
    assert store.error_message is None
    assert store.loading is False


@pytest.mark.anyio
async def test_loading_stays_set_while_any_load_is_in_flight(tmp_path: Path) -> None:
    service = _GatedQueryService()
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())
    store.open_collection(0, profile.id, "db.a")
    store.open_collection(0, profile.id, "db.b")
    await asyncio.sleep(0)
    first, second = service.pending

    first.succeed({"_id": 1})
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert store.loading is True

    second.succeed({"_id": 2})
    await store.wait_idle()
    assert store.loading is False


@pytest.mark.anyio
async def test_result_for_closed_tab_is_discarded(tmp_path: Path) -> None:
    service = _GatedQueryService()
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())
    store.open_collection(0, profile.id, "db.a")
    await asyncio.sleep(0)
    closed = store.close_tab(0, 0)
    assert closed is not None

    service.pending[0].fail(QueryError("boom"))
    await store.wait_idle()

    assert closed.documents == ()
    assert store.find_tab(closed.id) is None
    assert store.error_message is None
    assert store.loading is False


@pytest.mark.anyio
async def test_expand_server_then_open_collection(tmp_path: Path) -> None:
    documents = ({"_id": 1}, {"_id": 2}, {"_id": 3})
    service = _StubQueryService(collections=["db.users", "db.orders"], documents={"db.users": documents})
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())

    await store.expand_server(profile.id)
    expanded = store.profile(profile.id)
    assert expanded.collections == ("db.users", "db.orders")
    assert expanded.expanded is True
    assert expanded.collections_refreshed_at is not None

    await store.open_collection(0, profile.id, "db.users")  # type: ignore[misc]
    assert store.active_tab is not None
    assert len(store.active_tab.documents) == 3
    assert store.loading is False
    assert store.error_message is None


@pytest.mark.anyio
async def test_failed_discovery_keeps_cached_collections(tmp_path: Path) -> None:
    service = _StubQueryService(collections=["db.users"])
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())
    await store.expand_server(profile.id)

    service.failure = DatabaseConnectionError("connection refused")
    await store.expand_server(profile.id)

    assert store.profile(profile.id).collections == ("db.users",)
    assert store.error_message == "Failed to load collections: connection refused"


@pytest.mark.anyio
async def test_collapse_server_persists_flag(tmp_path: Path) -> None:
    service = _StubQueryService(collections=["db.users"])
    store = _store(tmp_path, service)
    profile = store.add_server(_profile())
    await store.expand_server(profile.id)

    store.collapse_server(profile.id)

    assert store.profile(profile.id).expanded is False
    stored = json.loads((tmp_path / "connections.json").read_text())
    assert stored["connections"][0]["isExpanded"] is False
    assert stored["connections"][0]["collections"] == ["db.users"]


@pytest.mark.anyio
async def test_delete_server_closes_its_tabs_in_every_pane(tmp_path: Path) -> None:
    store = _store(tmp_path)
    doomed = store.add_server(_profile("Doomed"))
    kept = store.add_server(_profile("Kept"))
    store.open_collection(0, doomed.id, "db.a")
    store.open_collection(0, kept.id, "db.b")
    store.open_collection(0, doomed.id, "db.c")
    store.add_pane()
    store.open_collection(1, doomed.id, "db.a")
    await store.wait_idle()

    store.delete_server(doomed.id)

    assert [tab.collection for tab in store.panes[0].tabs] == ["db.b"]
    assert store.panes[0].active_index == 0
    assert store.panes[1].tabs == []
    assert store.panes[1].active_index is None
    assert [profile.name for profile in store.profiles] == ["Kept"]
    with pytest.raises(NotFoundError):
        store.profile(doomed.id)


@pytest.mark.anyio
async def test_delete_server_keeps_surviving_active_tab_selected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    doomed = store.add_server(_profile("Doomed"))
    kept = store.add_server(_profile("Kept"))
    store.open_collection(0, doomed.id, "db.a")
    store.open_collection(0, doomed.id, "db.b")
    store.open_collection(0, kept.id, "db.c")
    await store.wait_idle()

    store.delete_server(doomed.id)

    assert store.active_tab is not None
    assert store.active_tab.collection == "db.c"


def test_add_server_rejects_invalid_profile(tmp_path: Path) -> None:
    store = _store(tmp_path)

    with pytest.raises(ValidationError):
        store.add_server(ConnectionProfile(name="", host="localhost"))
    assert store.profiles == ()


def test_add_server_surfaces_persistence_failure(tmp_path: Path) -> None:
    target = tmp_path / "connections.json"
    target.mkdir()
    store = _store(tmp_path)

    profile = store.add_server(_profile())

    assert store.profiles == (profile,)
    assert store.error_message is not None
    assert store.error_message.startswith("Failed to save connections:")


def test_update_server_keeps_identity(tmp_path: Path) -> None:
    store = _store(tmp_path)
    profile = store.add_server(_profile())

    updated = store.update_server(profile.id, _profile("Renamed", port=27018))

    assert updated.id == profile.id
    assert store.profile(profile.id).name == "Renamed"
    assert store.profile(profile.id).port == 27018


@pytest.mark.anyio
async def test_test_server_reports_reachability(tmp_path: Path) -> None:
    service = _StubQueryService()
    store = _store(tmp_path, service)
    states: list[bool] = []
    store.subscribe(lambda state: states.append(state.loading))

    assert await store.test_server(_profile()) is True
    assert service.probes == 1
    assert states == [True, False]


@pytest.mark.anyio
async def test_load_connections_restores_saved_profiles(tmp_path: Path) -> None:
    seeded = _store(tmp_path)
    profile = seeded.add_server(_profile())

    store = _store(tmp_path)
    restored = await store.load_connections()

    assert [item.id for item in restored] == [profile.id]
    assert store.error_message is None


@pytest.mark.anyio
async def test_load_connections_reports_corrupt_file(tmp_path: Path) -> None:
    (tmp_path / "connections.json").write_text("{not json")
    store = _store(tmp_path)

    restored = await store.load_connections()

    assert restored == ()
    assert store.error_message is not None
    assert store.error_message.startswith("Saved connections could not be loaded")
    assert (tmp_path / "connections.json.bak").read_text() == "{not json"


def test_clear_error_resets_message(tmp_path: Path) -> None:
    target = tmp_path / "connections.json"
    target.mkdir()
    store = _store(tmp_path)
    store.add_server(_profile())
    assert store.error_message is not None

    store.clear_error()

    assert store.error_message is None


@pytest.mark.anyio
async def test_malformed_extended_json_filter_still_loads(tmp_path: Path) -> None:
    store = _store(tmp_path, DemoQueryService())
    profile = store.add_server(_profile())
    await store.open_collection(0, profile.id, "shop.users")  # type: ignore[misc]
    tab = store.active_tab
    assert tab is not None

    store.set_filter(tab.id, '{"a": {"$binary": {"base64": "AA=="}}}')
    await store.refresh(tab.id)

    assert len(tab.documents) == 2
    assert store.error_message is None


class _CrashingQueryService(_StubQueryService):
    async def query_documents(self, profile, collection, filter_text, projection_text, limit=100):  # type: ignore[no-untyped-def]
        raise RuntimeError(f"driver blew up near {profile.connection_string}")


@pytest.mark.anyio
async def test_unexpected_load_errors_never_expose_the_password(tmp_path: Path) -> None:
    store = _store(tmp_path, _CrashingQueryService())
    profile = store.add_server(_profile(username="admin", password="hunter2"))

    store.open_collection(0, profile.id, "db.a")
    await store.wait_idle()

    assert store.error_message is not None
    assert store.error_message.startswith("Unexpected error:")
    assert "hunter2" not in store.error_message
    assert store.loading is False


def _assert_pane_invariants(store: SessionStore) -> None:
    assert len(store.panes) >= 1
    assert 0 <= store.active_pane_index < len(store.panes)
    for pane in store.panes:
        if pane.tabs:
            assert pane.active_index is not None
            assert 0 <= pane.active_index < len(pane.tabs)
        else:
            assert pane.active_index is None
        keys = [(tab.profile_id, tab.collection) for tab in pane.tabs]
        assert len(keys) == len(set(keys))


@pytest.mark.anyio
@pytest.mark.parametrize("seed", range(20))
async def test_random_pane_and_tab_sequences_keep_invariants(tmp_path: Path, seed: int) -> None:
    rng = random.Random(seed)
    store = _store(tmp_path)
    profiles = [store.add_server(_profile(f"Server {idx}")) for idx in range(2)]
    collections = ["db.a", "db.b", "db.c"]

    for _ in range(200):
        action = rng.choice(["add_pane", "remove_pane", "focus_pane", "open", "close", "select", "delete"])
        pane_index = rng.randrange(len(store.panes))
        pane = store.panes[pane_index]
        if action == "add_pane":
            store.add_pane()
        elif action == "remove_pane":
            before = len(store.panes)
            removed = store.remove_pane(pane_index)
            assert removed is (before > 1)
        elif action == "focus_pane":
            store.set_active_pane(pane_index)
        elif action == "open":
            live = store.profiles
            if live:
                store.open_collection(pane_index, rng.choice(live).id, rng.choice(collections))
        elif action == "close":
            size = len(pane.tabs)
            previous = pane.active_index
            tab_index = rng.randrange(size + 2)
            closed = store.close_tab(pane_index, tab_index)
            if tab_index < size:
                assert closed is not None
                expected = None if size == 1 else min(previous if previous is not None else 0, size - 2)
                assert pane.active_index == expected
            else:
                assert closed is None
        elif action == "select" and pane.tabs:
            store.set_active_tab(pane_index, rng.randrange(len(pane.tabs)))
        elif action == "delete" and store.profiles and rng.random() < 0.1:
            doomed = rng.choice(store.profiles)
            store.delete_server(doomed.id)
            assert all(tab.profile_id != doomed.id for item in store.panes for tab in item.tabs)
            store.add_server(_profile(f"Server {doomed.name}"))
        _assert_pane_invariants(store)

    await store.wait_idle()
    assert store.loading is False
