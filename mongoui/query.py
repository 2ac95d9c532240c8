"""Query services that talk to MongoDB on behalf of the session store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from bson import ObjectId, json_util
from bson.errors import BSONError
from pymongo import AsyncMongoClient
from pymongo.errors import ConfigurationError, ConnectionFailure, OperationFailure, PyMongoError

from .errors import DatabaseConnectionError, QueryError
from .models import ConnectionProfile, Document

LOG = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
SYSTEM_DATABASES = frozenset({"admin", "local", "config"})

# Server error codes that mean "who you are" rather than "what you asked".
_UNAUTHORIZED = 13
_AUTHENTICATION_FAILED = 18
_AUTH_CODES = frozenset({_UNAUTHORIZED, _AUTHENTICATION_FAILED})


class QueryService(Protocol):
    """Interface implemented by query services."""

    async def discover_collections(self, profile: ConnectionProfile) -> tuple[str, ...]: ...

    async def query_documents(
        self,
        profile: ConnectionProfile,
        collection: str,
        filter_text: str,
        projection_text: str,
        limit: int = DEFAULT_LIMIT,
    ) -> tuple[Document, ...]: ...

    async def test_connection(self, profile: ConnectionProfile) -> bool: ...


def parse_filter(text: str | None) -> dict[str, Any]:
    """Parse an Extended JSON filter; anything unusable matches all documents."""

    parsed = _parse_object(text)
    return parsed if parsed is not None else {}


def parse_projection(text: str | None) -> dict[str, Any] | None:
    """Parse an Extended JSON projection; anything unusable means all fields."""

    return _parse_object(text) or None


def split_collection_id(identifier: str, default_database: str) -> tuple[str, str]:
    """Split ``db.collection`` into its parts (collection names may contain dots)."""

    if "." in identifier:
        database, collection = identifier.split(".", 1)
        if database and collection:
            return database, collection
    return default_database, identifier


def _parse_object(text: str | None) -> dict[str, Any] | None:
    stripped = (text or "").strip()
    if not stripped:
        return None
    try:
        value = json_util.loads(stripped)
    except (ValueError, TypeError, KeyError, RecursionError, BSONError) as exc:
        LOG.debug("Ignoring unparsable query text", extra={"error": str(exc)})
        return None
    if not isinstance(value, dict):
        return None
    return value


class MongoQueryService:
    """Runs discovery and find() calls through PyMongo's async client, one client per call."""

    def __init__(self, *, connect_timeout_ms: int = 3000) -> None:
        self._connect_timeout_ms = connect_timeout_ms

    async def discover_collections(self, profile: ConnectionProfile) -> tuple[str, ...]:
        LOG.debug("Discovering collections", extra={"uri": profile.redacted_connection_string})
        client = self._open(profile)
        try:
            identifiers: list[str] = []
            for database in await self._database_names(client, profile):
                names = await client[database].list_collection_names()
                identifiers.extend(f"{database}.{name}" for name in names)
        except PyMongoError as exc:
            raise DatabaseConnectionError(self._describe(profile, exc)) from exc
        finally:
            await self._close(client)
        return tuple(identifiers)

    async def query_documents(
        self,
        profile: ConnectionProfile,
        collection: str,
        filter_text: str,
        projection_text: str,
        limit: int = DEFAULT_LIMIT,
    ) -> tuple[Document, ...]:
        database, name = split_collection_id(collection, profile.auth_database)
        query = parse_filter(filter_text)
        projection = parse_projection(projection_text)
        # limit=0 means "no limit" to the server.
        cap = limit if limit > 0 else DEFAULT_LIMIT
        LOG.debug(
            "Querying collection",
            extra={"uri": profile.redacted_connection_string, "collection": collection, "limit": cap},
        )
        client = self._open(profile)
        try:
            cursor = client[database][name].find(query, projection, limit=cap)
            documents = await cursor.to_list(length=cap)
        except ConnectionFailure as exc:
            raise DatabaseConnectionError(self._describe(profile, exc)) from exc
        except OperationFailure as exc:
            if exc.code in _AUTH_CODES:
                raise DatabaseConnectionError(self._describe(profile, exc)) from exc
            raise QueryError(self._describe(profile, exc)) from exc
        except PyMongoError as exc:
            raise QueryError(self._describe(profile, exc)) from exc
        except BSONError as exc:
            raise QueryError(self._describe(profile, exc)) from exc
        finally:
            await self._close(client)
        return tuple(documents[:cap])

    async def test_connection(self, profile: ConnectionProfile) -> bool:
        try:
            client = self._open(profile)
        except DatabaseConnectionError:
            return False
        try:
            await client.admin.command("ping")
        except Exception as exc:  # probe must never raise
            LOG.debug("Connection probe failed", extra={"uri": profile.redacted_connection_string, "error": profile.redact(str(exc))})
            return False
        finally:
            await self._close(client)
        return True

    def _open(self, profile: ConnectionProfile) -> AsyncMongoClient:
        try:
            return AsyncMongoClient(
                profile.connection_string,
                serverSelectionTimeoutMS=self._connect_timeout_ms,
                connectTimeoutMS=self._connect_timeout_ms,
            )
        except ConfigurationError as exc:
            raise DatabaseConnectionError(self._describe(profile, exc)) from exc

    @staticmethod
    async def _database_names(client: AsyncMongoClient, profile: ConnectionProfile) -> list[str]:
        try:
            names = await client.list_database_names()
        except OperationFailure as exc:
            if exc.code != _UNAUTHORIZED:
                raise
            return [profile.auth_database]
        return [name for name in names if name not in SYSTEM_DATABASES]

    @staticmethod
    async def _close(client: AsyncMongoClient) -> None:
        try:
            await client.close()
        except Exception:  # pragma: no cover - best effort cleanup
            LOG.debug("Closing client failed", exc_info=True)

    @staticmethod
    def _describe(profile: ConnectionProfile, exc: Exception) -> str:
        return f"{profile.name} ({profile.redacted_connection_string}): {profile.redact(str(exc))}"


def _demo_documents() -> dict[str, list[dict[str, Any]]]:
    created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return {
        "shop.users": [
            {
                "_id": ObjectId("65f000000000000000000001"),
                "name": "Alice",
                "email": "alice@example.com",
                "address": {"city": "Berlin", "zip": "10115"},
                "tags": ["admin", "beta"],
                "created_at": created,
            },
            {
                "_id": ObjectId("65f000000000000000000002"),
                "name": "Bob",
                "email": "bob@example.com",
                "address": {"city": "Lisbon", "zip": "1100"},
                "tags": [],
                "created_at": created,
            },
        ],
        "shop.orders": [
            {
                "_id": ObjectId("65f0000000000000000000a1"),
                "user": "Alice",
                "total": 42.5,
                "items": [{"sku": "mug", "qty": 2}, {"sku": "tee", "qty": 1}],
                "paid": True,
            },
            {
                "_id": ObjectId("65f0000000000000000000a2"),
                "user": "Bob",
                "total": 9.99,
                "items": [{"sku": "sticker", "qty": 3}],
                "paid": False,
            },
        ],
        "analytics.events": [
            {"_id": idx, "name": "page_view", "payload": {"path": f"/p/{idx}"}}
            for idx in range(1, 151)
        ],
    }


class DemoQueryService:
    """Serves fixed in-memory collections so the UI works without a server."""

    def __init__(self, collections: Mapping[str, Sequence[Mapping[str, Any]]] | None = None) -> None:
        sources = collections if collections is not None else _demo_documents()
        self._collections: dict[str, tuple[Document, ...]] = {
            name: tuple(dict(doc) for doc in docs) for name, docs in sources.items()
        }

    async def discover_collections(self, profile: ConnectionProfile) -> tuple[str, ...]:
        return tuple(self._collections)

    async def query_documents(
        self,
        profile: ConnectionProfile,
        collection: str,
        filter_text: str,
        projection_text: str,
        limit: int = DEFAULT_LIMIT,
    ) -> tuple[Document, ...]:
        if collection not in self._collections:
            raise QueryError(f"Unknown demo collection '{collection}'.")
        query = parse_filter(filter_text)
        projection = parse_projection(projection_text)
        cap = limit if limit > 0 else DEFAULT_LIMIT
        matches = [doc for doc in self._collections[collection] if _matches(doc, query)]
        return tuple(_project(doc, projection) for doc in matches[:cap])

    async def test_connection(self, profile: ConnectionProfile) -> bool:
        return True


def _matches(document: Document, query: Mapping[str, Any]) -> bool:
    return all(document.get(key) == value for key, value in query.items())


def _project(document: Document, projection: Mapping[str, Any] | None) -> Document:
    if not projection:
        return dict(document)
    included = {key for key, flag in projection.items() if flag and key != "_id"}
    excluded = {key for key, flag in projection.items() if not flag}
    if included:
        keep_id = "_id" not in excluded
        return {
            key: value
            for key, value in document.items()
            if key in included or (key == "_id" and keep_id)
        }
    return {key: value for key, value in document.items() if key not in excluded}


__all__ = [
    "DEFAULT_LIMIT",
    "DemoQueryService",
    "MongoQueryService",
    "QueryService",
    "parse_filter",
    "parse_projection",
    "split_collection_id",
]
