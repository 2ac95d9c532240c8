"""Shared dataclasses used across the registry, session, and presenter modules."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from urllib.parse import quote_plus

Document = Mapping[str, Any]

DEFAULT_PORT = 27017
DEFAULT_AUTH_DATABASE = "admin"
DEFAULT_FILTER = "{}"
DEFAULT_PROJECTION = "{}"
REDACTED = "***"


def new_id() -> str:
    return uuid.uuid4().hex


class ViewMode(str, Enum):
    """How a tab renders its loaded documents."""

    FLAT = "flat"
    TREE = "tree"


@dataclass(frozen=True, slots=True)
class ConnectionProfile:
    """Runtime representation of a saved server connection.

    ``collections`` and ``collections_refreshed_at`` cache the last discovery
    result; ``expanded`` records whether the sidebar node is open.
    """

    name: str
    host: str
    port: int = DEFAULT_PORT
    username: str = ""
    password: str = ""
    auth_database: str = DEFAULT_AUTH_DATABASE
    id: str = field(default_factory=new_id)
    collections: tuple[str, ...] = ()
    collections_refreshed_at: datetime | None = None
    expanded: bool = False

    @property
    def connection_string(self) -> str:
        """Driver URI derived from the profile fields."""

        return self._build_uri(self.password)

    @property
    def redacted_connection_string(self) -> str:
        """Connection string safe for logs and error messages."""

        return self._build_uri(REDACTED if self.password else "")

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)

    def redact(self, message: str) -> str:
        """Strip this profile's password from an arbitrary message."""

        if not self.password:
            return message
        message = message.replace(quote_plus(self.password), REDACTED)
        return message.replace(self.password, REDACTED)

    def _build_uri(self, password: str) -> str:
        if self.username:
            user = quote_plus(self.username)
            secret = password if password == REDACTED else quote_plus(password)
            auth_db = self.auth_database or DEFAULT_AUTH_DATABASE
            return f"mongodb://{user}:{secret}@{self.host}:{self.port}/?authSource={auth_db}"
        return f"mongodb://{self.host}:{self.port}"


@dataclass(slots=True)
class Tab:
    """One open collection view. Mutated only by the session store."""

    profile_id: str
    collection: str
    id: str = field(default_factory=new_id)
    filter_text: str = DEFAULT_FILTER
    projection_text: str = DEFAULT_PROJECTION
    view_mode: ViewMode = ViewMode.FLAT
    documents: tuple[Document, ...] = ()
    loaded_at: datetime | None = None

    @property
    def title(self) -> str:
        return self.collection

    def matches(self, profile_id: str, collection: str) -> bool:
        return self.profile_id == profile_id and self.collection == collection


@dataclass(slots=True)
class Pane:
    """Ordered tabs plus the index of the selected one (``None`` when empty)."""

    id: str = field(default_factory=new_id)
    tabs: list[Tab] = field(default_factory=list)
    active_index: int | None = None

    @property
    def active_tab(self) -> Tab | None:
        if self.active_index is None:
            return None
        return self.tabs[self.active_index]

    def index_of(self, tab_id: str) -> int | None:
        for idx, tab in enumerate(self.tabs):
            if tab.id == tab_id:
                return idx
        return None


__all__ = [
    "ConnectionProfile",
    "DEFAULT_AUTH_DATABASE",
    "DEFAULT_FILTER",
    "DEFAULT_PORT",
    "DEFAULT_PROJECTION",
    "Document",
    "Pane",
    "Tab",
    "ViewMode",
    "new_id",
]
