"""Connection registry and its on-disk storage."""

from __future__ import annotations

import logging
import shutil
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError

from .errors import NotFoundError, PersistenceError, ValidationError
from .models import DEFAULT_AUTH_DATABASE, DEFAULT_PORT, ConnectionProfile

LOG = logging.getLogger(__name__)

STORAGE_VERSION = 1


class StoredConnection(BaseModel):
    """One profile as written to the connections file."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    host: str
    port: int = DEFAULT_PORT
    username: str = ""
    password: str = ""
    auth_database: str = Field(default=DEFAULT_AUTH_DATABASE, alias="authDatabase")
    collections: list[str] = Field(default_factory=list)
    is_expanded: bool = Field(default=False, alias="isExpanded")

    @classmethod
    def from_profile(cls, profile: ConnectionProfile) -> StoredConnection:
        return cls(
            id=profile.id,
            name=profile.name,
            host=profile.host,
            port=profile.port,
            username=profile.username,
            password=profile.password,
            auth_database=profile.auth_database,
            collections=list(profile.collections),
            is_expanded=profile.expanded,
        )

    def to_profile(self) -> ConnectionProfile:
        return ConnectionProfile(
            id=self.id,
            name=self.name,
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            auth_database=self.auth_database,
            collections=tuple(self.collections),
            expanded=self.is_expanded,
        )


class StoredConnections(BaseModel):
    """Versioned envelope for the connections file."""

    model_config = ConfigDict(extra="ignore")

    version: int = STORAGE_VERSION
    connections: list[StoredConnection] = Field(default_factory=list)


class ConnectionStorage:
    """Reads and writes the connections file as pretty-printed JSON."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> list[ConnectionProfile]:
        """Return stored profiles; a missing or blank file means none."""

        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Cannot read {self._path}: {exc}") from exc
        if not raw.strip():
            return []
        try:
            stored = StoredConnections.model_validate_json(raw)
        except SchemaError as exc:
            raise PersistenceError(f"Corrupt connections file {self._path}: {exc.error_count()} error(s)") from exc
        if stored.version > STORAGE_VERSION:
            LOG.info(
                "Connections file written by a newer version",
                extra={"version": stored.version, "path": str(self._path)},
            )
        return [entry.to_profile() for entry in stored.connections]

    def write(self, profiles: Sequence[ConnectionProfile]) -> None:
        """Overwrite the file with the given profiles."""

        payload = StoredConnections(
            connections=[StoredConnection.from_profile(profile) for profile in profiles],
        )
        text = payload.model_dump_json(indent=2, by_alias=True)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(text + "\n", encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Cannot write {self._path}: {exc}") from exc

    def backup(self) -> Path | None:
        """Copy an unreadable file aside so the next save cannot destroy it."""

        target = self._path.with_name(self._path.name + ".bak")
        try:
            shutil.copyfile(self._path, target)
        except OSError:
            LOG.warning("Could not back up connections file", extra={"path": str(self._path)})
            return None
        return target


def validate_profile(profile: ConnectionProfile) -> None:
    """Raise ``ValidationError`` when required fields are missing or invalid."""

    if not profile.name.strip():
        raise ValidationError("Connection name is required.")
    if not profile.host.strip():
        raise ValidationError("Host is required.")
    if isinstance(profile.port, bool) or not isinstance(profile.port, int):
        raise ValidationError("Port must be a number.")
    if not 1 <= profile.port <= 65535:
        raise ValidationError(f"Port {profile.port} is out of range (1-65535).")


class ConnectionRegistry:
    """Ordered set of connection profiles, persisted after every change."""

    def __init__(self, storage: ConnectionStorage) -> None:
        self._storage = storage
        self._profiles: list[ConnectionProfile] = []
        self._load_warning: str | None = None

    @property
    def storage(self) -> ConnectionStorage:
        return self._storage

    @property
    def load_warning(self) -> str | None:
        """Message describing why the last ``load`` discarded stored data."""

        return self._load_warning

    def list(self) -> tuple[ConnectionProfile, ...]:
        return tuple(self._profiles)

    def get(self, profile_id: str) -> ConnectionProfile:
        return self._profiles[self._index_of(profile_id)]

    def contains(self, profile_id: str) -> bool:
        return any(profile.id == profile_id for profile in self._profiles)

    def add(self, profile: ConnectionProfile) -> ConnectionProfile:
        validate_profile(profile)
        if self.contains(profile.id):
            raise ValidationError(f"A connection with id '{profile.id}' already exists.")
        self._profiles.append(profile)
        LOG.info("Connection added", extra={"profile": profile.name, "uri": profile.redacted_connection_string})
        self.save()
        return profile

    def update(self, profile_id: str, profile: ConnectionProfile) -> ConnectionProfile:
        validate_profile(profile)
        index = self._index_of(profile_id)
        updated = replace(profile, id=profile_id)
        self._profiles[index] = updated
        LOG.info("Connection updated", extra={"profile": updated.name, "uri": updated.redacted_connection_string})
        self.save()
        return updated

    def remove(self, profile_id: str) -> ConnectionProfile:
        index = self._index_of(profile_id)
        removed = self._profiles.pop(index)
        LOG.info("Connection removed", extra={"profile": removed.name})
        self.save()
        return removed

    def replace_collections(self, profile_id: str, collections: Sequence[str]) -> ConnectionProfile:
        """Store a discovery result and mark the profile expanded."""

        index = self._index_of(profile_id)
        updated = replace(
            self._profiles[index],
            collections=tuple(collections),
            collections_refreshed_at=datetime.now(tz=timezone.utc),
            expanded=True,
        )
        self._profiles[index] = updated
        self.save()
        return updated

    def set_expanded(self, profile_id: str, expanded: bool) -> ConnectionProfile:
        index = self._index_of(profile_id)
        current = self._profiles[index]
        if current.expanded == expanded:
            return current
        updated = replace(current, expanded=expanded)
        self._profiles[index] = updated
        self.save()
        return updated

    def load(self) -> tuple[ConnectionProfile, ...]:
        """Replace in-memory profiles with the stored ones.

        Unreadable storage never blocks startup: the registry comes up empty,
        the file is backed up, and ``load_warning`` explains what happened.
        """

        return self.restore(*self.read_stored())

    def read_stored(self) -> tuple[list[ConnectionProfile], str | None]:
        """Read the storage file without touching in-memory state.

        Safe to call from a worker thread.
        """

        try:
            return self._storage.read(), None
        except PersistenceError as exc:
            backup = self._storage.backup()
            suffix = f" A copy was saved to {backup}." if backup else ""
            LOG.warning("Discarding unreadable connections file", extra={"error": str(exc)})
            return [], f"Saved connections could not be loaded ({exc}).{suffix}"

    def restore(self, profiles: Sequence[ConnectionProfile], warning: str | None = None) -> tuple[ConnectionProfile, ...]:
        self._profiles = list(profiles)
        self._load_warning = warning
        return tuple(self._profiles)

    def save(self) -> None:
        self._storage.write(self._profiles)

    def _index_of(self, profile_id: str) -> int:
        for idx, profile in enumerate(self._profiles):
            if profile.id == profile_id:
                return idx
        raise NotFoundError(f"Connection '{profile_id}' not found.")


__all__ = [
    "ConnectionRegistry",
    "ConnectionStorage",
    "STORAGE_VERSION",
    "StoredConnection",
    "StoredConnections",
    "validate_profile",
]
