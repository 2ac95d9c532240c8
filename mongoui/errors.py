"""Error taxonomy shared by the registry, query service, and session store."""

from __future__ import annotations


class MongouiError(RuntimeError):
    """Base class for errors raised by mongoui."""


class ValidationError(MongouiError, ValueError):
    """Raised when a connection profile fails validation."""


class NotFoundError(MongouiError, LookupError):
    """Raised when a profile, pane, or tab cannot be resolved."""


class DatabaseConnectionError(MongouiError):
    """Raised when a server cannot be reached or rejects authentication."""


class QueryError(MongouiError):
    """Raised when the server rejects a query."""


class PersistenceError(MongouiError):
    """Raised when the connection store cannot be read or written."""


__all__ = [
    "DatabaseConnectionError",
    "MongouiError",
    "NotFoundError",
    "PersistenceError",
    "QueryError",
    "ValidationError",
]
