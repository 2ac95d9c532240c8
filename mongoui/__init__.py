"""mongoui: a terminal browser for MongoDB servers."""

__version__ = "0.1.0"
