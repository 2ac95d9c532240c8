"""App configuration loading helpers."""

from __future__ import annotations

from pathlib import Path

import tomllib

from pydantic import BaseModel, Field

CONFIG_DIR = Path.home() / ".config" / "mongoui"
CONFIG_FILE = CONFIG_DIR / "config.toml"
CONNECTIONS_FILE = CONFIG_DIR / "connections.json"
LOG_FILE = CONFIG_DIR / "mongoui.log"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class LayoutState(BaseModel):
    """Persisted layout hints for the TUI."""

    sidebar_width: int | None = None


class QuerySettings(BaseModel):
    """Limits applied to every collection load."""

    result_limit: int = Field(default=100, ge=1)
    connect_timeout_ms: int = Field(default=3000, ge=1)


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    demo_mode: bool = False
    log_level: str = "WARNING"
    connections_file: Path | None = None
    query: QuerySettings = Field(default_factory=QuerySettings)
    layout: LayoutState = Field(default_factory=LayoutState)

    def resolved_connections_file(self) -> Path:
        """Where the connection registry lives on disk."""

        return self.connections_file or CONNECTIONS_FILE

    def with_theme(self, theme: str) -> AppConfig:
        """Return a copy with the theme updated."""

        return self.model_copy(update={"theme": theme})

    def with_layout(self, **updates: object) -> AppConfig:
        """Return a copy with layout state changes applied."""

        layout = self.layout.model_copy(update=updates)
        return self.model_copy(update={"layout": layout})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    return AppConfig(**data)


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f'theme = "{config.theme}"',
        f"demo_mode = {str(config.demo_mode).lower()}",
        f'log_level = "{config.log_level}"',
    ]
    if config.connections_file is not None:
        lines.append(f'connections_file = "{config.connections_file.as_posix()}"')
    lines.append("")
    lines.append("[query]")
    lines.append(f"result_limit = {config.query.result_limit}")
    lines.append(f"connect_timeout_ms = {config.query.connect_timeout_ms}")
    if config.layout.sidebar_width is not None:
        lines.append("")
        lines.append("[layout]")
        lines.append(f"sidebar_width = {config.layout.sidebar_width}")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    theme = raw.get("theme")
    if isinstance(theme, str):
        data["theme"] = theme
    demo_mode = raw.get("demo_mode")
    if isinstance(demo_mode, bool):
        data["demo_mode"] = demo_mode
    log_level = raw.get("log_level")
    if isinstance(log_level, str) and log_level.upper() in _LOG_LEVELS:
        data["log_level"] = log_level.upper()
    connections_file = raw.get("connections_file")
    if isinstance(connections_file, str) and connections_file.strip():
        data["connections_file"] = Path(connections_file).expanduser()
    query = raw.get("query")
    if isinstance(query, dict):
        settings: dict[str, object] = {}
        for key in ("result_limit", "connect_timeout_ms"):
            value = query.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                settings[key] = value
        data["query"] = QuerySettings(**settings)
    layout = raw.get("layout")
    if isinstance(layout, dict):
        state: dict[str, object] = {}
        sidebar_width = layout.get("sidebar_width")
        if isinstance(sidebar_width, int):
            state["sidebar_width"] = sidebar_width
        data["layout"] = LayoutState(**state)
    return data


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "CONNECTIONS_FILE",
    "LOG_FILE",
    "LayoutState",
    "QuerySettings",
    "load_config",
    "save_config",
]
