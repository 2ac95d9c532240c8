"""Modal form used to add or edit a connection profile."""

from __future__ import annotations

from dataclasses import replace

from rich.text import Text
from textual import on
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Static

from mongoui.errors import ValidationError
from mongoui.models import DEFAULT_AUTH_DATABASE, DEFAULT_PORT, ConnectionProfile
from mongoui.registry import validate_profile


def build_profile(
    *,
    name: str,
    host: str,
    port: str,
    username: str = "",
    password: str = "",
    auth_database: str = "",
    existing: ConnectionProfile | None = None,
) -> ConnectionProfile:
    """Turn raw form values into a validated profile."""

    port_text = port.strip()
    if port_text and not port_text.isdigit():
        raise ValidationError(f"Port '{port_text}' is not a number.")
    fields = {
        "name": name.strip(),
        "host": host.strip(),
        "port": int(port_text) if port_text else DEFAULT_PORT,
        "username": username.strip(),
        "password": password,
        "auth_database": auth_database.strip() or DEFAULT_AUTH_DATABASE,
    }
    profile = replace(existing, **fields) if existing is not None else ConnectionProfile(**fields)
    validate_profile(profile)
    return profile


class ServerForm(ModalScreen[ConnectionProfile | None]):
    """Collects connection details; dismisses with the profile or ``None``."""

    DEFAULT_CSS = """
    ServerForm {
        align: center middle;
    }

    ServerForm > Vertical {
        width: 60;
        height: auto;
        border: thick $primary;
        background: $surface;
        padding: 1 2;
    }

    ServerForm .form-title {
        text-style: bold;
        margin-bottom: 1;
    }

    ServerForm .form-error {
        color: $error;
        height: auto;
    }

    ServerForm .form-actions {
        height: auto;
        margin-top: 1;
    }

    ServerForm .form-actions Button {
        margin-right: 1;
    }
    """

    BINDINGS = [("escape", "cancel", "Cancel")]

    def __init__(self, existing: ConnectionProfile | None = None) -> None:
        super().__init__()
        self._existing = existing
        self._error = Static("", classes="form-error")

    def compose(self) -> ComposeResult:
        profile = self._existing
        title = f"Edit {profile.name}" if profile else "Add server"
        with Vertical():
            yield Label(title, classes="form-title")
            yield Input(profile.name if profile else "", placeholder="Name", id="form-name")
            yield Input(profile.host if profile else "localhost", placeholder="Host", id="form-host")
            yield Input(str(profile.port) if profile else str(DEFAULT_PORT), placeholder="Port", id="form-port")
            yield Input(profile.username if profile else "", placeholder="Username (optional)", id="form-username")
            yield Input(
                profile.password if profile else "",
                placeholder="Password",
                password=True,
                id="form-password",
            )
            yield Input(
                profile.auth_database if profile else DEFAULT_AUTH_DATABASE,
                placeholder="Auth database",
                id="form-auth-database",
            )
            yield self._error
            with Horizontal(classes="form-actions"):
                yield Button("Save", id="form-save", variant="primary")
                yield Button("Test", id="form-test")
                yield Button("Cancel", id="form-cancel")

    def action_cancel(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#form-cancel")
    def _handle_cancel(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#form-save")
    def _handle_save(self) -> None:
        profile = self._collect()
        if profile is not None:
            self.dismiss(profile)

    @on(Input.Submitted)
    def _handle_submit(self) -> None:
        self._handle_save()

    @on(Button.Pressed, "#form-test")
    async def _handle_test(self) -> None:
        profile = self._collect()
        if profile is None:
            return
        tester = getattr(self.app, "probe_profile", None)
        if tester is None:
            return
        self._error.update(Text("Testing…"))
        reachable = await tester(profile)
        self._error.update(Text("Connection OK." if reachable else "Server unreachable."))

    def _collect(self) -> ConnectionProfile | None:
        try:
            profile = build_profile(
                name=self._value("#form-name"),
                host=self._value("#form-host"),
                port=self._value("#form-port"),
                username=self._value("#form-username"),
                password=self._value("#form-password"),
                auth_database=self._value("#form-auth-database"),
                existing=self._existing,
            )
        except ValidationError as exc:
            self._error.update(Text(str(exc)))
            return None
        self._error.update("")
        return profile

    def _value(self, selector: str) -> str:
        return self.query_one(selector, Input).value


__all__ = ["ServerForm", "build_profile"]
