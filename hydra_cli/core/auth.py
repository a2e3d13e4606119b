"""
Credential resolution.

Exactly one authentication mechanism is attached to each request:
a session cookie, an HTTP Basic header, or nothing.
"""

import base64
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from hydra_cli.core.session import Session

if TYPE_CHECKING:
    from hydra_cli.core.client import Settings


@dataclass(frozen=True)
class BearerSession:
    """Authenticate with a server-issued session cookie."""

    session: Session

    def apply(self, headers: dict[str, str]) -> None:
        headers["Cookie"] = f"{self.session.cookie_name}={self.session.token}"


@dataclass(frozen=True)
class BasicAuth:
    """Authenticate with an HTTP Basic username/password pair."""

    username: str
    password: str

    def apply(self, headers: dict[str, str]) -> None:
        raw = f"{self.username}:{self.password}".encode()
        headers["Authorization"] = "Basic " + base64.b64encode(raw).decode("ascii")

    def __repr__(self) -> str:
        return f"BasicAuth(username={self.username!r}, password=<redacted>)"


@dataclass(frozen=True)
class Anonymous:
    """No credentials."""

    def apply(self, headers: dict[str, str]) -> None:
        pass


Credentials = Union[BearerSession, BasicAuth, Anonymous]


def initial_session(settings: "Settings") -> Session | None:
    """Session configured for this invocation, if any."""
    if settings.session_token:
        return Session(token=settings.session_token)
    return None


def resolve_credentials(settings: "Settings", session: Session | None | object = ...) -> Credentials:
    """
    Pick the authentication mechanism for a request.

    Args:
        settings: Invocation settings
        session: Live session of the client. When omitted, the session
            configured in settings is used; an explicit None means the
            client holds no session (e.g. after logout).

    Returns:
        BearerSession if a session is known, else BasicAuth if both Basic
        parts are set, else Anonymous

    """
    if session is ...:
        session = initial_session(settings)
    if isinstance(session, Session):
        return BearerSession(session)
    if settings.basic_username and settings.basic_password is not None:
        return BasicAuth(settings.basic_username, settings.basic_password)
    return Anonymous()
