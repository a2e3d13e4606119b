"""
Session persistence.

A Hydra session is the value of the cookie the server sets on a successful
login. It is kept in a single file so later invocations can reuse it.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

SESSION_COOKIE = "hydra_session"


def default_session_file() -> Path:
    """Per-user location of the persisted session."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "hydra-cli" / "session"


@dataclass(frozen=True)
class Session:
    """A server-issued session token and the cookie it travels under."""

    token: str
    cookie_name: str = SESSION_COOKIE

    def __repr__(self) -> str:
        return f"Session(cookie_name={self.cookie_name!r}, token=<redacted>)"


class SessionStore:
    """File-backed storage slot for one Session."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path else default_session_file()

    def load(self) -> Session | None:
        """Return the persisted session, or None if there is none."""
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        if not token:
            return None
        logger.debug("Loaded session from %s", self.path)
        return Session(token=token)

    def save(self, session: Session) -> None:
        """Persist the session token, replacing any previous one."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(session.token + "\n")
        logger.debug("Saved session to %s", self.path)

    def clear(self) -> None:
        """Remove the persisted session, if any."""
        self.path.unlink(missing_ok=True)
        logger.debug("Cleared session at %s", self.path)
