"""
Core HTTP client for the Hydra REST API.

Handles settings, authentication, request/response classification,
session login/logout and error handling.
"""

import http.client
import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from http.cookies import CookieError, SimpleCookie
from pathlib import Path
from typing import Any

from hydra_cli.core.auth import Anonymous, BearerSession, Credentials, initial_session, resolve_credentials
from hydra_cli.core.session import SESSION_COOKIE, Session, SessionStore
from hydra_cli.core.types import (
    CHUNK_SIZE,
    AcceptKind,
    ApiResponse,
    BinaryPayload,
    EmptyResponse,
    ErrorKind,
    ErrorResponse,
    StructuredPayload,
)

logger = logging.getLogger(__name__)

# Configuration
DEFAULT_TIMEOUT = 60.0
MAX_ERROR_BODY = 64 * 1024


class CLIError(Exception):
    """Base error class for CLI errors."""

    kind = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON output."""
        result: dict[str, Any] = {"error": self.message, "kind": self.kind}
        if self.details:
            result["details"] = self.details
        return result


class UsageError(CLIError):
    """Missing or invalid input supplied by the caller (no request was sent)."""

    kind = "usage"


class ConfigError(CLIError):
    """No usable base URL, or credentials unsuitable for the operation."""

    kind = "config"


class TransportError(CLIError):
    """The server could not be reached (refused, DNS failure, timeout)."""

    kind = "transport"

    def __init__(self, message: str, timeout: bool = False, details: dict | None = None):
        super().__init__(message, details)
        self.timeout = timeout


class ResponseFormatError(CLIError):
    """The server returned a body that does not match the API contract."""

    kind = "response_format"


class APIError(CLIError):
    """API error with status code and message."""

    kind = "api"

    def __init__(self, message: str, status: int = 0, details: dict | None = None):
        super().__init__(message, details)
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON output."""
        result = super().to_dict()
        if self.status:
            result["status"] = self.status
        return result


class AuthError(APIError):
    """The server rejected the credentials or the session."""

    kind = "auth"


class NotFoundError(APIError):
    """The requested resource does not exist."""

    kind = "not_found"


class ServerError(APIError):
    """Any other non-2xx response."""

    kind = "server"


class CredentialsRequiredError(AuthError, ConfigError):
    """The server requires authentication but none was configured."""

    kind = "auth"


# =============================================================================
# Settings
# =============================================================================


class OutputMode(Enum):
    """How structured resources are rendered."""

    STRUCTURED = "json"
    TABULAR = "table"


@dataclass(frozen=True)
class Settings:
    """Per-invocation configuration, built once and never mutated."""

    base_url: str
    output_mode: OutputMode = OutputMode.TABULAR
    session_token: str | None = None
    basic_username: str | None = None
    basic_password: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    session_file: Path | None = None

    def __post_init__(self) -> None:
        if not self.base_url or not self.base_url.strip():
            raise ConfigError("No Hydra URL has been specified! Use --url or set HYDRA_URL")
        object.__setattr__(self, "base_url", self.base_url.strip().rstrip("/"))
        if self.timeout <= 0:
            raise ConfigError(f"Timeout must be positive, got {self.timeout}")

    def __repr__(self) -> str:
        return (
            f"Settings(base_url={self.base_url!r}, output_mode={self.output_mode.value}, "
            f"session={'set' if self.session_token else 'unset'}, "
            f"basic_username={self.basic_username!r}, timeout={self.timeout})"
        )

    @classmethod
    def from_environment(
        cls,
        url: str | None = None,
        output_mode: OutputMode = OutputMode.TABULAR,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "Settings":
        """
        Build settings from explicit flags and environment variables.

        Args:
            url: Hydra base URL (or HYDRA_URL env var)
            output_mode: Structured or tabular output
            timeout: Request timeout in seconds (or HYDRA_TIMEOUT env var)
            env: Environment mapping (defaults to os.environ)

        Environment:
            HYDRA_SESSION: session token, takes priority over a saved session
            HYDRA_SESSION_FILE: location of the saved session
            HYDRA_HTTP_BASIC_USERNAME / HYDRA_HTTP_BASIC_PASSWORD: Basic auth

        """
        env = os.environ if env is None else env

        if timeout is None:
            raw_timeout = env.get("HYDRA_TIMEOUT")
            try:
                timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
            except ValueError:
                raise ConfigError(f"HYDRA_TIMEOUT must be a number, got {raw_timeout!r}")

        session_file = Path(env["HYDRA_SESSION_FILE"]) if env.get("HYDRA_SESSION_FILE") else None
        session_token = env.get("HYDRA_SESSION") or None
        if not session_token:
            saved = SessionStore(session_file).load()
            session_token = saved.token if saved else None

        return cls(
            base_url=url or env.get("HYDRA_URL", ""),
            output_mode=output_mode,
            session_token=session_token,
            basic_username=env.get("HYDRA_HTTP_BASIC_USERNAME") or None,
            basic_password=env.get("HYDRA_HTTP_BASIC_PASSWORD"),
            timeout=timeout,
            session_file=session_file,
        )


# =============================================================================
# HTTP Client
# =============================================================================


CREDENTIAL_HEADERS = ("Cookie", "Authorization")


def _origin(url: str) -> tuple[str, str]:
    parts = urllib.parse.urlsplit(url)
    return parts.scheme.lower(), parts.netloc.lower()


class _SameOriginRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Follow redirects, carrying credentials only while the origin stays the same."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001, ANN201
        new = super().redirect_request(req, fp, code, msg, headers, newurl)
        if new is None:
            return None
        if _origin(new.full_url) == _origin(req.full_url):
            for name in CREDENTIAL_HEADERS:
                if req.has_header(name):
                    new.add_unredirected_header(name, req.get_header(name))
        else:
            logger.debug("Redirected to %s; credentials not forwarded", _origin(new.full_url)[1])
        return new


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Surface redirects as HTTPError instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001, ANN201
        return None


class APIClient:
    """
    Low-level HTTP client for the Hydra REST API.

    Handles:
    - Credentials (session cookie, HTTP Basic, anonymous)
    - Content negotiation (JSON vs. streamed binary)
    - Response classification into ApiResponse variants
    - Session login/logout
    """

    def __init__(
        self,
        settings: Settings,
        store: SessionStore | None = None,
        opener: urllib.request.OpenerDirector | None = None,
    ):
        """
        Initialize the API client.

        Args:
            settings: Invocation settings
            store: Session storage slot (defaults to settings.session_file)
            opener: urllib opener used for all requests (default follows
                redirects for GET and reports them for other methods)

        """
        self.settings = settings
        self.store = store or SessionStore(settings.session_file)
        self.session: Session | None = initial_session(settings)
        self._opener = opener or urllib.request.build_opener(_SameOriginRedirectHandler)
        self._no_redirect_opener = opener or urllib.request.build_opener(_NoRedirectHandler)

    @property
    def credentials(self) -> Credentials:
        """Credentials attached to the next request."""
        return resolve_credentials(self.settings, self.session)

    def _build_url(self, path: str, params: dict[str, Any] | None = None) -> str:
        """Build full URL from path and query parameters."""
        url = f"{self.settings.base_url}/{path.lstrip('/')}"
        if params:
            filtered_params = {k: v for k, v in params.items() if v is not None}
            if filtered_params:
                url = f"{url}?{urllib.parse.urlencode(filtered_params)}"
        return url

    def _open(
        self,
        method: str,
        path: str,
        accept: AcceptKind,
        credentials: Credentials,
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Send a request.

        Returns:
            The open response for 2xx and 3xx statuses, or an ErrorResponse

        Raises:
            TransportError: On connection failures and timeouts

        """
        url = self._build_url(path, params)
        headers = {"Accept": accept.value}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if method != "GET":
            # Hydra rejects state-changing requests without a same-origin referer
            headers["Referer"] = f"{self.settings.base_url}/"

        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        # Unredirected headers are dropped by urllib on redirects; the
        # same-origin handler puts them back when the host does not change.
        auth_headers: dict[str, str] = {}
        credentials.apply(auth_headers)
        for name, value in auth_headers.items():
            req.add_unredirected_header(name, value)
        opener = self._opener if method == "GET" else self._no_redirect_opener
        logger.debug("%s %s (auth: %s)", method, url, type(credentials).__name__)

        try:
            response = opener.open(req, timeout=self.settings.timeout)
        except urllib.error.HTTPError as e:
            if 300 <= e.code < 400:
                logger.debug("%s %s -> %d (redirect)", method, url, e.code)
                return e
            return self._classify_error(e, path)
        except urllib.error.URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise TransportError(f"Request to {url} timed out after {self.settings.timeout} seconds", timeout=True)
            raise TransportError(f"Connection error: {e.reason}")
        except TimeoutError:
            raise TransportError(f"Request to {url} timed out after {self.settings.timeout} seconds", timeout=True)
        except OSError as e:
            raise TransportError(f"Connection error: {e}")

        logger.debug("%s %s -> %d", method, url, response.status)
        return response

    def _classify_error(self, error: urllib.error.HTTPError, path: str) -> ErrorResponse:
        """Turn an HTTP error status into an ErrorResponse."""
        message = self._error_message(error)
        if error.code in (401, 403):
            kind = ErrorKind.AUTH
        elif error.code == 404:
            kind = ErrorKind.NOT_FOUND
        else:
            kind = ErrorKind.SERVER
        logger.debug("%s -> %d %s: %s", path, error.code, kind.value, message)
        return ErrorResponse(kind=kind, status=error.code, message=message, path=path)

    @staticmethod
    def _error_message(error: urllib.error.HTTPError) -> str:
        """Extract the server's error message from an error response."""
        try:
            raw = error.read(MAX_ERROR_BODY) if error.fp is not None else b""
        except OSError:
            raw = b""
        finally:
            error.close()

        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return f"HTTP {error.code}: {error.reason}"
        try:
            error_data = json.loads(text)
        except ValueError:
            return text
        # Hydra reports failures as {"error": "message"}
        if isinstance(error_data, dict):
            error_field = error_data.get("error")
            if isinstance(error_field, str):
                return error_field
            if isinstance(error_field, dict) and error_field.get("message"):
                return str(error_field["message"])
        return text

    def request(
        self,
        method: str,
        path: str,
        accept: AcceptKind = AcceptKind.STRUCTURED,
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> ApiResponse:
        """
        Make an HTTP request to the API.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            path: Resource path (e.g., /jobset/{project}/{jobset})
            accept: Structured (JSON) or binary (streamed) representation
            body: JSON-serializable request body
            params: Query parameters (None values are dropped)

        Returns:
            StructuredPayload, BinaryPayload, EmptyResponse or ErrorResponse

        Raises:
            TransportError: On network failures and timeouts
            ResponseFormatError: If a structured response is not valid JSON

        """
        deadline = time.monotonic() + self.settings.timeout
        result = self._open(method, path, accept, self.credentials, body, params)
        if isinstance(result, ErrorResponse):
            return result

        status = result.status
        if 300 <= status < 400:
            result.close()
            return EmptyResponse(status=status)

        if accept is AcceptKind.BINARY:
            return self._binary_payload(result)

        with result:
            raw = self._read_body(result, path, deadline)
        if not raw.strip():
            return EmptyResponse(status=status)
        try:
            return StructuredPayload(json.loads(raw))
        except ValueError as e:
            content_type = result.headers.get_content_type()
            raise ResponseFormatError(
                f"Invalid JSON response from {path} (content type {content_type}): {e}",
                details={"path": path},
            )

    def _read_body(self, response: Any, path: str, deadline: float) -> bytes:
        """
        Read a structured response body in chunks.

        Raises:
            TransportError: If the connection drops, stalls, or the body is
                still arriving when the deadline passes

        """
        read = getattr(response, "read1", response.read)
        parts: list[bytes] = []
        try:
            while True:
                chunk = read(CHUNK_SIZE)
                if not chunk:
                    break
                parts.append(chunk)
                if time.monotonic() > deadline:
                    raise TransportError(
                        f"Request to {path} did not complete within {self.settings.timeout} seconds",
                        timeout=True,
                    )
        except TimeoutError:
            raise TransportError(f"Request to {path} timed out after {self.settings.timeout} seconds", timeout=True)
        except (OSError, http.client.HTTPException) as e:
            raise TransportError(f"Connection lost while reading {path}: {e}")
        return b"".join(parts)

    @staticmethod
    def _binary_payload(response: Any) -> BinaryPayload:
        """Wrap an open response without reading its body."""
        headers = response.headers
        filename = headers.get_filename()
        if not filename:
            final_url = response.geturl() if hasattr(response, "geturl") else ""
            segment = urllib.parse.unquote(urllib.parse.urlsplit(final_url).path.rsplit("/", 1)[-1])
            filename = segment or None
        length = headers.get("Content-Length")
        return BinaryPayload(
            stream=response,
            content_type=headers.get_content_type(),
            filename=filename,
            content_length=int(length) if length and length.isdigit() else None,
        )

    # =========================================================================
    # HTTP Methods
    # =========================================================================

    def get(self, path: str, params: dict[str, Any] | None = None) -> ApiResponse:
        """Make a structured GET request."""
        return self.request("GET", path, params=params)

    def stream(self, path: str, params: dict[str, Any] | None = None) -> ApiResponse:
        """Make a binary GET request whose body is streamed."""
        return self.request("GET", path, accept=AcceptKind.BINARY, params=params)

    def post(self, path: str, data: Any = None) -> ApiResponse:
        """Make a structured POST request."""
        return self.request("POST", path, body=data)

    # =========================================================================
    # Sessions
    # =========================================================================

    def login(self, username: str, password: str) -> Session:
        """
        Authenticate with a username and password.

        The returned session becomes the live session of this client; the
        caller decides whether to persist it.

        Raises:
            AuthError: If the server rejects the credentials
            ResponseFormatError: If the server accepted them but set no session cookie

        """
        # The login request never carries an old session; Basic auth still
        # applies since it may guard a proxy in front of Hydra.
        credentials = resolve_credentials(self.settings, None)
        deadline = time.monotonic() + self.settings.timeout
        result = self._open(
            "POST",
            "/login",
            AcceptKind.STRUCTURED,
            credentials,
            body={"username": username, "password": password},
        )
        if isinstance(result, ErrorResponse):
            if result.kind is ErrorKind.AUTH:
                raise AuthError(f"Login failed: {result.message}", status=result.status)
            raise result.to_exception(f"Login failed: {result.message}")

        with result:
            self._read_body(result, "/login", deadline)
            cookies = SimpleCookie()
            for header in result.headers.get_all("Set-Cookie") or []:
                try:
                    cookies.load(header)
                except CookieError:
                    logger.debug("Ignoring malformed Set-Cookie header")

        morsel = cookies.get(SESSION_COOKIE)
        if morsel is None or not morsel.value:
            raise ResponseFormatError(
                f"Login succeeded but the server did not set a {SESSION_COOKIE} cookie",
                details={"status": result.status},
            )

        self.session = Session(token=morsel.value, cookie_name=SESSION_COOKIE)
        logger.debug("Logged in as %s", username)
        return self.session

    def logout(self) -> None:
        """
        Revoke the live session and remove it locally.

        Local state is cleared whether or not the server accepts the revoke,
        unless the server could not be reached at all.

        Raises:
            TransportError: If the server is unreachable (local state is kept)
            AuthError / ServerError: If the server rejected the revoke

        """
        session = self.session
        if session is None:
            logger.debug("No live session; clearing local state only")
            self.store.clear()
            return

        result = self._open("POST", "/logout", AcceptKind.STRUCTURED, BearerSession(session))

        self.session = None
        self.store.clear()

        if isinstance(result, ErrorResponse):
            raise result.to_exception(f"Server-side logout failed: {result.message}")
        result.close()
        logger.debug("Logged out")

    @property
    def is_anonymous(self) -> bool:
        """Whether requests are currently sent without credentials."""
        return isinstance(self.credentials, Anonymous)
