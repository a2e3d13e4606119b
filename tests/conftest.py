"""Pytest configuration - fake Hydra server behind an injected urllib opener."""

import http.client
import io
import json
import urllib.error
import urllib.parse
from collections.abc import Callable
from typing import Any

import pytest

from hydra_cli.core.client import OutputMode, Settings
from hydra_cli.core.session import SessionStore
from hydra_cli.sdk import HydraClient

BASE_URL = "https://hydra.test"


def make_headers(headers: dict[str, str] | list[tuple[str, str]] | None = None) -> http.client.HTTPMessage:
    message = http.client.HTTPMessage()
    items = headers.items() if isinstance(headers, dict) else (headers or [])
    for key, value in items:
        message[key] = value
    return message


class FakeResponse(io.BytesIO):
    """Stand-in for the object urllib returns from a successful open()."""

    def __init__(
        self,
        body: bytes = b"",
        status: int = 200,
        headers: dict[str, str] | list[tuple[str, str]] | None = None,
        url: str = BASE_URL,
    ):
        super().__init__(body)
        self.status = status
        self.reason = http.client.responses.get(status, "")
        self.headers = make_headers(headers)
        self.url = url

    def geturl(self) -> str:
        return self.url


class GeneratedStream:
    """A response body of `size` bytes produced on demand, never held in memory."""

    def __init__(self, size: int, headers: dict[str, str] | None = None, url: str = BASE_URL):
        self.remaining = size
        self.status = 200
        self.headers = make_headers(headers)
        self.url = url
        self.closed = False

    def read(self, n: int = -1) -> bytes:
        if n < 0:
            raise AssertionError("the whole body was requested at once")
        n = min(n, self.remaining)
        self.remaining -= n
        return b"\0" * n

    def geturl(self) -> str:
        return self.url

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "GeneratedStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def reply(
    status: int = 200,
    json_body: Any = None,
    body: bytes | str = b"",
    headers: dict[str, str] | list[tuple[str, str]] | None = None,
    url: str = BASE_URL,
) -> FakeResponse:
    """Build a canned response."""
    if json_body is not None:
        body = json.dumps(json_body)
        headers = headers or {"Content-Type": "application/json"}
    if isinstance(body, str):
        body = body.encode("utf-8")
    return FakeResponse(body, status=status, headers=headers, url=url)


class FakeOpener:
    """
    Routes requests by (method, path) to canned responses or handlers.

    Non-2xx responses are raised as urllib.error.HTTPError, exactly as the
    real opener does.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Any] = {}
        self.requests: list[Any] = []

    def add(self, method: str, path: str, response: Any) -> None:
        """Register a response, an exception, or a callable taking the request."""
        self.routes[(method, path)] = response

    def open(self, req: Any, timeout: float | None = None) -> Any:
        self.requests.append(req)
        key = (req.get_method(), urllib.parse.urlsplit(req.full_url).path)
        if key not in self.routes:
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", make_headers(), io.BytesIO(b""))
        result = self.routes[key]
        if callable(result):
            result = result(req)
        if isinstance(result, BaseException):
            raise result
        if result.status >= 300:
            raise urllib.error.HTTPError(req.full_url, result.status, result.reason, result.headers, result)
        return result

    @property
    def last(self) -> Any:
        return self.requests[-1]


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Keep the user's real configuration and session out of the tests."""
    for name in (
        "HYDRA_URL",
        "HYDRA_SESSION",
        "HYDRA_SESSION_FILE",
        "HYDRA_HTTP_BASIC_USERNAME",
        "HYDRA_HTTP_BASIC_PASSWORD",
        "HYDRA_USERNAME",
        "HYDRA_PASSWORD",
        "HYDRA_TIMEOUT",
        "HYDRA_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / "session")


@pytest.fixture
def settings() -> Settings:
    return Settings(base_url=BASE_URL, output_mode=OutputMode.TABULAR, timeout=5)


@pytest.fixture
def make_client(opener, store) -> Callable[..., HydraClient]:
    """Build a HydraClient against the fake server with the given settings."""

    def factory(**overrides: Any) -> HydraClient:
        options: dict[str, Any] = {"base_url": BASE_URL, "timeout": 5}
        options.update(overrides)
        return HydraClient(Settings(**options), store=store, opener=opener)

    return factory


@pytest.fixture
def client(make_client) -> HydraClient:
    return make_client()
