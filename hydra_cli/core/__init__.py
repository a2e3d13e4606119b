"""
Core layer - Settings, sessions, credentials and HTTP client.

This layer provides:
- Typed response variants (structured, binary, empty, error)
- Session persistence and credential resolution
- Low-level HTTP client with auth and error handling
"""

from hydra_cli.core.auth import Anonymous, BasicAuth, BearerSession, resolve_credentials
from hydra_cli.core.client import (
    APIClient,
    APIError,
    AuthError,
    CLIError,
    ConfigError,
    CredentialsRequiredError,
    NotFoundError,
    OutputMode,
    ResponseFormatError,
    ServerError,
    Settings,
    TransportError,
    UsageError,
)
from hydra_cli.core.session import Session, SessionStore
from hydra_cli.core.types import (
    AcceptKind,
    ApiResponse,
    BinaryPayload,
    DownloadResult,
    EmptyResponse,
    ErrorKind,
    ErrorResponse,
    StructuredPayload,
)

__all__ = [
    "APIClient",
    "APIError",
    "AcceptKind",
    "Anonymous",
    "ApiResponse",
    "AuthError",
    "BasicAuth",
    "BearerSession",
    "BinaryPayload",
    "CLIError",
    "ConfigError",
    "CredentialsRequiredError",
    "DownloadResult",
    "EmptyResponse",
    "ErrorKind",
    "ErrorResponse",
    "NotFoundError",
    "OutputMode",
    "ResponseFormatError",
    "ServerError",
    "Session",
    "SessionStore",
    "Settings",
    "StructuredPayload",
    "TransportError",
    "UsageError",
    "resolve_credentials",
]
