"""
Core response types for the Hydra REST API.

Every call made through the APIClient produces exactly one of the
ApiResponse variants defined here.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Union

# Streamed payloads are read in chunks of this size
CHUNK_SIZE = 64 * 1024


class AcceptKind(Enum):
    """Representation requested from the server."""

    STRUCTURED = "application/json"
    BINARY = "*/*"


class ErrorKind(Enum):
    """Classification of a non-2xx response."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    SERVER = "server"


# =============================================================================
# Response Variants
# =============================================================================


@dataclass
class StructuredPayload:
    """A parsed JSON document."""

    data: Any


@dataclass
class BinaryPayload:
    """
    A streamed response body.

    The stream is the open HTTP response; callers must read it in chunks
    and close it when done (the payload is also a context manager).
    """

    stream: BinaryIO
    content_type: str = "application/octet-stream"
    filename: str | None = None
    content_length: int | None = None

    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the body in chunks of at most chunk_size bytes."""
        while True:
            chunk = self.stream.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> "BinaryPayload":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass
class EmptyResponse:
    """A successful response without a body (logout, redirects after POST)."""

    status: int = 204


@dataclass
class ErrorResponse:
    """A non-2xx response."""

    kind: ErrorKind
    status: int
    message: str
    path: str = ""

    def to_exception(self, message: str | None = None, anonymous: bool = False) -> Exception:
        """
        Convert to the matching CLIError subclass.

        Args:
            message: Replacement message (e.g. a resource-specific "not found")
            anonymous: Whether the request was sent without credentials

        """
        # Imported here to keep types free of a dependency on the client module
        from hydra_cli.core.client import AuthError, CredentialsRequiredError, NotFoundError, ServerError

        details = {"path": self.path} if self.path else None
        text = message or self.message
        if self.kind is ErrorKind.AUTH:
            if anonymous:
                return CredentialsRequiredError(
                    f"{text} (no credentials configured; run 'hydra-cli login' or set HYDRA_SESSION)",
                    status=self.status,
                    details=details,
                )
            return AuthError(text, status=self.status, details=details)
        if self.kind is ErrorKind.NOT_FOUND:
            return NotFoundError(text, status=self.status, details=details)
        return ServerError(text, status=self.status, details=details)


ApiResponse = Union[StructuredPayload, BinaryPayload, EmptyResponse, ErrorResponse]


# =============================================================================
# Download Results
# =============================================================================


@dataclass
class DownloadResult:
    """Outcome of streaming a binary payload to a sink."""

    filename: str | None
    content_type: str
    bytes_written: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON output."""
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "bytes_written": self.bytes_written,
        }
