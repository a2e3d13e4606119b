"""
Hydra SDK - High-level client with nice ergonomics.

This layer provides one method per Hydra resource. Each method validates
its identifiers, issues a single request through the core APIClient and
turns error responses into resource-specific exceptions.
"""

import builtins
import http.client
import logging
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any, BinaryIO, NoReturn

from hydra_cli.core.client import APIClient, ResponseFormatError, Settings, TransportError, UsageError
from hydra_cli.core.session import Session, SessionStore
from hydra_cli.core.types import (
    CHUNK_SIZE,
    ApiResponse,
    BinaryPayload,
    DownloadResult,
    EmptyResponse,
    ErrorKind,
    ErrorResponse,
    StructuredPayload,
)

logger = logging.getLogger(__name__)


def _require(value: Any, name: str) -> str:
    """Validate that an identifier is present and return it as a string."""
    text = "" if value is None else str(value)
    if not text.strip():
        raise UsageError(f"{name} is required")
    return text.strip()


def _segment(value: str) -> str:
    """Quote an identifier for use as a single path segment."""
    return urllib.parse.quote(value, safe="")


class HydraClient:
    """
    High-level Hydra API client with typed methods and nice ergonomics.

    Example:
        settings = Settings.from_environment(url="https://hydra.nixos.org")
        client = HydraClient(settings)

        projects = client.projects.list()
        build = client.builds.get(123)
        with open("build.log", "wb") as f:
            client.builds.download_raw_log(123, f)

    """

    def __init__(
        self,
        settings: Settings,
        store: SessionStore | None = None,
        opener: urllib.request.OpenerDirector | None = None,
    ):
        """
        Initialize the Hydra client.

        Args:
            settings: Invocation settings (base URL, credentials, timeout)
            store: Session storage slot (defaults to settings.session_file)
            opener: urllib opener override, mainly for tests

        """
        self._client = APIClient(settings, store=store, opener=opener)

        # Sub-clients for different resources
        self.auth = AuthOperations(self._client)
        self.projects = ProjectOperations(self._client)
        self.jobsets = JobsetOperations(self._client)
        self.evaluations = EvaluationOperations(self._client)
        self.builds = BuildOperations(self._client)
        self.queue = QueueOperations(self._client)

    @property
    def settings(self) -> Settings:
        return self._client.settings

    @property
    def session(self) -> Session | None:
        """The live session, if any."""
        return self._client.session

    @property
    def session_file(self) -> Path:
        """Where login saves the session."""
        return self._client.store.path


class _ResourceOperations:
    """Shared response handling for resource sub-clients."""

    def __init__(self, client: APIClient):
        self._client = client

    def _raise_for(self, response: ErrorResponse, not_found: str) -> NoReturn:
        message = not_found if response.kind is ErrorKind.NOT_FOUND else None
        raise response.to_exception(message, anonymous=self._client.is_anonymous)

    def _structured(self, response: ApiResponse, not_found: str) -> Any:
        """Return the JSON document of a structured response."""
        if isinstance(response, ErrorResponse):
            self._raise_for(response, not_found)
        if isinstance(response, StructuredPayload):
            return response.data
        if isinstance(response, EmptyResponse):
            raise ResponseFormatError(f"Expected a JSON document but the server returned HTTP {response.status} with no body")
        response.close()
        raise ResponseFormatError("Expected a JSON document but received a binary payload")

    def _stream_to_sink(self, response: ApiResponse, sink: BinaryIO, not_found: str) -> DownloadResult:
        """Copy a binary response to sink in bounded chunks."""
        if isinstance(response, ErrorResponse):
            self._raise_for(response, not_found)
        if not isinstance(response, BinaryPayload):
            raise ResponseFormatError("Expected a file but the server returned no content")

        # Only reads are mapped to TransportError; sink failures are local and propagate as OSError
        written = 0
        with response:
            chunks = response.iter_chunks(CHUNK_SIZE)
            while True:
                try:
                    chunk = next(chunks, b"")
                except TimeoutError:
                    raise TransportError(
                        f"Download stalled for more than {self._client.settings.timeout} seconds after {written} bytes",
                        timeout=True,
                    )
                except (OSError, http.client.HTTPException) as e:
                    raise TransportError(f"Connection lost after {written} bytes: {e}")
                if not chunk:
                    break
                sink.write(chunk)
                written += len(chunk)
        sink.flush()

        if response.content_length is not None and written != response.content_length:
            raise TransportError(f"Download truncated: received {written} of {response.content_length} bytes")
        logger.debug("Streamed %d bytes (%s)", written, response.content_type)
        return DownloadResult(filename=response.filename, content_type=response.content_type, bytes_written=written)


# =============================================================================
# Authentication
# =============================================================================


class AuthOperations(_ResourceOperations):
    """Login and logout."""

    def login(self, username: str, password: str, persist: bool = True) -> Session:
        """
        Log in and obtain a session.

        Args:
            username: Hydra user name
            password: Hydra password
            persist: Save the session for later invocations

        Returns:
            The server-issued Session

        """
        username = _require(username, "username")
        if not password:
            raise UsageError("password is required")
        session = self._client.login(username, password)
        if persist:
            self._client.store.save(session)
        return session

    def logout(self) -> None:
        """Revoke the current session on the server and forget it locally."""
        self._client.logout()


# =============================================================================
# Project Operations
# =============================================================================


class ProjectOperations(_ResourceOperations):
    """Operations for Hydra projects."""

    def list(self) -> list[dict[str, Any]]:
        """
        List all projects.

        Returns:
            Project documents as returned by Hydra's overview page

        """
        data = self._structured(self._client.get("/"), "project overview not found")
        if not isinstance(data, list):
            raise ResponseFormatError("Expected a list of projects")
        return data

    def get(self, project_id: str) -> dict[str, Any]:
        """Get a project by name."""
        project_id = _require(project_id, "project ID")
        response = self._client.get(f"/project/{_segment(project_id)}")
        return self._structured(response, f"no such project: {project_id}")


# =============================================================================
# Jobset Operations
# =============================================================================


class JobsetOperations(_ResourceOperations):
    """Operations for jobsets, which are scoped to a project."""

    def get(self, project_id: str, jobset_id: str) -> dict[str, Any]:
        """Get a jobset of a project."""
        project_id = _require(project_id, "project ID")
        jobset_id = _require(jobset_id, "jobset ID")
        response = self._client.get(f"/jobset/{_segment(project_id)}/{_segment(jobset_id)}")
        return self._structured(response, f"no such jobset '{jobset_id}' in project '{project_id}'")


# =============================================================================
# Evaluation Operations
# =============================================================================


class EvaluationOperations(_ResourceOperations):
    """Operations for jobset evaluations."""

    def list(self, project_id: str, jobset_id: str, page: int | None = None) -> dict[str, Any]:
        """
        List the evaluations of a jobset.

        Args:
            project_id: Project name
            jobset_id: Jobset name
            page: Page number (Hydra returns evaluations newest first, paginated)

        Returns:
            Document with an "evals" list and pagination links

        """
        project_id = _require(project_id, "project ID")
        jobset_id = _require(jobset_id, "jobset ID")
        if page is not None and page < 1:
            raise UsageError(f"page must be at least 1, got {page}")
        response = self._client.get(
            f"/jobset/{_segment(project_id)}/{_segment(jobset_id)}/evals",
            {"page": page},
        )
        return self._structured(response, f"no such jobset '{jobset_id}' in project '{project_id}'")

    def get(self, eval_id: str | int) -> dict[str, Any]:
        """Get an evaluation by ID."""
        eval_id = _require(eval_id, "evaluation ID")
        response = self._client.get(f"/eval/{_segment(eval_id)}")
        return self._structured(response, f"no such evaluation: {eval_id}")


# =============================================================================
# Build Operations
# =============================================================================


class BuildOperations(_ResourceOperations):
    """Operations for builds, their products and logs."""

    def get(self, build_id: str | int) -> dict[str, Any]:
        """Get a build by ID."""
        build_id = _require(build_id, "build ID")
        response = self._client.get(f"/build/{_segment(build_id)}")
        return self._structured(response, f"no such build: {build_id}")

    def download_product(self, build_id: str | int, product_id: str | int, sink: BinaryIO) -> DownloadResult:
        """
        Stream a build product to sink.

        Args:
            build_id: Build ID
            product_id: Build product number within the build
            sink: Writable binary file object

        Returns:
            DownloadResult with the server-suggested filename

        """
        build_id = _require(build_id, "build ID")
        product_id = _require(product_id, "build product ID")
        response = self._client.stream(f"/build/{_segment(build_id)}/download/{_segment(product_id)}")
        return self._stream_to_sink(response, sink, f"no such build product {product_id} in build {build_id}")

    def download_raw_log(self, build_id: str | int, sink: BinaryIO) -> DownloadResult:
        """Stream the raw log of a build to sink."""
        build_id = _require(build_id, "build ID")
        response = self._client.stream(f"/build/{_segment(build_id)}/log/raw")
        return self._stream_to_sink(response, sink, f"no log available for build {build_id}")


# =============================================================================
# Queue Operations
# =============================================================================


class QueueOperations(_ResourceOperations):
    """Operations for the build queue and running builds."""

    def list(self, limit: int | None = None) -> list[dict[str, Any]]:
        """
        List queued builds.

        Args:
            limit: Maximum number of builds to return (Hydra's "nr" parameter)

        """
        if limit is not None and limit < 1:
            raise UsageError(f"limit must be at least 1, got {limit}")
        data = self._structured(self._client.get("/queue", {"nr": limit}), "queue not found")
        if not isinstance(data, list):
            raise ResponseFormatError("Expected a list of queued builds")
        return data

    def status(self) -> builtins.list[dict[str, Any]]:
        """List the build steps currently running."""
        data = self._structured(self._client.get("/status"), "status not found")
        if not isinstance(data, list):
            raise ResponseFormatError("Expected a list of running build steps")
        return data
