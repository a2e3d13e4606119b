"""
Hydra CLI - Command-line interface.

This layer provides the user-facing commands, using the SDK layer for all
operations. It handles:
- Argument parsing into one Operation per invocation
- Interactive login prompts
- Human (tabular) vs. JSON output
- Saving build products and logs to files or stdout
"""

import argparse
import getpass
import io
import json
import logging
import os
import sys
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

from dotenv import load_dotenv

from hydra_cli import __version__
from hydra_cli.core.client import CLIError, OutputMode, Settings, UsageError
from hydra_cli.core.types import DownloadResult
from hydra_cli.formatting import Resource, format_payload, next_steps
from hydra_cli.sdk import HydraClient

logger = logging.getLogger(__name__)

# =============================================================================
# Output Helpers
# =============================================================================


def is_tty() -> bool:
    """Check if stdout is a TTY (human) or pipe (machine)."""
    return sys.stdout.isatty()


def json_output(data: Any, file: Any = None) -> None:
    """Print JSON output."""
    print(json.dumps(data, indent=2, default=str), file=file or sys.stdout)


def error_output(error: CLIError) -> None:
    """Print error and exit."""
    json_output(error.to_dict(), file=sys.stderr)
    sys.exit(1)


def show(client: HydraClient, resource: Resource, data: Any, context: dict[str, str] | None = None) -> None:
    """Print a structured document, followed by hints in tabular mode."""
    settings = client.settings
    print(format_payload(resource, data, settings.output_mode))
    if settings.output_mode is OutputMode.TABULAR:
        hints = next_steps(resource, data, settings.base_url, context)
        if hints:
            print("\nNext steps:")
            for hint in hints:
                print(f"  {hint}")


def _safe_name(name: str | None) -> str | None:
    """Strip directories from a server-suggested filename."""
    if not name:
        return None
    base = Path(name).name
    return base if base not in ("", ".", "..") else None


def _discard_stdout() -> None:
    """Point stdout at /dev/null so the interpreter's final flush cannot fail."""
    try:
        fd = sys.stdout.fileno()
    except io.UnsupportedOperation:
        return
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, fd)
    os.close(devnull)


def download(
    client: HydraClient,
    fetch: Callable[[BinaryIO], DownloadResult],
    output: str | None,
    default_name: str | None = None,
) -> None:
    """
    Stream a binary payload to its destination.

    Destination: stdout for "-" or when stdout is piped, otherwise the given
    path, otherwise the default or server-suggested filename in the current
    directory. Files are written under a temporary name and renamed once
    complete.
    """
    if output == "-" or (output is None and not is_tty()):
        sys.stdout.flush()
        try:
            result = fetch(sys.stdout.buffer)
        except BrokenPipeError:
            # The reader went away (e.g. piped into head); stop without a message
            logger.debug("stdout closed by the reader")
            _discard_stdout()
            sys.exit(1)
        logger.info("Wrote %d bytes to stdout", result.bytes_written)
        return

    directory = Path(output).parent if output else Path.cwd()
    try:
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".hydra-cli-", suffix=".part")
    except OSError as e:
        raise UsageError(f"Cannot write to {directory}: {e.strerror}")
    try:
        with os.fdopen(fd, "wb") as f:
            result = fetch(f)
        target = Path(output) if output else directory / (_safe_name(default_name or result.filename) or "download")
        os.replace(tmp_name, target)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise UsageError(f"Cannot write to {output or directory}: {e.strerror or e}")
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    if client.settings.output_mode is OutputMode.STRUCTURED:
        json_output({**result.to_dict(), "path": str(target)})
    else:
        print(f"Saved {result.bytes_written} bytes ({result.content_type}) to {target}")


# =============================================================================
# Operations
# =============================================================================


class Operation(ABC):
    """One command selected on the command line."""

    @abstractmethod
    def execute(self, client: HydraClient) -> None:
        """Run the command and print its output."""


@dataclass(frozen=True)
class Login(Operation):
    """Authenticate with a username and password and save the session."""

    username: str | None = None
    password: str | None = field(default=None, repr=False)

    def execute(self, client: HydraClient) -> None:
        try:
            username = self.username or input("Username: ")
            password = self.password or getpass.getpass("Password: ")
        except EOFError:
            raise UsageError("No credentials on stdin; set HYDRA_USERNAME and HYDRA_PASSWORD to log in non-interactively")
        session = client.auth.login(username, password)
        session_file = client.session_file

        if client.settings.output_mode is OutputMode.STRUCTURED:
            json_output({"session": session.token, "session_file": str(session_file)})
        else:
            print(f"Logged in as {username}. Session saved to {session_file}")
            print("To use this session in other environments, run:")
            print(f"  export HYDRA_SESSION={session.token}")


@dataclass(frozen=True)
class Logout(Operation):
    """Terminate the authenticated session."""

    session_from_env: bool = False

    def execute(self, client: HydraClient) -> None:
        client.auth.logout()
        if client.settings.output_mode is OutputMode.STRUCTURED:
            json_output({"success": True})
        else:
            print("Logged out.")
        if self.session_from_env:
            print("HYDRA_SESSION is still set in your environment; run 'unset HYDRA_SESSION'", file=sys.stderr)


@dataclass(frozen=True)
class ListProjects(Operation):
    """Show an overview of the projects."""

    def execute(self, client: HydraClient) -> None:
        show(client, Resource.PROJECTS, client.projects.list())


@dataclass(frozen=True)
class GetProject(Operation):
    """Show the properties of a project."""

    project_id: str

    def execute(self, client: HydraClient) -> None:
        show(client, Resource.PROJECT, client.projects.get(self.project_id), {"project": self.project_id})


@dataclass(frozen=True)
class GetJobset(Operation):
    """Show the properties of a jobset that belongs to a project."""

    project_id: str
    jobset_id: str

    def execute(self, client: HydraClient) -> None:
        data = client.jobsets.get(self.project_id, self.jobset_id)
        show(client, Resource.JOBSET, data, {"project": self.project_id, "jobset": self.jobset_id})


@dataclass(frozen=True)
class ListEvaluations(Operation):
    """Show the evaluations of a jobset."""

    project_id: str
    jobset_id: str
    page: int | None = None

    def execute(self, client: HydraClient) -> None:
        data = client.evaluations.list(self.project_id, self.jobset_id, page=self.page)
        show(client, Resource.EVALUATIONS, data, {"project": self.project_id, "jobset": self.jobset_id})


@dataclass(frozen=True)
class GetEvaluation(Operation):
    """Show the properties of an evaluation."""

    eval_id: str

    def execute(self, client: HydraClient) -> None:
        show(client, Resource.EVALUATION, client.evaluations.get(self.eval_id))


@dataclass(frozen=True)
class GetBuild(Operation):
    """Show the properties of a build."""

    build_id: str

    def execute(self, client: HydraClient) -> None:
        show(client, Resource.BUILD, client.builds.get(self.build_id), {"build": self.build_id})


@dataclass(frozen=True)
class GetBuildProduct(Operation):
    """Fetch a build product."""

    build_id: str
    product_id: str
    output: str | None = None

    def execute(self, client: HydraClient) -> None:
        download(
            client,
            lambda sink: client.builds.download_product(self.build_id, self.product_id, sink),
            self.output,
        )


@dataclass(frozen=True)
class GetRawLog(Operation):
    """Fetch the raw log of a build."""

    build_id: str
    output: str | None = None

    def execute(self, client: HydraClient) -> None:
        download(
            client,
            lambda sink: client.builds.download_raw_log(self.build_id, sink),
            self.output,
            default_name=f"build-{self.build_id}.log",
        )


@dataclass(frozen=True)
class ShowQueue(Operation):
    """Show an overview of all builds in the queue."""

    limit: int | None = None

    def execute(self, client: HydraClient) -> None:
        show(client, Resource.QUEUE, client.queue.list(limit=self.limit))


@dataclass(frozen=True)
class ShowStatus(Operation):
    """Show an overview of all running builds."""

    def execute(self, client: HydraClient) -> None:
        show(client, Resource.STATUS, client.queue.status())


# =============================================================================
# Main CLI
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="hydra-cli",
        description="Remotely controls a Hydra continuous integration service instance through its REST API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
If you don't know what to pick, start with 'projects' to query a project
overview. Tabular output suggests the commands you can run next.

Environment:
  HYDRA_URL                  Default Hydra URL
  HYDRA_SESSION              Memorizes an authenticated Hydra session id
  HYDRA_SESSION_FILE         Where 'login' saves the session
  HYDRA_HTTP_BASIC_USERNAME  Memorizes a HTTP basic username
  HYDRA_HTTP_BASIC_PASSWORD  Memorizes a HTTP basic password
  HYDRA_USERNAME / HYDRA_PASSWORD  Skip the login prompts

Examples:
  hydra-cli --url https://hydra.nixos.org projects
  hydra-cli --url https://hydra.nixos.org jobset nixpkgs trunk
  hydra-cli --url https://hydra.nixos.org --json build 123 | jq .buildstatus
  hydra-cli --url https://hydra.nixos.org raw-log 123 -o build.log
""",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--url", "-u", help="The Hydra URL (overrides HYDRA_URL)")
    parser.add_argument("--json", action="store_true", help="Display the output in JSON format")
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds (default 60)")
    parser.add_argument("--verbose", action="store_true", help="Log HTTP requests to stderr")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    login = subparsers.add_parser("login", help="Authenticate to Hydra with a username and password")
    login.set_defaults(
        build=lambda a: Login(os.environ.get("HYDRA_USERNAME"), os.environ.get("HYDRA_PASSWORD")),
    )

    logout = subparsers.add_parser("logout", help="Terminate an authenticated Hydra session")
    logout.set_defaults(build=lambda a: Logout(session_from_env=bool(os.environ.get("HYDRA_SESSION"))))

    projects = subparsers.add_parser("projects", help="Show an overview of the projects")
    projects.set_defaults(build=lambda a: ListProjects())

    project = subparsers.add_parser("project", help="Show the properties of a project")
    project.add_argument("project_id", help="Project name")
    project.set_defaults(build=lambda a: GetProject(a.project_id))

    jobset = subparsers.add_parser("jobset", help="Show the properties of a jobset that belongs to a project")
    jobset.add_argument("project_id", help="Project name")
    jobset.add_argument("jobset_id", help="Jobset name")
    jobset.set_defaults(build=lambda a: GetJobset(a.project_id, a.jobset_id))

    evals = subparsers.add_parser("evals", help="Show the evaluations of a jobset")
    evals.add_argument("project_id", help="Project name")
    evals.add_argument("jobset_id", help="Jobset name")
    evals.add_argument("--page", "-p", type=int, help="Page of evaluations to show")
    evals.set_defaults(build=lambda a: ListEvaluations(a.project_id, a.jobset_id, a.page))

    evaluation = subparsers.add_parser("eval", help="Show the properties of an evaluation")
    evaluation.add_argument("eval_id", help="Evaluation ID")
    evaluation.set_defaults(build=lambda a: GetEvaluation(a.eval_id))

    build = subparsers.add_parser("build", help="Show the properties of a build")
    build.add_argument("build_id", help="Build ID")
    build.set_defaults(build=lambda a: GetBuild(a.build_id))

    product = subparsers.add_parser("build-product", help="Fetch a build product")
    product.add_argument("build_id", help="Build ID")
    product.add_argument("product_id", help="Build product number")
    product.add_argument("--output", "-o", help="Destination file (- for stdout)")
    product.set_defaults(build=lambda a: GetBuildProduct(a.build_id, a.product_id, a.output))

    raw_log = subparsers.add_parser("raw-log", help="Fetch the raw log of a build")
    raw_log.add_argument("build_id", help="Build ID")
    raw_log.add_argument("--output", "-o", help="Destination file (- for stdout)")
    raw_log.set_defaults(build=lambda a: GetRawLog(a.build_id, a.output))

    queue = subparsers.add_parser("queue", help="Show an overview of all builds in the queue")
    queue.add_argument("--limit", "-l", type=int, help="Maximum number of builds to show")
    queue.set_defaults(build=lambda a: ShowQueue(a.limit))

    status = subparsers.add_parser("status", help="Show an overview of all running builds")
    status.set_defaults(build=lambda a: ShowStatus())

    return parser


def configure_logging(verbose: bool) -> None:
    """Send log records to stderr; DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    load_dotenv()
    parser = create_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose or os.environ.get("HYDRA_DEBUG") == "1")

    if not args.command:
        parser.print_help(sys.stderr)
        error_output(UsageError("No operation has been specified!"))

    try:
        settings = Settings.from_environment(
            url=args.url,
            output_mode=OutputMode.STRUCTURED if args.json else OutputMode.TABULAR,
            timeout=args.timeout,
        )
        logger.debug("Using %r", settings)
        operation: Operation = args.build(args)
        operation.execute(HydraClient(settings))
    except CLIError as e:
        error_output(e)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
