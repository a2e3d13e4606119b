"""
Hydra CLI tests - argument parsing, dispatch and output.

The in-process tests run main() against the fake server from conftest.
The smoke tests at the bottom run the CLI as a subprocess for the commands
that need no server.

Run with: python -m pytest tests/test_cli.py -v
"""

import errno
import json
import subprocess
import sys
from pathlib import Path

import pytest
from conftest import BASE_URL, reply

from hydra_cli import __version__, cli
from hydra_cli.core.client import UsageError
from hydra_cli.core.session import Session
from hydra_cli.sdk import HydraClient

CLI_TIMEOUT = 60  # Timeout in seconds for CLI subprocesses


@pytest.fixture
def run(monkeypatch, opener, store):
    """Run main() with the given arguments, returning the exit code."""
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "HydraClient", lambda settings: HydraClient(settings, store=store, opener=opener))

    def runner(*args: str) -> int:
        try:
            cli.main(list(args))
        except SystemExit as e:
            return e.code or 0
        return 0

    return runner


def test_project_as_json(run, opener, capsys):
    project = {"name": "nixpkgs", "enabled": 1, "shares": 12345678901234567890}
    opener.add("GET", "/project/nixpkgs", reply(json_body=project))

    assert run("--url", BASE_URL, "--json", "project", "nixpkgs") == 0

    assert json.loads(capsys.readouterr().out) == project


def test_url_from_environment(run, opener, capsys, monkeypatch):
    monkeypatch.setenv("HYDRA_URL", BASE_URL)
    opener.add("GET", "/queue", reply(json_body=[]))

    assert run("--json", "queue") == 0
    assert json.loads(capsys.readouterr().out) == []


def test_projects_table_with_hints(run, opener, capsys):
    opener.add("GET", "/", reply(json_body=[{"name": "nixpkgs", "enabled": 1, "jobsets": ["trunk"]}]))

    assert run("--url", BASE_URL, "projects") == 0

    out = capsys.readouterr().out
    assert out.splitlines()[0].startswith("Name")
    assert "Next steps:" in out
    assert f"hydra-cli --url {BASE_URL} project <name>" in out


def test_evals_forward_page(run, opener, capsys):
    opener.add("GET", "/jobset/nixpkgs/trunk/evals", reply(json_body={"evals": []}))

    assert run("--url", BASE_URL, "evals", "nixpkgs", "trunk", "--page", "3") == 0
    assert opener.last.full_url.endswith("/jobset/nixpkgs/trunk/evals?page=3")


def test_not_found_reports_error(run, capsys):
    assert run("--url", BASE_URL, "build", "123") == 1

    error = json.loads(capsys.readouterr().err)
    assert error["kind"] == "not_found"
    assert "123" in error["error"]
    assert error["status"] == 404


def test_server_error_reports_status(run, opener, capsys):
    opener.add("GET", "/status", reply(status=500, body="oops"))

    assert run("--url", BASE_URL, "status") == 1

    error = json.loads(capsys.readouterr().err)
    assert error == {"error": "oops", "kind": "server", "details": {"path": "/status"}, "status": 500}


def test_blank_identifier_is_usage_error(run, opener, capsys):
    assert run("--url", BASE_URL, "build", " ") == 1
    assert json.loads(capsys.readouterr().err)["kind"] == "usage"
    assert opener.requests == []


def test_missing_url_is_config_error(run, capsys):
    assert run("projects") == 1
    assert json.loads(capsys.readouterr().err)["kind"] == "config"


def test_missing_operation(run, capsys):
    assert run("--url", BASE_URL) == 1
    assert "No operation has been specified" in capsys.readouterr().err


def test_raw_log_to_file(run, opener, capsys, tmp_path):
    opener.add("GET", "/build/5/log/raw", reply(body="line 1\nline 2\n", headers={"Content-Type": "text/plain"}))
    target = tmp_path / "build.log"

    assert run("--url", BASE_URL, "raw-log", "5", "-o", str(target)) == 0

    assert target.read_text() == "line 1\nline 2\n"
    assert f"Saved 14 bytes (text/plain) to {target}" in capsys.readouterr().out
    assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".part")] == []


def test_build_product_uses_server_filename(run, opener, capsys, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "is_tty", lambda: True)
    opener.add(
        "GET",
        "/build/5/download/1",
        reply(body=b"\x1f\x8b data", headers={"Content-Disposition": 'attachment; filename="../../evil.tar.gz"'}),
    )

    assert run("--url", BASE_URL, "--json", "build-product", "5", "1") == 0

    result = json.loads(capsys.readouterr().out)
    assert result["filename"] == "../../evil.tar.gz"
    assert Path(result["path"]).resolve() == (tmp_path / "evil.tar.gz").resolve()
    assert (tmp_path / "evil.tar.gz").read_bytes() == b"\x1f\x8b data"


def test_build_product_to_stdout(run, opener, capsys):
    opener.add("GET", "/build/5/download/1", reply(body=b"artifact bytes"))

    assert run("--url", BASE_URL, "build-product", "5", "1", "-o", "-") == 0
    assert capsys.readouterr().out == "artifact bytes"


def test_failed_download_leaves_no_partial_file(run, opener, capsys, tmp_path):
    target = tmp_path / "out.bin"

    assert run("--url", BASE_URL, "build-product", "5", "9", "-o", str(target)) == 1

    assert not target.exists()
    assert list(tmp_path.glob(".hydra-cli-*")) == []


def test_full_disk_is_reported_without_partial_file(client, tmp_path):
    target = tmp_path / "out.bin"

    def fetch(sink):
        sink.write(b"some bytes")
        raise OSError(errno.ENOSPC, "No space left on device")

    with pytest.raises(UsageError, match="No space left on device"):
        cli.download(client, fetch, str(target))

    assert not target.exists()
    assert list(tmp_path.glob(".hydra-cli-*")) == []


def test_closed_stdout_exits_quietly(client, capsys):
    def fetch(sink):
        raise BrokenPipeError(errno.EPIPE, "Broken pipe")

    with pytest.raises(SystemExit) as excinfo:
        cli.download(client, fetch, "-")

    assert excinfo.value.code == 1
    assert capsys.readouterr().err == ""


def test_operation_variants_must_implement_execute():
    class Incomplete(cli.Operation):
        pass

    with pytest.raises(TypeError):
        Incomplete()


def test_login_without_terminal_input_is_usage_error(run, opener, capsys, monkeypatch):
    def closed_stdin(prompt):
        raise EOFError

    monkeypatch.setattr("builtins.input", closed_stdin)

    assert run("--url", BASE_URL, "login") == 1

    error = json.loads(capsys.readouterr().err)
    assert error["kind"] == "usage"
    assert "HYDRA_USERNAME" in error["error"]
    assert opener.requests == []


def test_login_saves_session(run, opener, store, capsys, monkeypatch):
    monkeypatch.setenv("HYDRA_USERNAME", "alice")
    monkeypatch.setenv("HYDRA_PASSWORD", "secret")
    opener.add("POST", "/login", reply(json_body={}, headers=[("Set-Cookie", "hydra_session=fresh; Path=/")]))

    assert run("--url", BASE_URL, "--json", "login") == 0

    out = json.loads(capsys.readouterr().out)
    assert out == {"session": "fresh", "session_file": str(store.path)}
    assert store.load() == Session("fresh")
    assert json.loads(opener.last.data) == {"username": "alice", "password": "secret"}


def test_login_prompts(run, opener, store, capsys, monkeypatch):
    monkeypatch.setattr("builtins.input", lambda prompt: "alice")
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt: "secret")
    opener.add("POST", "/login", reply(json_body={}, headers=[("Set-Cookie", "hydra_session=fresh; Path=/")]))

    assert run("--url", BASE_URL, "login") == 0

    out = capsys.readouterr().out
    assert "Logged in as alice" in out
    assert "export HYDRA_SESSION=fresh" in out


def test_login_rejected(run, opener, store, capsys, monkeypatch):
    monkeypatch.setenv("HYDRA_USERNAME", "alice")
    monkeypatch.setenv("HYDRA_PASSWORD", "wrong")
    opener.add("POST", "/login", reply(status=401, json_body={"error": "Bad username or password."}))

    assert run("--url", BASE_URL, "login") == 1

    assert json.loads(capsys.readouterr().err)["kind"] == "auth"
    assert store.load() is None


def test_logout_uses_saved_session(run, opener, store, capsys, monkeypatch):
    store.save(Session("saved"))
    monkeypatch.setenv("HYDRA_SESSION_FILE", str(store.path))
    opener.add("POST", "/logout", reply(status=204))

    assert run("--url", BASE_URL, "logout") == 0

    assert opener.last.get_header("Cookie") == "hydra_session=saved"
    assert "Logged out." in capsys.readouterr().out
    assert store.load() is None


def test_logout_warns_about_environment_session(run, opener, store, capsys, monkeypatch):
    monkeypatch.setenv("HYDRA_SESSION", "from-env")
    opener.add("POST", "/logout", reply(status=204))

    assert run("--url", BASE_URL, "logout") == 0

    assert "unset HYDRA_SESSION" in capsys.readouterr().err


# =============================================================================
# Subprocess smoke tests
# =============================================================================


def run_cli(*args: str, timeout: int = CLI_TIMEOUT) -> subprocess.CompletedProcess:
    """Run the CLI in a subprocess."""
    cmd = [sys.executable, "-m", "hydra_cli.cli"] + list(args)
    return subprocess.run(
        cmd,
        capture_output=True,
        text=True,
        timeout=timeout,
        cwd=Path(__file__).resolve().parent.parent,
    )


def test_help_lists_every_command():
    result = run_cli("--help")

    assert result.returncode == 0
    for command in (
        "login",
        "logout",
        "projects",
        "project",
        "jobset",
        "evals",
        "eval",
        "build",
        "build-product",
        "raw-log",
        "queue",
        "status",
    ):
        assert command in result.stdout


def test_version():
    result = run_cli("--version")
    assert result.returncode == 0
    assert result.stdout.strip() == f"hydra-cli {__version__}"


def test_unreachable_server_is_transport_error():
    result = run_cli("--url", "http://127.0.0.1:9", "--timeout", "5", "projects")

    assert result.returncode == 1
    assert json.loads(result.stderr)["kind"] == "transport"
