"""
Output formatting for Hydra resources.

Structured mode emits the server's JSON document unchanged. Tabular mode
renders a fixed set of fields per resource as aligned columns; unknown
fields are ignored and missing ones render as empty cells.
"""

import json
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from hydra_cli.core.client import OutputMode

MAX_COLUMN_WIDTH = 60
EXECUTABLE = "hydra-cli"

# Hydra's buildstatus codes
BUILD_STATUS = {
    0: "succeeded",
    1: "failed",
    2: "dependency failed",
    3: "aborted",
    4: "cancelled",
    6: "failed with output",
    7: "timed out",
    9: "unsupported system",
    10: "log limit exceeded",
    11: "output limit exceeded",
    12: "non-deterministic",
}


class Resource(Enum):
    """Kinds of structured documents the API returns."""

    PROJECTS = "projects"
    PROJECT = "project"
    JOBSET = "jobset"
    EVALUATIONS = "evals"
    EVALUATION = "eval"
    BUILD = "build"
    QUEUE = "queue"
    STATUS = "status"


# =============================================================================
# Cell Helpers
# =============================================================================


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _flag(value: Any) -> str:
    """Hydra encodes booleans as 0/1 integers."""
    if value is None or value == "":
        return ""
    if isinstance(value, (bool, int)):
        return "yes" if value else "no"
    return str(value)


def _time(value: Any) -> str:
    """Render a UNIX timestamp as UTC."""
    if value is None or value == "":
        return ""
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    except (TypeError, ValueError, OverflowError, OSError):
        return str(value)


def _count(value: Any) -> str:
    if isinstance(value, (list, dict)):
        return str(len(value))
    return _text(value)


def _names(value: Any) -> str:
    if isinstance(value, dict):
        return ", ".join(str(k) for k in value)
    if isinstance(value, list):
        return ", ".join(_text(v) for v in value)
    return _text(value)


def _build_status(doc: dict[str, Any]) -> str:
    if not doc.get("finished"):
        return "running" if doc.get("starttime") else "queued"
    code = doc.get("buildstatus")
    if code is None:
        return ""
    return BUILD_STATUS.get(code, f"status {code}")


def _get(doc: Any, key: str) -> Any:
    return doc.get(key) if isinstance(doc, dict) else None


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


# =============================================================================
# Table Rendering
# =============================================================================


def render_table(headers: list[str], rows: list[list[str]]) -> str:
    """Render rows as aligned columns under a header line."""
    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = min(max(widths[i], len(cell)), MAX_COLUMN_WIDTH)

    def line(cells: list[str]) -> str:
        last = len(cells) - 1
        parts = [cell if i == last else cell[: widths[i]].ljust(widths[i]) for i, cell in enumerate(cells)]
        return "  ".join(parts).rstrip()

    header_line = line(headers)
    out = [header_line, "-" * len(header_line)]
    out.extend(line(row) for row in rows)
    return "\n".join(out)


def render_fields(fields: list[tuple[str, str]]) -> str:
    """Render label/value pairs as two aligned columns."""
    width = max((len(label) for label, _ in fields), default=0)
    return "\n".join(f"{(label + ':').ljust(width + 1)}  {value}".rstrip() for label, value in fields)


Column = tuple[str, Callable[[dict[str, Any]], str]]


def _rows(items: list, columns: list[Column]) -> str:
    docs = [item if isinstance(item, dict) else {} for item in items]
    return render_table([c[0] for c in columns], [[fn(doc) for _, fn in columns] for doc in docs])


def _field(key: str, fmt: Callable[[Any], str] = _text) -> Callable[[dict[str, Any]], str]:
    return lambda doc: fmt(doc.get(key))


# =============================================================================
# Per-Resource Layouts
# =============================================================================


PROJECT_COLUMNS: list[Column] = [
    ("Name", _field("name")),
    ("Display name", _field("displayname")),
    ("Enabled", _field("enabled", _flag)),
    ("Jobsets", _field("jobsets", _names)),
    ("Description", _field("description")),
]

QUEUE_COLUMNS: list[Column] = [
    ("ID", _field("id")),
    ("Project", _field("project")),
    ("Jobset", _field("jobset")),
    ("Job", _field("job")),
    ("System", _field("system")),
    ("Priority", _field("priority")),
    ("Queued at", _field("timestamp", _time)),
]

STATUS_COLUMNS: list[Column] = [
    ("Build", _field("build")),
    ("Step", _field("stepnr")),
    ("Machine", _field("machine")),
    ("System", _field("system")),
    ("Started", _field("starttime", _time)),
    ("Derivation", _field("drvpath")),
]

EVALUATION_COLUMNS: list[Column] = [
    ("ID", _field("id")),
    ("Timestamp", _field("timestamp", _time)),
    ("New builds", _field("hasnewbuilds", _flag)),
    ("Builds", _field("builds", _count)),
    ("Eval time", _field("evaltime")),
]


def _inputs_table(inputs: Any) -> str:
    rows = []
    for name, spec in _as_dict(inputs).items():
        spec = _as_dict(spec)
        rows.append([str(name), _text(spec.get("type")), _text(spec.get("value") or spec.get("uri")), _text(spec.get("revision"))])
    return render_table(["Input", "Type", "Value", "Revision"], rows)


def _format_projects(data: Any) -> str:
    return _rows(_as_list(data), PROJECT_COLUMNS)


def _format_project(data: Any) -> str:
    doc = _as_dict(data)
    sections = [
        render_fields(
            [
                ("Name", _text(doc.get("name"))),
                ("Display name", _text(doc.get("displayname"))),
                ("Description", _text(doc.get("description"))),
                ("Homepage", _text(doc.get("homepage"))),
                ("Owner", _text(doc.get("owner"))),
                ("Enabled", _flag(doc.get("enabled"))),
                ("Hidden", _flag(doc.get("hidden"))),
            ]
        )
    ]
    jobsets = doc.get("jobsets")
    names = list(jobsets) if isinstance(jobsets, dict) else _as_list(jobsets)
    if names:
        sections.append(render_table(["Jobset"], [[_text(n)] for n in names]))
    return "\n\n".join(sections)


def _format_jobset(data: Any) -> str:
    doc = _as_dict(data)
    fields = [
        ("Name", _text(doc.get("name"))),
        ("Project", _text(doc.get("project"))),
        ("Description", _text(doc.get("description"))),
        ("Enabled", _flag(doc.get("enabled"))),
        ("Nix expression", " ".join(v for v in (_text(doc.get("nixexprinput")), _text(doc.get("nixexprpath"))) if v)),
        ("Flake", _text(doc.get("flake"))),
        ("Check interval", _text(doc.get("checkinterval"))),
        ("Scheduling shares", _text(doc.get("schedulingshares"))),
        ("Keep evaluations", _text(doc.get("keepnr"))),
        ("Last checked", _time(doc.get("lastcheckedtime"))),
        ("Error", _text(doc.get("errormsg") or doc.get("fetcherrormsg"))),
    ]
    sections = [render_fields(fields)]
    if _as_dict(doc.get("inputs")):
        sections.append(_inputs_table(doc.get("inputs")))
    return "\n\n".join(sections)


def _format_evaluations(data: Any) -> str:
    doc = _as_dict(data)
    return _rows(_as_list(doc.get("evals")), EVALUATION_COLUMNS)


def _format_evaluation(data: Any) -> str:
    doc = _as_dict(data)
    sections = [
        render_fields(
            [
                ("ID", _text(doc.get("id"))),
                ("Timestamp", _time(doc.get("timestamp"))),
                ("Checkout time", _text(doc.get("checkouttime"))),
                ("Eval time", _text(doc.get("evaltime"))),
                ("New builds", _flag(doc.get("hasnewbuilds"))),
                ("Flake", _text(doc.get("flake"))),
            ]
        )
    ]
    if _as_dict(doc.get("jobsetevalinputs")):
        sections.append(_inputs_table(doc.get("jobsetevalinputs")))
    builds = _as_list(doc.get("builds"))
    if builds:
        sections.append(render_table(["Build"], [[_text(b)] for b in builds]))
    return "\n\n".join(sections)


def _format_build(data: Any) -> str:
    doc = _as_dict(data)
    sections = [
        render_fields(
            [
                ("ID", _text(doc.get("id"))),
                ("Project", _text(doc.get("project"))),
                ("Jobset", _text(doc.get("jobset"))),
                ("Job", _text(doc.get("job"))),
                ("Nix name", _text(doc.get("nixname"))),
                ("System", _text(doc.get("system"))),
                ("Status", _build_status(doc)),
                ("Priority", _text(doc.get("priority"))),
                ("Queued at", _time(doc.get("timestamp"))),
                ("Started", _time(doc.get("starttime"))),
                ("Stopped", _time(doc.get("stoptime"))),
                ("Derivation", _text(doc.get("drvpath"))),
            ]
        )
    ]
    outputs = _as_dict(doc.get("buildoutputs"))
    if outputs:
        sections.append(render_table(["Output", "Path"], [[str(name), _text(_get(o, "path"))] for name, o in outputs.items()]))
    products = _as_dict(doc.get("buildproducts"))
    if products:
        rows = [
            [
                str(nr),
                _text(_get(p, "name")),
                " ".join(v for v in (_text(_get(p, "type")), _text(_get(p, "subtype"))) if v),
                _text(_get(p, "filesize")),
                _text(_get(p, "path")),
            ]
            for nr, p in products.items()
        ]
        sections.append(render_table(["Product", "Name", "Type", "Size", "Path"], rows))
    return "\n\n".join(sections)


def _format_queue(data: Any) -> str:
    return _rows(_as_list(data), QUEUE_COLUMNS)


def _format_status(data: Any) -> str:
    return _rows(_as_list(data), STATUS_COLUMNS)


TABULAR_FORMATTERS: dict[Resource, Callable[[Any], str]] = {
    Resource.PROJECTS: _format_projects,
    Resource.PROJECT: _format_project,
    Resource.JOBSET: _format_jobset,
    Resource.EVALUATIONS: _format_evaluations,
    Resource.EVALUATION: _format_evaluation,
    Resource.BUILD: _format_build,
    Resource.QUEUE: _format_queue,
    Resource.STATUS: _format_status,
}


def format_payload(resource: Resource, data: Any, mode: OutputMode) -> str:
    """
    Render a structured document.

    Args:
        resource: Which resource the document describes
        data: Parsed JSON document
        mode: Structured (JSON) or tabular output

    Returns:
        Text ready to print

    """
    if mode is OutputMode.STRUCTURED:
        return json.dumps(data, indent=2, ensure_ascii=False)
    return TABULAR_FORMATTERS[resource](data)


# =============================================================================
# Follow-up Hints
# =============================================================================


def next_steps(resource: Resource, data: Any, base_url: str, context: dict[str, str] | None = None) -> list[str]:
    """
    Suggest the commands that drill further into a resource.

    Args:
        resource: Resource that was just shown
        data: Its document
        base_url: Hydra URL to include in the suggested commands
        context: Identifiers used to fetch the resource (project, jobset)

    """
    context = context or {}
    prefix = f"{EXECUTABLE} --url {base_url}"
    doc = _as_dict(data)

    if resource is Resource.PROJECTS:
        return [f"{prefix} project <name>"]
    if resource is Resource.PROJECT:
        project = _text(doc.get("name")) or context.get("project", "<project>")
        return [f"{prefix} jobset {project} <jobset>"]
    if resource is Resource.JOBSET:
        project = context.get("project") or _text(doc.get("project")) or "<project>"
        jobset = context.get("jobset") or _text(doc.get("name")) or "<jobset>"
        return [f"{prefix} evals {project} {jobset}"]
    if resource is Resource.EVALUATIONS:
        hints = [f"{prefix} eval <id>"]
        if doc.get("next"):
            hints.append(f"more evaluations: {_text(doc.get('next'))}")
        return hints
    if resource is Resource.EVALUATION:
        return [f"{prefix} build <id>"]
    if resource is Resource.BUILD:
        build_id = _text(doc.get("id")) or context.get("build", "<id>")
        hints = [f"{prefix} raw-log {build_id}"]
        if _as_dict(doc.get("buildproducts")):
            hints.insert(0, f"{prefix} build-product {build_id} <product>")
        return hints
    if resource in (Resource.QUEUE, Resource.STATUS):
        return [f"{prefix} build <id>"]
    return []
