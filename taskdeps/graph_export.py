"""Graph export and import parsing.

Export formats for a DependencyGraphSnapshot:
- json: {root_task_id, nodes, edges}; edges are in record form
  (task_id, depends_on, type, status, link_id), so re-importing them
  reproduces the same edge set.
- csv: one row per edge, header ``id,source,target,type,status``, with
  source/target in canonical direction (prerequisite -> dependent).
- graphml: a GraphML document written by networkx, with typed node
  attributes (name, status, level) and edge attributes (id, type, status).

Import accepts json (export form, a {"dependencies": [...]} document, or a
bare list of records) and csv (export form). Parsing never raises for a bad
row; the row comes back with ``error`` set and its line number.
"""

from __future__ import annotations

import csv
import io
import json
from dataclasses import dataclass
from typing import Any

import networkx as nx

from taskdeps.dependency_model import DependencyStatus, DependencyType
from taskdeps.errors import InvalidRequestError
from taskdeps.traversal import DependencyGraphSnapshot

CSV_FIELDS = ["id", "source", "target", "type", "status"]


@dataclass
class ImportRow:
    """One parsed row: either record fields or a parse error."""

    line_number: int
    fields: dict[str, Any] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Export ───────────────────────────────────────────────────────────


def export_snapshot(snapshot: DependencyGraphSnapshot, format: str) -> str:
    """Serialize a snapshot in the given format."""
    if format == "json":
        return export_json(snapshot)
    if format == "csv":
        return export_csv(snapshot)
    if format == "graphml":
        return export_graphml(snapshot)
    raise InvalidRequestError(f"Unsupported export format: {format}", format=format)


def export_json(snapshot: DependencyGraphSnapshot) -> str:
    payload = {
        "root_task_id": snapshot.root_task_id,
        "nodes": [
            {"id": n.task_id, "name": n.name, "status": n.status, "level": n.level}
            for n in snapshot.nodes
        ],
        "edges": [
            {
                "id": e.id,
                "task_id": e.task_id,
                "depends_on": e.depends_on,
                "type": e.type,
                "status": e.status,
                "link_id": e.link_id,
            }
            for e in snapshot.edges
        ],
    }
    return json.dumps(payload, indent=2)


def export_csv(snapshot: DependencyGraphSnapshot) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, lineterminator="\n")
    writer.writeheader()
    for e in snapshot.edges:
        writer.writerow(
            {"id": e.id, "source": e.source, "target": e.target, "type": e.type, "status": e.status}
        )
    return buffer.getvalue()


def export_graphml(snapshot: DependencyGraphSnapshot) -> str:
    graph = nx.MultiDiGraph(root=snapshot.root_task_id)
    for n in snapshot.nodes:
        attrs = {"name": n.name, "status": n.status, "level": n.level}
        graph.add_node(n.task_id, **{k: v for k, v in attrs.items() if v is not None})
    for e in snapshot.edges:
        graph.add_edge(e.source, e.target, key=e.id, id=e.id, type=e.type, status=e.status)
    return "\n".join(nx.generate_graphml(graph))


# ── Import parsing ───────────────────────────────────────────────────


def parse_import(data: str | dict[str, Any] | list[Any], format: str) -> list[ImportRow]:
    """Parse import data into rows.

    Raises:
        InvalidRequestError: If the document as a whole cannot be read
    """
    if format == "json":
        return parse_json(data)
    if format == "csv":
        if not isinstance(data, str):
            raise InvalidRequestError("CSV import data must be a string")
        return parse_csv(data)
    raise InvalidRequestError(f"Unsupported import format: {format}", format=format)


def parse_json(data: str | dict[str, Any] | list[Any]) -> list[ImportRow]:
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"Import data is not valid JSON: {e}") from e

    if isinstance(data, dict):
        items = data.get("edges", data.get("dependencies"))
    else:
        items = data
    if not isinstance(items, list):
        raise InvalidRequestError("JSON import needs an 'edges' or 'dependencies' list")

    rows = []
    for number, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            rows.append(ImportRow(number, error="Row is not an object"))
            continue
        rows.append(_row(number, item))
    return rows


def parse_csv(text: str) -> list[ImportRow]:
    reader = csv.DictReader(io.StringIO(text))
    missing = [f for f in ("source", "target") if f not in (reader.fieldnames or [])]
    if missing:
        raise InvalidRequestError(f"CSV import is missing columns: {', '.join(missing)}")

    rows = []
    for raw in reader:
        number = reader.line_num
        source = (raw.get("source") or "").strip()
        target = (raw.get("target") or "").strip()
        dep_type = (raw.get("type") or DependencyType.BLOCKING.value).strip()
        if dep_type == DependencyType.WAITING_ON.value:
            task_id, depends_on = source, target
        else:
            task_id, depends_on = target, source
        rows.append(
            _row(
                number,
                {
                    "task_id": task_id,
                    "depends_on": depends_on,
                    "type": dep_type,
                    "status": (raw.get("status") or DependencyStatus.ACTIVE.value).strip(),
                },
            )
        )
    return rows


def _row(number: int, item: dict[str, Any]) -> ImportRow:
    task_id = item.get("task_id")
    depends_on = item.get("depends_on")
    if not task_id or not depends_on:
        return ImportRow(number, error="Row needs task_id and depends_on")

    dep_type = item.get("type") or DependencyType.BLOCKING.value
    status = item.get("status") or DependencyStatus.ACTIVE.value
    try:
        DependencyType(dep_type)
        DependencyStatus(status)
    except ValueError as e:
        return ImportRow(number, error=str(e))

    return ImportRow(
        number,
        fields={
            "task_id": str(task_id),
            "depends_on": str(depends_on),
            "type": dep_type,
            "status": status,
            "link_id": item.get("link_id"),
        },
    )
