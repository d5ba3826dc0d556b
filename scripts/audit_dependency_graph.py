#!/usr/bin/env python3
"""Dependency graph audit script.

Reads dependencies.json and tasks.json under $TASKDEPS_DATA (or --data) and
checks a workspace for:
- Circular dependencies over active blocking edges (critical)
- Duplicate active dependencies (warning)
- Active dependencies on closed or missing tasks (warning)
- Fan-in/fan-out, long chains and backwards due dates (info)

Output: markdown report + JSON, exit code based on severity
(2 critical, 1 warning, 0 clean).

Usage:
    python scripts/audit_dependency_graph.py                      # stdout
    python scripts/audit_dependency_graph.py --save               # $TASKDEPS_DATA/audits/
    python scripts/audit_dependency_graph.py --output reports/
    python scripts/audit_dependency_graph.py --json               # JSON only
"""

from __future__ import annotations

import argparse
import json
import sys
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path

from taskdeps.config import load_config
from taskdeps.conflicts import CIRCULAR, DUPLICATE, INVALID_STATUS, ConflictReport
from taskdeps.dependency_service import DependencyService
from taskdeps.errors import DependencyError
from taskdeps.file_store import FileDependencyStore, FileTaskDirectory
from taskdeps.paths import get_audits_dir, get_data_root
from taskdeps.schemas import DependencyFilter

CONFLICT_SEVERITY = {
    CIRCULAR: "critical",
    DUPLICATE: "warning",
    INVALID_STATUS: "warning",
}


def build_service(data_root: Path) -> DependencyService:
    tasks = FileTaskDirectory(data_root)
    store = FileDependencyStore(data_root, task_directory=tasks)
    return DependencyService(store, tasks, load_config(data_root))


def audit_workspace(service: DependencyService, workspace_id: str) -> ConflictReport:
    """Analyze every active dependency in the workspace at once."""
    records = service.store.list_for_workspace(workspace_id, DependencyFilter(status="active"))
    return service.analyzer.analyze_records(records)


def collect_findings(report: ConflictReport) -> list[dict]:
    """Flatten conflicts and warnings into severity-tagged findings."""
    findings = []
    for conflict in report.conflicts:
        findings.append({
            "id": conflict.affected_tasks[0] if conflict.affected_tasks else None,
            "severity": CONFLICT_SEVERITY.get(conflict.type, "warning"),
            "check": conflict.type,
            "detail": f"{conflict.description}. Fix: {conflict.suggested_resolution}",
            "affected_tasks": conflict.affected_tasks,
            "dependency_ids": conflict.dependency_ids,
        })
    for warning in report.warnings:
        findings.append({
            "id": warning.affected_tasks[0] if warning.affected_tasks else None,
            "severity": "info",
            "check": warning.type,
            "detail": warning.description,
            "affected_tasks": warning.affected_tasks,
        })
    return findings


def exit_code_for(findings: list[dict]) -> int:
    severity_counts = Counter(f.get("severity") for f in findings)
    if severity_counts.get("critical", 0) > 0:
        return 2
    if severity_counts.get("warning", 0) > 0:
        return 1
    return 0


def generate_markdown_report(findings: list[dict], stats: dict, generated: str) -> str:
    """Generate a markdown audit report."""
    lines = [
        "# Dependency Graph Audit Report",
        "",
        f"**Generated**: {generated}",
        f"**Workspace**: {stats['workspace_id']}",
        f"**Total dependencies**: {stats['total_dependencies']}",
        f"**Active dependencies**: {stats['active_dependencies']}",
        "",
    ]

    severity_counts = Counter(f.get("severity") for f in findings)
    lines.append("## Summary")
    lines.append("")
    lines.append(f"- Critical: {severity_counts.get('critical', 0)}")
    lines.append(f"- Warning: {severity_counts.get('warning', 0)}")
    lines.append(f"- Info: {severity_counts.get('info', 0)}")
    lines.append("")

    checks: dict[str, list[dict]] = {}
    for f in findings:
        checks.setdefault(f.get("check", "unknown"), []).append(f)

    check_titles = {
        CIRCULAR: "Circular Dependencies",
        DUPLICATE: "Duplicate Dependencies",
        INVALID_STATUS: "Invalid Dependency Statuses",
        "performance": "Fan-in / Fan-out",
        "complexity": "Long Dependency Chains",
        "timeline": "Due Date Order",
    }

    for check_name, check_findings in checks.items():
        lines.append(f"## {check_titles.get(check_name, check_name)}")
        lines.append("")
        for f in check_findings:
            severity = f.get("severity", "info").upper()
            task_id = f.get("id")
            if task_id:
                lines.append(f"- [{severity}] `{task_id}`: {f['detail']}")
            else:
                lines.append(f"- [{severity}] {f['detail']}")
        lines.append("")

    if stats.get("most_blocking_tasks"):
        lines.append("## Most Blocking Tasks")
        lines.append("")
        for entry in stats["most_blocking_tasks"]:
            lines.append(f"- `{entry['task_id']}` blocks {entry['blocking_count']}")
        lines.append("")

    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Audit the dependency graph of a workspace")
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="Data directory (default: $TASKDEPS_DATA)",
    )
    parser.add_argument(
        "--workspace",
        default=None,
        help="Workspace id (default: configured workspace_id)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output directory for reports (default: stdout only)",
    )
    parser.add_argument(
        "--save",
        action="store_true",
        help="Write reports to the audits directory under the data root",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output JSON instead of markdown",
    )
    args = parser.parse_args(argv)

    try:
        data_root = args.data or get_data_root()
        service = build_service(data_root)
        workspace = args.workspace or service.config.workspace_id
        stats = service.get_dependency_stats(workspace)
        findings = collect_findings(audit_workspace(service, workspace))
        output = args.output or (get_audits_dir(data_root) if args.save else None)
    except (RuntimeError, DependencyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    now = datetime.now(UTC).isoformat()
    exit_code = exit_code_for(findings)
    report_json = {
        "generated": now,
        "stats": stats,
        "findings": findings,
        "severity_counts": dict(Counter(f.get("severity") for f in findings)),
        "exit_code": exit_code,
    }
    markdown = generate_markdown_report(findings, stats, now)

    if output:
        output.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        md_path = output / f"dependency-audit-{timestamp}.md"
        json_path = output / f"dependency-audit-{timestamp}.json"
        md_path.write_text(markdown, encoding="utf-8")
        json_path.write_text(json.dumps(report_json, indent=2), encoding="utf-8")
        print(f"Reports written to:\n  {md_path}\n  {json_path}")
    elif args.json:
        print(json.dumps(report_json, indent=2))
    else:
        print(markdown)

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
