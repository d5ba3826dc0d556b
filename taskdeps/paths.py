#!/usr/bin/env python3
"""
Path resolution for the task dependency engine.

Required environment variables (file-backed stores only):
- $TASKDEPS_DATA: Data directory holding dependencies.json, tasks.json
  and the optional taskdeps.yaml
"""

from __future__ import annotations

import os
from pathlib import Path

DATA_ENV_VAR = "TASKDEPS_DATA"


def get_data_root() -> Path:
    """
    Get the dependency data root.

    Returns:
        Path: Absolute path to data directory ($TASKDEPS_DATA)

    Raises:
        RuntimeError: If TASKDEPS_DATA environment variable not set or path doesn't exist
    """
    data = os.environ.get(DATA_ENV_VAR)
    if not data:
        raise RuntimeError(
            f"{DATA_ENV_VAR} environment variable not set.\n"
            "Add to ~/.bashrc or ~/.zshrc:\n"
            f"  export {DATA_ENV_VAR}='$HOME/taskdeps-data'"
        )

    path = Path(data).resolve()
    if not path.exists():
        raise RuntimeError(f"{DATA_ENV_VAR} path doesn't exist: {path}")

    return path


def get_dependencies_file(data_root: Path | None = None) -> Path:
    """Get the dependency records document (data_root/dependencies.json)."""
    return (data_root or get_data_root()) / "dependencies.json"


def get_tasks_file(data_root: Path | None = None) -> Path:
    """Get the task summaries document (data_root/tasks.json)."""
    return (data_root or get_data_root()) / "tasks.json"


def get_config_file(data_root: Path | None = None) -> Path:
    """Get the optional engine config file (data_root/taskdeps.yaml)."""
    return (data_root or get_data_root()) / "taskdeps.yaml"


def get_audits_dir(data_root: Path | None = None) -> Path:
    """Get the audit report directory (data_root/audits)."""
    return (data_root or get_data_root()) / "audits"
