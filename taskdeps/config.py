"""
Engine Configuration: single source of truth for analysis thresholds.

Values come from, in increasing precedence:
1. EngineConfig defaults below
2. $TASKDEPS_DATA/taskdeps.yaml (optional)
3. TASKDEPS_* environment variables

Example taskdeps.yaml:

    workspace_id: team-42
    max_fan_out: 15
    closed_statuses: [done, cancelled, archived]
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from taskdeps.errors import InvalidRequestError
from taskdeps.paths import get_config_file

logger = logging.getLogger(__name__)

# Environment variable -> EngineConfig field
ENV_OVERRIDES: dict[str, str] = {
    "TASKDEPS_WORKSPACE": "workspace_id",
    "TASKDEPS_MAX_FAN_IN": "max_fan_in",
    "TASKDEPS_MAX_FAN_OUT": "max_fan_out",
    "TASKDEPS_MAX_CHAIN_LENGTH": "max_chain_length",
    "TASKDEPS_ANALYSIS_DEPTH": "analysis_depth",
    "TASKDEPS_PREFLIGHT_MAX_DEPTH": "preflight_max_depth",
}


class EngineConfig(BaseModel):
    """Thresholds and limits for analysis, pre-flight checks and bulk ops."""

    workspace_id: str = Field(default="default", min_length=1)

    # Warnings (never reject a write)
    max_fan_in: int = Field(default=10, ge=1, description="Prerequisites per task before warning.")
    max_fan_out: int = Field(default=10, ge=1, description="Dependents per task before warning.")
    max_chain_length: int = Field(default=5, ge=1, description="Critical path hops before warning.")

    # Walk bounds
    analysis_depth: int = Field(default=10, ge=1, description="Hop bound for conflict analysis.")
    preflight_max_depth: int = Field(default=50, ge=1, description="Hop bound for write-time cycle checks.")
    export_depth: int = Field(default=10, ge=1, le=10)

    bulk_max_items: int = Field(default=50, ge=1)

    closed_statuses: list[str] = Field(
        default_factory=lambda: ["complete", "closed", "done", "cancelled"],
        description="Task statuses that make an active dependency on the task invalid.",
    )

    def is_closed_status(self, status: str | None) -> bool:
        return bool(status) and status.lower() in {s.lower() for s in self.closed_statuses}


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise InvalidRequestError(f"Config file must contain a mapping: {path}", path=str(path))
    return data


def load_config(data_root: Path | None = None) -> EngineConfig:
    """Load engine config from taskdeps.yaml plus environment overrides.

    Args:
        data_root: Data directory containing taskdeps.yaml. When None, only
            defaults and environment variables apply.

    Raises:
        InvalidRequestError: If the file or an override holds an invalid value
    """
    values: dict[str, Any] = {}
    if data_root is not None:
        values.update(_read_yaml(get_config_file(data_root)))

    for env_var, field_name in ENV_OVERRIDES.items():
        if (raw := os.environ.get(env_var)) is not None:
            values[field_name] = raw

    try:
        config = EngineConfig.model_validate(values)
    except ValidationError as e:
        raise InvalidRequestError(
            f"Invalid engine configuration: {e.error_count()} error(s)",
            errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        ) from e

    logger.debug("Engine config loaded: %s", config.model_dump())
    return config
