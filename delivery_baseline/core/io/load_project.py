from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from delivery_baseline.core.errors import ProjectLoadError


# Record lists of a snapshot.
PROJECT_SECTIONS = ("milestones", "deliverables", "plan_nodes")
TOP_LEVEL_KEYS = {"schema_version", "project_id", *PROJECT_SECTIONS}


def load_project(path: str) -> dict[str, Any]:
    """Load a YAML/JSON project snapshot.

    Returns a dict with keys: schema_version, project_id, milestones,
    deliverables, plan_nodes. Each section is a list (missing or empty sections
    become []); record fields are left to the validator.
    """

    p = Path(path)
    if not p.exists():
        raise ProjectLoadError(
            code="E_FILE_NOT_FOUND",
            message="file does not exist",
            file=str(p),
        )

    suffix = p.suffix.lower()
    try:
        raw_text = p.read_text(encoding="utf-8")
    except Exception as e:  # pragma: no cover
        raise ProjectLoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw_text)
        elif suffix == ".json":
            data = json.loads(raw_text)
        else:
            raise ProjectLoadError(
                code="E_UNSUPPORTED_FORMAT",
                message="supported formats are .yaml/.yml and .json",
                file=str(p),
            )
    except ProjectLoadError:
        raise
    except Exception as e:
        code = "E_YAML_PARSE" if suffix in {".yaml", ".yml"} else "E_JSON_PARSE"
        raise ProjectLoadError(code=code, message=str(e), file=str(p)) from e

    if not isinstance(data, dict):
        raise ProjectLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            file=str(p),
        )

    normalized: dict[str, Any] = {
        "schema_version": data.get("schema_version"),
        "project_id": data.get("project_id"),
    }
    for section in PROJECT_SECTIONS:
        items = data.get(section)
        # An empty section in YAML ("deliverables:") loads as None.
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ProjectLoadError(
                code="E_INVALID_SECTION",
                message=f"{section} must be a list of records, got {type(items).__name__}",
                file=str(p),
            )
        normalized[section] = items

    unknown = sorted(str(k) for k in data if k not in TOP_LEVEL_KEYS)
    if unknown:
        raise ProjectLoadError(
            code="E_UNKNOWN_SECTION",
            message=f"unknown top-level keys: {', '.join(unknown)}",
            file=str(p),
        )
    normalized["__file__"] = str(p)
    return normalized
