"""Load the declarative project catalog from bundled JSON resources."""

from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any

from .models import Project, ProjectLevel, Resource

CONTENT_PACKAGE = "projectboard.content"
CATALOG_FILE = "projects.json"

logger = logging.getLogger(__name__)


def _strings(raw: dict[str, Any], key: str) -> tuple[str, ...]:
    """Return a cleaned tuple of non-empty strings for one list field."""
    return tuple(str(value).strip() for value in raw.get(key, []) if str(value).strip())


def _resource_from_dict(project_id: str, raw: dict[str, Any]) -> Resource:
    """Build a resource reference from raw JSON content."""
    label = str(raw.get("label", "")).strip()
    url = str(raw.get("url", "")).strip()
    if not label or not url:
        raise ValueError(f"Project '{project_id}' has a resource without label or url.")
    return Resource(label=label, url=url)


def _project_from_dict(raw: dict[str, Any]) -> Project:
    """Build a project from raw JSON content."""
    project_id = str(raw["id"]).strip()
    if not project_id:
        raise ValueError("Project id must not be empty.")
    level_raw = str(raw.get("level", ""))
    try:
        level = ProjectLevel(level_raw)
    except ValueError:
        raise ValueError(f"Project '{project_id}' has unknown level '{level_raw}'.") from None
    return Project(
        id=project_id,
        step_index=int(raw["step_index"]),
        title=str(raw["title"]),
        level=level,
        problem=str(raw.get("problem", "")),
        task=str(raw.get("task", "")),
        tools=_strings(raw, "tools"),
        skills=_strings(raw, "skills"),
        deliverables=_strings(raw, "deliverables"),
        try_steps=_strings(raw, "try_steps"),
        resources=tuple(_resource_from_dict(project_id, item) for item in raw.get("resources", [])),
    )


def _catalog_from_payload(payload: object) -> tuple[Project, ...]:
    """Build and validate the ordered catalog from a decoded JSON document."""
    if isinstance(payload, dict):
        payload = payload.get("projects")
    if not isinstance(payload, list):
        raise ValueError("Catalog must be a list of projects or an object with a 'projects' list.")

    projects: dict[str, Project] = {}
    for raw in payload:
        project = _project_from_dict(raw)
        if project.id in projects:
            raise ValueError(f"Duplicate project id: {project.id}")
        projects[project.id] = project

    ordered = tuple(sorted(projects.values(), key=lambda item: item.step_index))
    _validate_step_order(ordered)
    return ordered


def load_catalog() -> tuple[Project, ...]:
    """Load the bundled catalog ordered by step index."""
    entry = resources.files(CONTENT_PACKAGE).joinpath(CATALOG_FILE)
    catalog = _catalog_from_payload(json.loads(entry.read_text(encoding="utf-8-sig")))
    logger.debug("Loaded %d projects from bundled catalog", len(catalog))
    return catalog


def load_catalog_from_path(path: Path) -> tuple[Project, ...]:
    """Load a catalog file for tests/tools."""
    return _catalog_from_payload(json.loads(path.read_text(encoding="utf-8-sig")))


def _validate_step_order(projects: tuple[Project, ...]) -> None:
    """Validate step indices start at 1 and are contiguous without duplicates."""
    if not projects:
        raise ValueError("Catalog has no projects.")
    for expected, project in enumerate(projects, start=1):
        if project.step_index != expected:
            raise ValueError(
                f"Project '{project.id}' has step index {project.step_index}; expected {expected} "
                "(step indices must start at 1 with no gaps or duplicates)."
            )
