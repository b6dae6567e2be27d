"""Project board that takes a signed-in user from product manager to full stack builder."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

__all__ = ["__version__"]

_PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def _source_version() -> str | None:
    """Return ``[project].version`` when running from a source checkout."""
    if not _PYPROJECT.is_file():
        return None
    with _PYPROJECT.open("rb") as handle:
        project = tomllib.load(handle).get("project", {})
    if project.get("name") != "projectboard":
        return None
    return project.get("version")


def _resolve_version() -> str:
    source = _source_version()
    if source is not None:
        return source
    try:
        return version("projectboard")
    except PackageNotFoundError:
        return "0+unknown"


__version__ = _resolve_version()
