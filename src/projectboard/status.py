"""Pure status resolution and aggregate views over a progress map."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from .models import (
    EXPLICIT_STATUSES,
    Project,
    ProgressEntry,
    ProjectStatus,
    ResolvedStatus,
    SkillCoverage,
    ToolUsage,
)

ProgressMap = Mapping[str, ProgressEntry]


def resolve_status(catalog: Sequence[Project], progress: ProgressMap, project_id: str) -> ResolvedStatus:
    """Resolve one project's status with the sequential unlock rule.

    A stored ``completed``/``in_progress`` is trusted as-is. Otherwise step 1
    is unlocked and step n is unlocked only once step n-1 is stored completed.
    """
    project = next((item for item in catalog if item.id == project_id), None)
    if project is None:
        return ResolvedStatus(ProjectStatus.LOCKED, explicit=False)

    entry = progress.get(project_id)
    if entry is not None and entry.status in EXPLICIT_STATUSES:
        return ResolvedStatus(entry.status, explicit=True)

    if project.step_index == 1:
        return ResolvedStatus(ProjectStatus.UNLOCKED, explicit=False)

    previous = next((item for item in catalog if item.step_index == project.step_index - 1), None)
    if previous is not None:
        previous_entry = progress.get(previous.id)
        if previous_entry is not None and previous_entry.status is ProjectStatus.COMPLETED:
            return ResolvedStatus(ProjectStatus.UNLOCKED, explicit=False)

    return ResolvedStatus(ProjectStatus.LOCKED, explicit=False)


def resolve_anonymous_status(catalog: Sequence[Project], project_id: str) -> ResolvedStatus:
    """Resolve status with no signed-in user: only step 1 is open."""
    project = next((item for item in catalog if item.id == project_id), None)
    if project is not None and project.step_index == 1:
        return ResolvedStatus(ProjectStatus.UNLOCKED, explicit=False)
    return ResolvedStatus(ProjectStatus.LOCKED, explicit=False)


def _percent(done: int, total: int) -> int:
    """Return a percentage rounded half up."""
    return int(100 * done / total + 0.5)


def _is_completed(progress: ProgressMap, project_id: str) -> bool:
    entry = progress.get(project_id)
    return entry is not None and entry.status is ProjectStatus.COMPLETED


def completed_count(progress: ProgressMap) -> int:
    """Count entries stored as completed."""
    return sum(1 for entry in progress.values() if entry.status is ProjectStatus.COMPLETED)


def unique_tools(catalog: Sequence[Project], progress: ProgressMap) -> list[str]:
    """Return tools of completed projects, de-duplicated in first-seen order."""
    seen: dict[str, None] = {}
    for project in catalog:
        if _is_completed(progress, project.id):
            seen.update(dict.fromkeys(project.tools))
    return list(seen)


def unique_skills(catalog: Sequence[Project], progress: ProgressMap) -> list[str]:
    """Return skills of completed projects, de-duplicated in first-seen order."""
    seen: dict[str, None] = {}
    for project in catalog:
        if _is_completed(progress, project.id):
            seen.update(dict.fromkeys(project.skills))
    return list(seen)


def skill_coverage(catalog: Sequence[Project], progress: ProgressMap) -> list[SkillCoverage]:
    """Return completed vs total project counts per skill across the catalog."""
    totals: dict[str, int] = {}
    done: dict[str, int] = {}
    for project in catalog:
        completed = _is_completed(progress, project.id)
        for skill in dict.fromkeys(project.skills):
            totals[skill] = totals.get(skill, 0) + 1
            if completed:
                done[skill] = done.get(skill, 0) + 1
    return [
        SkillCoverage(
            skill=skill,
            total=total,
            done=done.get(skill, 0),
            percent=_percent(done.get(skill, 0), total),
        )
        for skill, total in totals.items()
    ]


def tool_usage(catalog: Sequence[Project], progress: ProgressMap) -> list[ToolUsage]:
    """Return how many completed projects used each tool, most used first."""
    counts: dict[str, int] = {}
    for project in catalog:
        if not _is_completed(progress, project.id):
            continue
        for tool in project.tools:
            counts[tool] = counts.get(tool, 0) + 1
    # sorted() is stable, so ties keep first-seen order.
    ranked = sorted(counts.items(), key=lambda pair: pair[1], reverse=True)
    return [ToolUsage(tool=tool, count=count) for tool, count in ranked]


def completion_percent(catalog: Sequence[Project], progress: ProgressMap) -> int:
    """Return the rounded share of catalog projects that are completed."""
    if not catalog:
        return 0
    done = sum(1 for project in catalog if _is_completed(progress, project.id))
    return _percent(done, len(catalog))


def search_catalog(catalog: Sequence[Project], query: str) -> list[Project]:
    """Return projects whose title, skills or tools contain the query."""
    needle = query.strip().lower()
    if not needle:
        return []
    return [
        project
        for project in catalog
        if needle in project.title.lower()
        or any(needle in skill.lower() for skill in project.skills)
        or any(needle in tool.lower() for tool in project.tools)
    ]
