"""Core domain models for the project board."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ProjectLevel(str, Enum):
    """Difficulty label shown on the board."""

    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


class ProjectStatus(str, Enum):
    """Per-project status, ordered from least to most progress."""

    LOCKED = "locked"
    UNLOCKED = "unlocked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        """Return position in the progress ordering."""
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = (
    ProjectStatus.LOCKED,
    ProjectStatus.UNLOCKED,
    ProjectStatus.IN_PROGRESS,
    ProjectStatus.COMPLETED,
)

# Statuses that are trusted as stored; the others are always derived.
EXPLICIT_STATUSES = frozenset({ProjectStatus.IN_PROGRESS, ProjectStatus.COMPLETED})


class ActivityKind(str, Enum):
    """Kind of activity log event."""

    STARTED = "started"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Resource:
    """External reference attached to a project."""

    label: str
    url: str


@dataclass(frozen=True)
class Project:
    """One step on the board."""

    id: str
    step_index: int
    title: str
    level: ProjectLevel
    problem: str
    task: str
    tools: tuple[str, ...]
    skills: tuple[str, ...]
    deliverables: tuple[str, ...]
    try_steps: tuple[str, ...]
    resources: tuple[Resource, ...]


@dataclass(frozen=True)
class ProgressEntry:
    """Progress for one (user, project) pair.

    ``artifact_ids`` runs parallel to ``artifacts`` and holds the row id of
    each stored artifact so that removal targets exactly one row.
    """

    status: ProjectStatus = ProjectStatus.UNLOCKED
    started_at: str | None = None
    completed_at: str | None = None
    notes: str = ""
    artifacts: tuple[str, ...] = ()
    artifact_ids: tuple[str, ...] = field(default=(), repr=False)


@dataclass(frozen=True)
class ActivityEvent:
    """One start/complete transition in the activity log."""

    project_id: str
    kind: ActivityKind
    timestamp: str


@dataclass(frozen=True)
class ResolvedStatus:
    """Status as seen by readers, tagged with where it came from.

    ``explicit`` is true when the status was read from a stored entry
    (``in_progress``/``completed``) and false when the unlock rule computed it.
    """

    status: ProjectStatus
    explicit: bool


@dataclass(frozen=True)
class User:
    """Signed-in identity."""

    id: str
    name: str
    email: str


@dataclass(frozen=True)
class SkillCoverage:
    """Completed vs total projects exercising one skill."""

    skill: str
    total: int
    done: int
    percent: int


@dataclass(frozen=True)
class ToolUsage:
    """Number of completed projects that used one tool."""

    tool: str
    count: int
