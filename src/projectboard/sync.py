"""Conversion between store rows and in-memory progress, plus reconciliation."""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterable, Mapping

from .models import ActivityEvent, ActivityKind, ProgressEntry, ProjectStatus
from .progress import Row

logger = logging.getLogger(__name__)


def _status_from_row(row: Row) -> ProjectStatus:
    raw = row.get("status")
    try:
        return ProjectStatus(raw)
    except ValueError:
        logger.warning("Unknown stored status %r for project %s; treating as unlocked", raw, row.get("project_id"))
        return ProjectStatus.UNLOCKED


def entry_from_row(row: Row) -> ProgressEntry:
    """Normalize one progress row into a full entry without artifacts."""
    return ProgressEntry(
        status=_status_from_row(row),
        started_at=row.get("started_at") or None,
        completed_at=row.get("completed_at") or None,
        notes=row.get("notes") or "",
    )


def merge_rows(
    progress_rows: Iterable[Row],
    artifact_rows: Iterable[Row],
    activity_rows: Iterable[Row],
) -> tuple[dict[str, ProgressEntry], list[ActivityEvent]]:
    """Build the progress map and activity log from the three loaded tables.

    Artifact rows are folded in after progress rows, in the order given; a
    project that only has artifacts gets a default ``unlocked`` entry.
    """
    progress: dict[str, ProgressEntry] = {}
    for row in progress_rows:
        progress[str(row["project_id"])] = entry_from_row(row)

    for row in artifact_rows:
        project_id = str(row["project_id"])
        entry = progress.get(project_id, ProgressEntry())
        progress[project_id] = ProgressEntry(
            status=entry.status,
            started_at=entry.started_at,
            completed_at=entry.completed_at,
            notes=entry.notes,
            artifacts=(*entry.artifacts, str(row["url"])),
            artifact_ids=(*entry.artifact_ids, str(row.get("id") or "")),
        )

    activity: list[ActivityEvent] = []
    for row in activity_rows:
        try:
            kind = ActivityKind(row.get("type"))
        except ValueError:
            logger.warning("Skipping activity row with unknown type %r", row.get("type"))
            continue
        activity.append(
            ActivityEvent(project_id=str(row["project_id"]), kind=kind, timestamp=str(row["timestamp"]))
        )
    return progress, activity


def progress_row(project_id: str, entry: ProgressEntry) -> Row:
    """Return the progress-table row for an entry."""
    return {
        "project_id": project_id,
        "status": entry.status.value,
        "started_at": entry.started_at,
        "completed_at": entry.completed_at,
        "notes": entry.notes,
    }


def activity_row(event: ActivityEvent) -> Row:
    """Return the activity-table row for an event."""
    return {"project_id": event.project_id, "type": event.kind.value, "timestamp": event.timestamp}


def _earliest(first: str | None, second: str | None) -> str | None:
    candidates = [value for value in (first, second) if value]
    return min(candidates) if candidates else None


def _latest(first: str | None, second: str | None) -> str | None:
    candidates = [value for value in (first, second) if value]
    return max(candidates) if candidates else None


def reconcile_entry(
    local: ProgressEntry | None,
    remote: ProgressEntry | None,
    touched: Collection[str] = (),
    removed: Collection[str] = (),
) -> ProgressEntry:
    """Merge a local entry with a freshly loaded remote one.

    ``touched`` names the fields set locally while the load was in flight;
    those keep their local value. ``removed`` holds artifact ids deleted
    locally in the same window. Every other field follows this policy:

    - status: the more advanced of the two
    - started_at: earliest known; completed_at: latest known
    - notes: local unless empty
    - artifacts: remote rows in stored order, then local rows not stored yet
    """
    if remote is None:
        return local if local is not None else ProgressEntry()
    if local is None:
        local = ProgressEntry()

    fields = {
        "status": local.status if local.status.rank >= remote.status.rank else remote.status,
        "started_at": _earliest(local.started_at, remote.started_at),
        "completed_at": _latest(local.completed_at, remote.completed_at),
        "notes": local.notes or remote.notes,
    }
    for name in fields.keys() & set(touched):
        fields[name] = getattr(local, name)

    stored = set(remote.artifact_ids)
    pairs = [pair for pair in zip(remote.artifacts, remote.artifact_ids) if pair[1] not in removed]
    pairs += [
        pair for pair in zip(local.artifacts, local.artifact_ids) if pair[1] not in stored and pair[1] not in removed
    ]
    return ProgressEntry(
        artifacts=tuple(url for url, _ in pairs),
        artifact_ids=tuple(artifact_id for _, artifact_id in pairs),
        **fields,
    )


def reconcile_progress(
    local: Mapping[str, ProgressEntry],
    remote: Mapping[str, ProgressEntry],
    touched: Mapping[str, Collection[str]] | None = None,
    removed: Collection[str] = (),
) -> dict[str, ProgressEntry]:
    """Reconcile every project present on either side."""
    touched = touched or {}
    merged: dict[str, ProgressEntry] = {}
    for project_id in dict.fromkeys([*remote, *local]):
        merged[project_id] = reconcile_entry(
            local.get(project_id), remote.get(project_id), touched.get(project_id, ()), removed
        )
    return merged


def reconcile_activity(local: list[ActivityEvent], remote: list[ActivityEvent]) -> list[ActivityEvent]:
    """Keep the remote log and put local events it does not contain yet on top."""
    remote_set = set(remote)
    unsynced = [event for event in local if event not in remote_set]
    return unsynced + list(remote)
