"""Per-user progress state with optimistic updates and background persistence."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from uuid import uuid4

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from . import status as derived
from .errors import BoardError, LoadError, PersistenceWriteError
from .models import (
    ActivityEvent,
    ActivityKind,
    Project,
    ProgressEntry,
    ProjectStatus,
    ResolvedStatus,
    SkillCoverage,
    ToolUsage,
    User,
)
from .progress import Row, RowStore
from .sync import activity_row, merge_rows, progress_row, reconcile_activity, reconcile_progress

ErrorListener = Callable[[BoardError], None]
WriteStep = Callable[[], Awaitable[object]]

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class ProgressEngine:
    """Owns the bound user's progress map and activity log.

    Mutations update memory synchronously and queue their writes on the
    running event loop; writes are applied one at a time in submission order.
    Local state is never rolled back when a write fails.
    """

    def __init__(
        self,
        catalog: Sequence[Project],
        store: RowStore,
        *,
        load_timeout: float = 10.0,
        write_attempts: int = 3,
        write_backoff: float = 0.2,
        clock: Callable[[], str] = _utc_now,
    ) -> None:
        self.catalog = tuple(catalog)
        self._projects = {project.id: project for project in self.catalog}
        self._store = store
        self._load_timeout = load_timeout
        self._write_attempts = write_attempts
        self._write_backoff = write_backoff
        self._clock = clock

        self._user: User | None = None
        self._progress: dict[str, ProgressEntry] = {}
        self._activity: list[ActivityEvent] = []
        self.is_loading = False

        # Local changes since the current load began, keyed by project id.
        self._touched: dict[str, set[str]] = {}
        self._removed_artifacts: set[str] = set()

        self._load_seq = 0
        self._load_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task[None]] = set()
        self._error_listeners: list[ErrorListener] = []

    # Identity

    @property
    def user(self) -> User | None:
        """Return the bound user."""
        return self._user

    def bind(self, user: User | None) -> asyncio.Task[None] | None:
        """Switch identity: clear state and start loading for ``user``.

        Any load still in flight for a previous identity is cancelled and its
        results are discarded. Returns the new load task, if one was started.
        """
        if user is not None and self._user is not None and user.id == self._user.id:
            self._user = user
            return self._load_task

        self._load_seq += 1
        self._cancel_load()
        self._user = user
        self._progress = {}
        self._activity = []
        self._reset_touched()
        if user is None:
            self.is_loading = False
            logger.debug("Progress cleared after sign-out")
            return None

        self.is_loading = True
        self._load_task = asyncio.get_running_loop().create_task(self._load(self._load_seq, user.id))
        return self._load_task

    def _reset_touched(self) -> None:
        self._touched = {}
        self._removed_artifacts = set()

    def _cancel_load(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = None

    async def refresh(self) -> None:
        """Reload rows for the bound user and reconcile them with local state."""
        if self._user is None:
            return
        self._load_seq += 1
        self._cancel_load()
        self._reset_touched()
        self.is_loading = True
        task = asyncio.get_running_loop().create_task(self._load(self._load_seq, self._user.id))
        self._load_task = task
        await asyncio.wait({task})

    async def wait_until_loaded(self) -> None:
        """Wait for the current load, following any load that superseded it."""
        while self._load_task is not None:
            task = self._load_task
            await asyncio.wait({task})
            if task is self._load_task:
                return

    async def _fetch(self, user_id: str) -> tuple[list[Row], list[Row], list[Row]]:
        # Writes queued before the load land first.
        async with self._write_lock:
            progress_rows, artifact_rows, activity_rows = await asyncio.gather(
                self._store.fetch_progress_rows(user_id),
                self._store.fetch_artifact_rows(user_id),
                self._store.fetch_activity_rows(user_id),
            )
        return progress_rows, artifact_rows, activity_rows

    async def _load(self, seq: int, user_id: str) -> None:
        try:
            async with asyncio.timeout(self._load_timeout):
                progress_rows, artifact_rows, activity_rows = await self._fetch(user_id)
        except TimeoutError:
            if seq == self._load_seq:
                self._report(LoadError(f"Loading progress timed out after {self._load_timeout:g}s"))
            return
        except Exception as exc:
            if seq == self._load_seq:
                self._report(LoadError(f"Loading progress failed: {exc}"))
            return
        else:
            if seq != self._load_seq:
                logger.debug("Discarding stale progress load for user %s", user_id)
                return
            remote_progress, remote_activity = merge_rows(progress_rows, artifact_rows, activity_rows)
            local = self._progress
            self._progress = reconcile_progress(local, remote_progress, self._touched, self._removed_artifacts)
            self._persist_reconciled(local)
            self._reset_touched()
            self._activity = reconcile_activity(self._activity, remote_activity)
            logger.info("Loaded %d progress entries for user %s", len(self._progress), user_id)
        finally:
            if seq == self._load_seq:
                self.is_loading = False

    def _persist_reconciled(self, before: dict[str, ProgressEntry]) -> None:
        """Upsert touched projects whose merged row differs from the row already queued."""
        user = self._user
        if user is None:
            return
        for project_id in self._touched:
            row = progress_row(project_id, self._progress[project_id])
            previous = before.get(project_id)
            if previous is not None and progress_row(project_id, previous) == row:
                continue
            self._schedule_write(
                "reconcile", project_id, [lambda row=row: self._store.upsert_progress_row(user.id, row)]
            )

    # Errors

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Subscribe to load/write failures and return an unsubscribe function."""
        self._error_listeners.append(listener)

        def remove() -> None:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

        return remove

    def _report(self, error: BoardError) -> None:
        logger.warning("%s", error)
        for listener in list(self._error_listeners):
            listener(error)

    # Reads

    @property
    def progress(self) -> dict[str, ProgressEntry]:
        """Return a snapshot of the progress map."""
        return dict(self._progress)

    @property
    def activity(self) -> list[ActivityEvent]:
        """Return the activity log, newest first."""
        return list(self._activity)

    def get_project(self, project_id: str) -> Project | None:
        """Get catalog project by id."""
        return self._projects.get(project_id)

    def resolve(self, project_id: str) -> ResolvedStatus:
        """Resolve status with its origin (stored or computed by the unlock rule)."""
        if self._user is None:
            return derived.resolve_anonymous_status(self.catalog, project_id)
        return derived.resolve_status(self.catalog, self._progress, project_id)

    def get_status(self, project_id: str) -> ProjectStatus:
        """Return the resolved status of one project."""
        return self.resolve(project_id).status

    @property
    def completed_count(self) -> int:
        return derived.completed_count(self._progress)

    @property
    def unique_tools(self) -> list[str]:
        return derived.unique_tools(self.catalog, self._progress)

    @property
    def unique_skills(self) -> list[str]:
        return derived.unique_skills(self.catalog, self._progress)

    @property
    def next_unlocked_project(self) -> Project | None:
        """Return the first project that is unlocked or in progress."""
        for project in self.catalog:
            if self.get_status(project.id) in (ProjectStatus.UNLOCKED, ProjectStatus.IN_PROGRESS):
                return project
        return None

    def skill_coverage(self) -> list[SkillCoverage]:
        return derived.skill_coverage(self.catalog, self._progress)

    def tool_usage(self) -> list[ToolUsage]:
        return derived.tool_usage(self.catalog, self._progress)

    @property
    def completion_percent(self) -> int:
        return derived.completion_percent(self.catalog, self._progress)

    def completed_projects(self) -> list[Project]:
        """Return completed projects, most recently completed first."""
        done = [project for project in self.catalog if self.get_status(project.id) is ProjectStatus.COMPLETED]
        return sorted(done, key=lambda project: self._progress[project.id].completed_at or "", reverse=True)

    def recent_activity(self, limit: int = 20) -> list[ActivityEvent]:
        """Return the newest ``limit`` activity events."""
        return self._activity[:limit]

    # Mutations

    def _require_project(self, project_id: str) -> None:
        if project_id not in self._projects:
            raise KeyError(project_id)

    def _touch(self, project_id: str, *fields: str) -> None:
        self._touched.setdefault(project_id, set()).update(fields)

    def _entry(self, project_id: str) -> ProgressEntry:
        """Return the current entry normalized to its full shape."""
        return self._progress.get(project_id) or ProgressEntry()

    def start_project(self, project_id: str) -> ProgressEntry | None:
        """Mark a project in progress and log a ``started`` event."""
        self._require_project(project_id)
        user = self._user
        if user is None:
            logger.debug("Ignoring start of %s without a signed-in user", project_id)
            return None
        now = self._clock()
        current = self._entry(project_id)
        entry = replace(current, status=ProjectStatus.IN_PROGRESS, started_at=current.started_at or now)
        self._touch(project_id, "status")
        event = ActivityEvent(project_id=project_id, kind=ActivityKind.STARTED, timestamp=now)
        self._progress[project_id] = entry
        self._activity.insert(0, event)
        row = progress_row(project_id, entry)
        self._schedule_write(
            "start_project",
            project_id,
            [
                lambda: self._store.upsert_progress_row(user.id, row),
                lambda: self._store.insert_activity_row(user.id, activity_row(event)),
            ],
        )
        return entry

    def complete_project(self, project_id: str) -> ProgressEntry | None:
        """Mark a project completed and log a ``completed`` event."""
        self._require_project(project_id)
        user = self._user
        if user is None:
            logger.debug("Ignoring completion of %s without a signed-in user", project_id)
            return None
        now = self._clock()
        current = self._entry(project_id)
        entry = replace(
            current,
            status=ProjectStatus.COMPLETED,
            started_at=current.started_at or now,
            completed_at=now,
        )
        self._touch(project_id, "status", "completed_at")
        event = ActivityEvent(project_id=project_id, kind=ActivityKind.COMPLETED, timestamp=now)
        self._progress[project_id] = entry
        self._activity.insert(0, event)
        row = progress_row(project_id, entry)
        self._schedule_write(
            "complete_project",
            project_id,
            [
                lambda: self._store.upsert_progress_row(user.id, row),
                lambda: self._store.insert_activity_row(user.id, activity_row(event)),
            ],
        )
        logger.info("Project %s completed", project_id)
        return entry

    def save_notes(self, project_id: str, notes: str) -> ProgressEntry | None:
        """Overwrite the notes of a project."""
        self._require_project(project_id)
        user = self._user
        if user is None:
            return None
        entry = replace(self._entry(project_id), notes=notes)
        self._touch(project_id, "notes")
        self._progress[project_id] = entry
        row = progress_row(project_id, entry)
        self._schedule_write("save_notes", project_id, [lambda: self._store.upsert_progress_row(user.id, row)])
        return entry

    def add_artifact(self, project_id: str, url: str) -> ProgressEntry | None:
        """Append an artifact link; blank input is ignored."""
        self._require_project(project_id)
        user = self._user
        url = url.strip()
        if user is None or not url:
            return None
        current = self._entry(project_id)
        artifact_id = uuid4().hex
        entry = replace(
            current,
            artifacts=(*current.artifacts, url),
            artifact_ids=(*current.artifact_ids, artifact_id),
        )
        self._progress[project_id] = entry
        row = {"id": artifact_id, "project_id": project_id, "url": url, "created_at": self._clock()}
        self._schedule_write("add_artifact", project_id, [lambda: self._store.insert_artifact_row(user.id, row)])
        return entry

    def remove_artifact(self, project_id: str, index: int) -> ProgressEntry | None:
        """Remove the artifact at a 0-based position; out-of-range is a no-op."""
        self._require_project(project_id)
        user = self._user
        if user is None:
            return None
        current = self._entry(project_id)
        if not 0 <= index < len(current.artifacts):
            return None
        artifact_id = current.artifact_ids[index]
        self._removed_artifacts.add(artifact_id)
        entry = replace(
            current,
            artifacts=current.artifacts[:index] + current.artifacts[index + 1 :],
            artifact_ids=current.artifact_ids[:index] + current.artifact_ids[index + 1 :],
        )
        self._progress[project_id] = entry
        self._schedule_write(
            "remove_artifact",
            project_id,
            [lambda: self._store.delete_artifact_row(user.id, artifact_id)],
        )
        return entry

    # Writes

    def _schedule_write(self, operation: str, project_id: str, steps: list[WriteStep]) -> None:
        task = asyncio.get_running_loop().create_task(self._run_write(operation, project_id, steps))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _run_write(self, operation: str, project_id: str, steps: list[WriteStep]) -> None:
        async with self._write_lock:
            for step in steps:
                try:
                    async for attempt in AsyncRetrying(
                        stop=stop_after_attempt(self._write_attempts),
                        wait=wait_exponential(multiplier=self._write_backoff, max=5),
                        before_sleep=before_sleep_log(logger, logging.WARNING),
                        reraise=True,
                    ):
                        with attempt:
                            await step()
                except Exception as exc:
                    self._report(PersistenceWriteError(operation, project_id, exc))
                    return
            logger.debug("Persisted %s for project %s", operation, project_id)

    @property
    def pending_writes(self) -> int:
        """Return the number of writes not yet persisted."""
        return len(self._pending_writes)

    async def flush(self) -> None:
        """Wait until every queued write has finished."""
        while self._pending_writes:
            await asyncio.wait(set(self._pending_writes))
