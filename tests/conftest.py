from __future__ import annotations

import asyncio
import shutil
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from projectboard.models import Project, ProjectLevel  # noqa: E402

Row = dict[str, Any]


def _tmp_path_fixture() -> Iterator[Path]:
    """Provide per-test temporary directory path inside the workspace.

    This intentionally overrides pytest's builtin ``tmp_path`` fixture for this
    repository. In this environment, system temp locations and builtin tmp-path
    setup are not reliable, so tests keep temporary files under the project
    working directory at ``.tmp_pytest/``.
    """
    base = ROOT / ".tmp_pytest"
    base.mkdir(parents=True, exist_ok=True)
    path = base / str(uuid4())
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        try:
            next(base.iterdir())
        except StopIteration:
            base.rmdir()
        except FileNotFoundError:
            pass


tmp_path = pytest.fixture(name="tmp_path")(_tmp_path_fixture)


def make_project(
    project_id: str,
    step_index: int,
    tools: tuple[str, ...] = (),
    skills: tuple[str, ...] = (),
) -> Project:
    return Project(
        id=project_id,
        step_index=step_index,
        title=f"Project {step_index}",
        level=ProjectLevel.BEGINNER,
        problem="",
        task="",
        tools=tools,
        skills=skills,
        deliverables=(),
        try_steps=(),
        resources=(),
    )


@pytest.fixture
def mini_catalog() -> tuple[Project, ...]:
    return (
        make_project("p1", 1, tools=("Figma", "Notion"), skills=("Research",)),
        make_project("p2", 2, tools=("Notion", "GitHub"), skills=("Research", "Design")),
        make_project("p3", 3, tools=("GitHub",), skills=("Testing",)),
    )


class FakeRowStore:
    """Scriptable in-memory ``RowStore`` for engine tests."""

    def __init__(self) -> None:
        self.progress: dict[tuple[str, str], Row] = {}
        self.artifacts: list[Row] = []
        self.activity: list[Row] = []
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.fail_loads = False
        self.write_failures = 0

    async def _before_fetch(self, user_id: str) -> None:
        gate = self.gates.get(user_id)
        if gate is not None:
            await gate.wait()
        if self.fail_loads:
            raise ConnectionError("store unavailable")

    async def _before_write(self, name: str) -> None:
        self.calls.append(name)
        if self.write_failures > 0:
            self.write_failures -= 1
            raise ConnectionError("write failed")

    async def fetch_progress_rows(self, user_id: str) -> list[Row]:
        await self._before_fetch(user_id)
        return [dict(row) for (owner, _), row in self.progress.items() if owner == user_id]

    async def fetch_artifact_rows(self, user_id: str) -> list[Row]:
        await self._before_fetch(user_id)
        return [dict(row) for row in self.artifacts if row["user_id"] == user_id]

    async def fetch_activity_rows(self, user_id: str) -> list[Row]:
        await self._before_fetch(user_id)
        rows = [dict(row) for row in self.activity if row["user_id"] == user_id]
        return list(reversed(rows))

    async def upsert_progress_row(self, user_id: str, row: Row) -> None:
        await self._before_write("upsert_progress_row")
        self.progress[(user_id, row["project_id"])] = dict(row)

    async def insert_artifact_row(self, user_id: str, row: Row) -> None:
        await self._before_write("insert_artifact_row")
        self.artifacts.append({**row, "user_id": user_id})

    async def delete_artifact_row(self, user_id: str, artifact_id: str) -> int:
        await self._before_write("delete_artifact_row")
        before = len(self.artifacts)
        self.artifacts = [
            row for row in self.artifacts if not (row["user_id"] == user_id and row["id"] == artifact_id)
        ]
        return before - len(self.artifacts)

    async def insert_activity_row(self, user_id: str, row: Row) -> None:
        await self._before_write("insert_activity_row")
        self.activity.append({**row, "user_id": user_id})


@pytest.fixture
def fake_store() -> FakeRowStore:
    return FakeRowStore()


@pytest.fixture
def clock() -> Callable[[], str]:
    """Return a clock that ticks one second per call."""
    ticks = {"value": 0}

    def now() -> str:
        ticks["value"] += 1
        return f"2026-01-01T00:00:{ticks['value']:02d}+00:00"

    return now
