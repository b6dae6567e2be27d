"""SQLite persistence for users, project progress, artifacts and activity."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from .models import User

SCHEMA_VERSION = 2

Row = dict[str, Any]

logger = logging.getLogger(__name__)


class RowStore(Protocol):
    """Per-user row store consumed by the progress engine."""

    async def fetch_progress_rows(self, user_id: str) -> list[Row]: ...

    async def fetch_artifact_rows(self, user_id: str) -> list[Row]: ...

    async def fetch_activity_rows(self, user_id: str) -> list[Row]: ...

    async def upsert_progress_row(self, user_id: str, row: Row) -> None: ...

    async def insert_artifact_row(self, user_id: str, row: Row) -> None: ...

    async def delete_artifact_row(self, user_id: str, artifact_id: str) -> int: ...

    async def insert_activity_row(self, user_id: str, row: Row) -> None: ...


class ProgressStore:
    """Database access layer for users and their board progress.

    The connection is shared with worker threads (see ``AsyncProgressStore``),
    so every statement runs under ``self._lock``.
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize database and schema."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            elif version == 2:
                self._migrate_to_v2()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )
            logger.debug("Applied schema migration v%d", version)

    def _migrate_to_v1(self) -> None:
        """Create users, progress, artifact and activity tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS user_progress (
                    user_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    notes TEXT NOT NULL DEFAULT '',
                    PRIMARY KEY (user_id, project_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS user_artifacts (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    url TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS activity_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """)

    def _migrate_to_v2(self) -> None:
        """Index the per-user lookups issued on every load."""
        with self._conn:
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_user_artifacts_user ON user_artifacts (user_id, created_at)"
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_activity_events_user ON activity_events (user_id, timestamp)"
            )

    def create_user(self, name: str, email: str, password_hash: str) -> User:
        """Create a user; raises ``sqlite3.IntegrityError`` if the email is taken."""
        user = User(id=uuid4().hex, name=name, email=email)
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO users (id, name, email, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.id, user.name, user.email, password_hash, datetime.now(UTC).isoformat()),
            )
        return user

    def get_user(self, user_id: str) -> User | None:
        """Get one user by id."""
        with self._lock:
            row = self._conn.execute("SELECT id, name, email FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return User(id=str(row["id"]), name=str(row["name"]), email=str(row["email"]))

    def get_credentials(self, email: str) -> tuple[User, str] | None:
        """Return the user and stored password hash for an email."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id, name, email, password_hash FROM users WHERE email = ?",
                (email,),
            ).fetchone()
        if row is None:
            return None
        user = User(id=str(row["id"]), name=str(row["name"]), email=str(row["email"]))
        return (user, str(row["password_hash"]))

    def list_progress_rows(self, user_id: str) -> list[Row]:
        """Return progress rows for a user."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT project_id, status, started_at, completed_at, notes
                FROM user_progress
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def list_artifact_rows(self, user_id: str) -> list[Row]:
        """Return artifact rows for a user, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT id, project_id, url, created_at
                FROM user_artifacts
                WHERE user_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def list_activity_rows(self, user_id: str) -> list[Row]:
        """Return activity rows for a user, newest first."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT project_id, type, timestamp
                FROM activity_events
                WHERE user_id = ?
                ORDER BY timestamp DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def upsert_progress_row(self, user_id: str, row: Row) -> None:
        """Insert or replace the progress row keyed by (user, project)."""
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO user_progress (user_id, project_id, status, started_at, completed_at, notes)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, project_id) DO UPDATE SET
                    status = excluded.status,
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at,
                    notes = excluded.notes
                """,
                (
                    user_id,
                    row["project_id"],
                    row["status"],
                    row.get("started_at"),
                    row.get("completed_at"),
                    row.get("notes") or "",
                ),
            )

    def insert_artifact_row(self, user_id: str, row: Row) -> None:
        """Insert one artifact row."""
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO user_artifacts (id, user_id, project_id, url, created_at) VALUES (?, ?, ?, ?, ?)",
                (
                    row.get("id") or uuid4().hex,
                    user_id,
                    row["project_id"],
                    row["url"],
                    row.get("created_at") or datetime.now(UTC).isoformat(),
                ),
            )

    def delete_artifact_row(self, user_id: str, artifact_id: str) -> int:
        """Delete one artifact row by id and return the number of rows removed."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "DELETE FROM user_artifacts WHERE user_id = ? AND id = ?",
                (user_id, artifact_id),
            )
        return cursor.rowcount

    def insert_activity_row(self, user_id: str, row: Row) -> None:
        """Insert one activity row."""
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO activity_events (user_id, project_id, type, timestamp) VALUES (?, ?, ?, ?)",
                (user_id, row["project_id"], row["type"], row["timestamp"]),
            )

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


class AsyncProgressStore:
    """Awaitable ``RowStore`` running ``ProgressStore`` calls in a worker thread."""

    def __init__(self, store: ProgressStore) -> None:
        self.store = store

    async def fetch_progress_rows(self, user_id: str) -> list[Row]:
        return await asyncio.to_thread(self.store.list_progress_rows, user_id)

    async def fetch_artifact_rows(self, user_id: str) -> list[Row]:
        return await asyncio.to_thread(self.store.list_artifact_rows, user_id)

    async def fetch_activity_rows(self, user_id: str) -> list[Row]:
        return await asyncio.to_thread(self.store.list_activity_rows, user_id)

    async def upsert_progress_row(self, user_id: str, row: Row) -> None:
        await asyncio.to_thread(self.store.upsert_progress_row, user_id, row)

    async def insert_artifact_row(self, user_id: str, row: Row) -> None:
        await asyncio.to_thread(self.store.insert_artifact_row, user_id, row)

    async def delete_artifact_row(self, user_id: str, artifact_id: str) -> int:
        return await asyncio.to_thread(self.store.delete_artifact_row, user_id, artifact_id)

    async def insert_activity_row(self, user_id: str, row: Row) -> None:
        await asyncio.to_thread(self.store.insert_activity_row, user_id, row)
