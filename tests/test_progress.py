import sqlite3

import pytest

from projectboard.progress import SCHEMA_VERSION, AsyncProgressStore, ProgressStore


@pytest.fixture
def store():
    db = ProgressStore(":memory:")
    yield db
    db.close()


def test_migrations_set_user_version(store) -> None:
    version = store._conn.execute("PRAGMA user_version").fetchone()[0]
    applied = [row[0] for row in store._conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
    assert version == SCHEMA_VERSION
    assert applied == [1, 2]


def test_reopening_database_keeps_schema_and_data(tmp_path) -> None:
    db_path = tmp_path / "nested" / "board.db"
    first = ProgressStore(db_path)
    user = first.create_user("Ann", "ann@example.com", "hash")
    first.close()

    second = ProgressStore(db_path)
    try:
        assert second.get_user(user.id) == user
        applied = [row[0] for row in second._conn.execute("SELECT version FROM schema_migrations")]
        assert applied == [1, 2]
    finally:
        second.close()


def test_newer_schema_is_rejected(tmp_path) -> None:
    db_path = tmp_path / "board.db"
    conn = sqlite3.connect(db_path)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    conn.close()
    with pytest.raises(RuntimeError, match="newer than supported"):
        ProgressStore(db_path)


def test_create_user_and_credentials(store) -> None:
    user = store.create_user("Ann", "ann@example.com", "hash")

    assert store.get_user(user.id) == user
    assert store.get_user("missing") is None
    assert store.get_credentials("ann@example.com") == (user, "hash")
    assert store.get_credentials("bob@example.com") is None


def test_duplicate_email_raises_integrity_error(store) -> None:
    store.create_user("Ann", "ann@example.com", "hash")
    with pytest.raises(sqlite3.IntegrityError):
        store.create_user("Other", "ann@example.com", "hash")


def test_upsert_progress_row_overwrites(store) -> None:
    store.upsert_progress_row("u1", {"project_id": "p1", "status": "in_progress", "started_at": "t1"})
    store.upsert_progress_row(
        "u1", {"project_id": "p1", "status": "completed", "started_at": "t1", "completed_at": "t2", "notes": "n"}
    )
    store.upsert_progress_row("u2", {"project_id": "p1", "status": "in_progress"})

    assert store.list_progress_rows("u1") == [
        {"project_id": "p1", "status": "completed", "started_at": "t1", "completed_at": "t2", "notes": "n"}
    ]
    assert len(store.list_progress_rows("u2")) == 1


def test_artifacts_are_listed_oldest_first_and_deleted_by_id(store) -> None:
    store.insert_artifact_row("u1", {"id": "a2", "project_id": "p1", "url": "https://b", "created_at": "t2"})
    store.insert_artifact_row("u1", {"id": "a1", "project_id": "p1", "url": "https://a", "created_at": "t1"})
    store.insert_artifact_row("u1", {"id": "a3", "project_id": "p1", "url": "https://a", "created_at": "t3"})

    assert [row["id"] for row in store.list_artifact_rows("u1")] == ["a1", "a2", "a3"]
    assert store.delete_artifact_row("u2", "a1") == 0
    assert store.delete_artifact_row("u1", "a1") == 1
    assert [row["id"] for row in store.list_artifact_rows("u1")] == ["a2", "a3"]


def test_activity_rows_are_listed_newest_first(store) -> None:
    store.insert_activity_row("u1", {"project_id": "p1", "type": "started", "timestamp": "t1"})
    store.insert_activity_row("u1", {"project_id": "p1", "type": "completed", "timestamp": "t2"})

    assert store.list_activity_rows("u1") == [
        {"project_id": "p1", "type": "completed", "timestamp": "t2"},
        {"project_id": "p1", "type": "started", "timestamp": "t1"},
    ]
    assert store.list_activity_rows("u2") == []


async def test_async_store_runs_calls_in_worker_thread(store) -> None:
    rows = AsyncProgressStore(store)
    await rows.upsert_progress_row("u1", {"project_id": "p1", "status": "in_progress"})
    await rows.insert_artifact_row("u1", {"id": "a1", "project_id": "p1", "url": "https://a", "created_at": "t1"})
    await rows.insert_activity_row("u1", {"project_id": "p1", "type": "started", "timestamp": "t1"})

    assert [row["status"] for row in await rows.fetch_progress_rows("u1")] == ["in_progress"]
    assert [row["url"] for row in await rows.fetch_artifact_rows("u1")] == ["https://a"]
    assert [row["type"] for row in await rows.fetch_activity_rows("u1")] == ["started"]
    assert await rows.delete_artifact_row("u1", "a1") == 1
