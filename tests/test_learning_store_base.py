"""Tests for PatternStoreBase: schema, migration, connections and clock."""

import sqlite3
import threading
from pathlib import Path

import pytest

from engram.learning.exceptions import StorageError
from engram.learning.store import Outcome, PatternRecord, PatternStore, WhereBuilder


def _tables(db_path: Path) -> set[str]:
    conn = sqlite3.connect(db_path)
    try:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    finally:
        conn.close()
    return {row[0] for row in rows}


def _count(db_path: Path, table: str) -> int:
    conn = sqlite3.connect(db_path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


class TestSchema:
    """Tests for schema creation."""

    def test_creates_all_tables(self, db_path: Path) -> None:
        PatternStore(db_path)

        assert {
            "schema_version",
            "patterns",
            "pattern_usage",
            "pattern_evolution",
            "pattern_validation",
            "learning_patterns",
        } <= _tables(db_path)

    def test_records_schema_version(self, db_path: Path) -> None:
        PatternStore(db_path)

        conn = sqlite3.connect(db_path)
        try:
            versions = conn.execute("SELECT version FROM schema_version").fetchall()
        finally:
            conn.close()
        assert versions == [(PatternStore.SCHEMA_VERSION,)]

    def test_reopening_preserves_data(self, db_path: Path) -> None:
        first = PatternStore(db_path)
        pattern_id = first.store_pattern(PatternRecord(text="create component Button"))

        second = PatternStore(db_path)

        assert second.get_pattern(pattern_id) is not None
        assert _count(db_path, "schema_version") == 1

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        db_path = tmp_path / "nested" / "dir" / "patterns.db"

        PatternStore(db_path)

        assert db_path.exists()

    def test_uses_wal_mode(self, store: PatternStore) -> None:
        with store._get_connection() as conn:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode.lower() == "wal"


class TestMigration:
    """Tests for upgrading a version 1 database."""

    @pytest.fixture
    def v1_db(self, db_path: Path) -> Path:
        conn = sqlite3.connect(db_path)
        conn.executescript("""
            CREATE TABLE schema_version (version INTEGER PRIMARY KEY);
            INSERT INTO schema_version (version) VALUES (1);
            CREATE TABLE patterns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                text TEXT NOT NULL,
                context TEXT,
                timestamp INTEGER NOT NULL,
                metadata TEXT,
                confidence REAL NOT NULL DEFAULT 0.5
            );
            CREATE TABLE pattern_validation (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id INTEGER NOT NULL REFERENCES patterns(id),
                success INTEGER NOT NULL,
                context TEXT,
                timestamp INTEGER NOT NULL
            );
            INSERT INTO patterns (text, context, timestamp, metadata, confidence)
            VALUES ('Create component Button', 'react', 1000, '{}', 0.7);
        """)
        conn.commit()
        conn.close()
        return db_path

    def test_adds_and_backfills_command_column(self, v1_db: Path) -> None:
        store = PatternStore(v1_db)

        patterns = store.list_patterns(command="create")

        assert [p.text for p in patterns] == ["Create component Button"]
        assert patterns[0].confidence == pytest.approx(0.7)

    def test_adds_validation_metadata_column(self, v1_db: Path) -> None:
        store = PatternStore(v1_db)
        pattern_id = store.list_patterns()[0].id
        assert pattern_id is not None

        store.update_pattern_validation(pattern_id, Outcome.SUCCESS, "repo", adjustments=["x"])

        validations = store.get_pattern_validations(pattern_id)
        assert validations[0].metadata == {"adjustments": ["x"]}

    def test_bumps_schema_version(self, v1_db: Path) -> None:
        PatternStore(v1_db)

        conn = sqlite3.connect(v1_db)
        try:
            version = conn.execute("SELECT version FROM schema_version").fetchone()[0]
        finally:
            conn.close()
        assert version == PatternStore.SCHEMA_VERSION

    def test_migration_is_idempotent(self, v1_db: Path) -> None:
        PatternStore(v1_db)
        store = PatternStore(v1_db)

        assert len(store.list_patterns()) == 1


class TestConnections:
    """Tests for per-operation and batched connections."""

    def test_unopenable_database_raises_storage_error(self, tmp_path: Path) -> None:
        # A directory cannot be opened as a database file
        with pytest.raises(StorageError):
            PatternStore(tmp_path)

    def test_sql_error_becomes_storage_error(self, store: PatternStore) -> None:
        with pytest.raises(StorageError, match="Database operation failed"):
            with store._get_connection() as conn:
                conn.execute("SELECT * FROM no_such_table")

    def test_batch_commits_all_operations(self, store: PatternStore, db_path: Path) -> None:
        with store.batch_connection():
            store.store_pattern(PatternRecord(text="create a"))
            store.store_pattern(PatternRecord(text="create b"))

        assert _count(db_path, "patterns") == 2

    def test_batch_rolls_back_on_exception(self, store: PatternStore, db_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with store.batch_connection():
                store.store_pattern(PatternRecord(text="create a"))
                raise RuntimeError("boom")

        assert _count(db_path, "patterns") == 0

    def test_batch_rolls_back_on_sql_error(self, store: PatternStore, db_path: Path) -> None:
        with pytest.raises(StorageError, match="Batch operation failed"):
            with store.batch_connection() as conn:
                store.store_pattern(PatternRecord(text="create a"))
                conn.execute("INSERT INTO no_such_table VALUES (1)")

        assert _count(db_path, "patterns") == 0

    def test_nested_batch_joins_outer(self, store: PatternStore, db_path: Path) -> None:
        with pytest.raises(RuntimeError):
            with store.batch_connection() as outer:
                with store.batch_connection() as inner:
                    assert inner is outer
                    store.store_pattern(PatternRecord(text="create a"))
                raise RuntimeError("boom")

        assert _count(db_path, "patterns") == 0

    def test_batch_holds_write_lock(self, store: PatternStore, db_path: Path) -> None:
        other = sqlite3.connect(db_path, timeout=0)
        try:
            with store.batch_connection():
                with pytest.raises(sqlite3.OperationalError, match="locked"):
                    other.execute("BEGIN IMMEDIATE")
        finally:
            other.close()

    def test_clear_all(self, store: PatternStore, db_path: Path) -> None:
        store.store_pattern(PatternRecord(text="create a"))

        store.clear_all()

        assert _count(db_path, "patterns") == 0


class TestClock:
    """Tests for the monotonic default timestamp."""

    def test_timestamps_strictly_increase(self, store: PatternStore) -> None:
        stamps = [store._next_timestamp() for _ in range(200)]

        assert all(b > a for a, b in zip(stamps, stamps[1:], strict=False))

    def test_default_timestamps_are_distinct(self, store: PatternStore) -> None:
        ids = [store.store_pattern(PatternRecord(text=f"create {i}")) for i in range(20)]

        timestamps = [store.get_pattern(i).timestamp for i in ids]  # type: ignore[union-attr]
        assert len(set(timestamps)) == 20
        assert timestamps == sorted(timestamps)

    def test_concurrent_writers(self, store: PatternStore, db_path: Path) -> None:
        errors: list[Exception] = []

        def writer(worker: int) -> None:
            try:
                for i in range(10):
                    store.store_pattern(PatternRecord(text=f"create w{worker} n{i}"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(w,)) for w in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert _count(db_path, "patterns") == 40
        with store._get_connection() as conn:
            distinct = conn.execute("SELECT COUNT(DISTINCT timestamp) FROM patterns").fetchone()[0]
        assert distinct == 40


class TestWhereBuilder:
    """Tests for WhereBuilder."""

    def test_empty_builder(self) -> None:
        assert WhereBuilder().build() == ("1=1", ())

    def test_joins_clauses_with_and(self) -> None:
        wb = WhereBuilder()
        wb.add("command = ?", "create")
        wb.add("confidence >= ?", 0.5)

        assert wb.build() == ("command = ? AND confidence >= ?", ("create", 0.5))
