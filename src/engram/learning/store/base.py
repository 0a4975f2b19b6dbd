"""Base class for PatternStore with connection and schema management.

This module provides the foundational `PatternStoreBase` class that handles:
- SQLite database connection management with WAL mode
- Schema creation and column migration
- Batched connections for multi-statement atomic units
- A monotonic millisecond clock for default pattern timestamps

Mixins inherit from this base to add domain-specific functionality.
"""

import contextvars
import sqlite3
import threading
import time
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path

from engram.core.config import DEFAULT_STORE_PATH, ConfidenceConfig
from engram.core.logging import get_logger
from engram.learning.exceptions import StorageError
from engram.learning.store.models import command_of

# Module-level logger for the pattern store
_logger = get_logger("learning.store")

# SQLite accepts str, int, float, bytes, and None as bind parameters.
SQLParam = str | int | float | bytes | None


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class WhereBuilder:
    """Accumulates SQL WHERE clauses and their bound parameters.

    Clauses are joined with AND.

    Usage::

        wb = WhereBuilder()
        wb.add("command = ?", command)
        wb.add("confidence >= ?", min_confidence)
        where_sql, params = wb.build()
        conn.execute(f"SELECT * FROM patterns WHERE {where_sql}", params)
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[SQLParam] = []

    def add(self, clause: str, *params: SQLParam) -> None:
        """Append a WHERE clause with its bound parameters."""
        self._clauses.append(clause)
        self._params.extend(params)

    def build(self) -> tuple[str, tuple[SQLParam, ...]]:
        """Return the combined WHERE fragment and parameter tuple.

        Returns ``("1=1", ())`` when no clauses have been added.
        """
        if not self._clauses:
            return "1=1", ()
        return " AND ".join(self._clauses), tuple(self._params)


class PatternStoreBase:
    """SQLite-based pattern store base class.

    Provides persistent storage infrastructure for patterns, their usage
    history, evolution lineage, validation records, and learning-specific
    extensions. Uses WAL mode so reads can proceed while a write is in
    flight.

    Every operation opens its own connection and commits or rolls back as a
    unit. ``batch_connection()`` groups several operations into one
    transaction. Any ``sqlite3.Error`` surfaces as ``StorageError`` after the
    transaction has been rolled back.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    # v1: patterns, pattern_usage, pattern_evolution, pattern_validation,
    #     learning_patterns
    # v2: patterns.command column for coarse filtering, validation metadata
    SCHEMA_VERSION = 2

    # Columns added after initial table creation
    # Format: {table_name: [(column_name, column_definition), ...]}
    _COLUMN_MIGRATIONS: dict[str, list[tuple[str, str]]] = {
        "patterns": [
            ("command", "TEXT NOT NULL DEFAULT ''"),
        ],
        "pattern_validation": [
            ("metadata", "TEXT"),
        ],
    }

    def __init__(
        self,
        db_path: Path | None = None,
        confidence_config: ConfidenceConfig | None = None,
    ) -> None:
        """Initialize the pattern store.

        Creates the database directory if needed and runs any necessary
        migrations.

        Args:
            db_path: Path to the SQLite database file.
                    Defaults to ~/.engram/patterns.db
            confidence_config: Default confidence rules for updates that do
                    not pass their own overrides.
        """
        self.db_path = db_path or DEFAULT_STORE_PATH
        self._confidence_config = confidence_config or ConfidenceConfig()
        self._logger = _logger
        # ContextVar scopes the batch connection per thread / asyncio task
        self._batch_conn: contextvars.ContextVar[sqlite3.Connection | None] = (
            contextvars.ContextVar("_batch_conn", default=None)
        )
        self._clock_lock = threading.Lock()
        self._last_timestamp = 0
        self._ensure_db_exists()
        self._migrate_if_needed()

    def _ensure_db_exists(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA busy_timeout=30000")
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open pattern database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with proper configuration.

        If called inside a ``batch_connection()`` context, reuses the cached
        connection (no commit/close per call; the batch handles that).
        Otherwise creates a fresh connection per call.

        Yields:
            A configured sqlite3.Connection instance.

        Raises:
            StorageError: If the connection or any statement fails.
        """
        batch = self._batch_conn.get()
        if batch is not None:
            yield batch
            return

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            _logger.warning(
                "database_operation_failed",
                db_path=str(self.db_path),
                error=f"{type(e).__name__}: {e}",
            )
            raise StorageError(f"Database operation failed on {self.db_path}: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def batch_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Reuse a single connection across multiple operations.

        While this context manager is active, all ``_get_connection()`` calls
        in the same thread or task reuse the same connection. The connection
        is committed once on successful exit or rolled back on error, so the
        grouped operations are atomic.

        The batch takes the database write lock on entry. Nested use joins the
        outer batch.

        Example::

            with store.batch_connection():
                pattern_id = store.store_pattern(pattern)
                store.record_usage(PatternUsage(pattern_id, Outcome.SUCCESS))

        Yields:
            The shared sqlite3.Connection instance.
        """
        outer = self._batch_conn.get()
        if outer is not None:
            yield outer
            return

        conn = self._connect()
        token = self._batch_conn.set(conn)
        try:
            # Batch holds the write lock from its first read.
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            _logger.warning(
                "batch_operation_failed",
                db_path=str(self.db_path),
                error=f"{type(e).__name__}: {e}",
            )
            raise StorageError(f"Batch operation failed on {self.db_path}: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._batch_conn.reset(token)
            conn.close()

    def close(self) -> None:  # noqa: B027 - intentional concrete no-op default
        """Close any persistent resources.

        No-op: connections are managed per-operation via _get_connection().
        """

    def _next_timestamp(self) -> int:
        """Return a strictly increasing epoch-millisecond timestamp."""
        with self._clock_lock:
            ts = max(now_ms(), self._last_timestamp + 1)
            self._last_timestamp = ts
            return ts

    def _migrate_if_needed(self) -> None:
        """Create or migrate the database schema.

        Migration is idempotent - running it multiple times is safe.
        """
        with self._get_connection() as conn:
            try:
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row["version"] if row else 0
            except sqlite3.OperationalError:
                current_version = 0

            if current_version < self.SCHEMA_VERSION:
                self._migrate_columns(conn)
                self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create all tables and indexes (IF NOT EXISTS)."""
        self._create_schema_version_table(conn)
        self._create_patterns_table(conn)
        self._create_pattern_usage_table(conn)
        self._create_pattern_evolution_table(conn)
        self._create_pattern_validation_table(conn)
        self._create_learning_patterns_table(conn)

        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,),
        )

        self._logger.info("schema_created", version=self.SCHEMA_VERSION)

    @staticmethod
    def _create_schema_version_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)

    @staticmethod
    def _create_patterns_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS patterns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                text TEXT NOT NULL,
                context TEXT,
                command TEXT NOT NULL DEFAULT '',
                timestamp INTEGER NOT NULL,
                metadata TEXT,
                confidence REAL NOT NULL DEFAULT 0.5
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_command_context "
            "ON patterns(command, context)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_context_ts "
            "ON patterns(context, timestamp DESC)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_command_ts "
            "ON patterns(command, timestamp DESC)"
        )

    @staticmethod
    def _create_pattern_usage_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pattern_usage (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id INTEGER NOT NULL REFERENCES patterns(id),
                timestamp INTEGER NOT NULL,
                outcome TEXT NOT NULL,
                feedback TEXT,
                adjustments TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_usage_pattern_outcome "
            "ON pattern_usage(pattern_id, outcome)"
        )

    @staticmethod
    def _create_pattern_evolution_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pattern_evolution (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                original_pattern_id INTEGER NOT NULL REFERENCES patterns(id),
                changes TEXT NOT NULL,
                outcome TEXT NOT NULL,
                timestamp INTEGER NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_evolution_pattern "
            "ON pattern_evolution(original_pattern_id, timestamp DESC)"
        )

    @staticmethod
    def _create_pattern_validation_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pattern_validation (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id INTEGER NOT NULL REFERENCES patterns(id),
                success INTEGER NOT NULL,
                context TEXT,
                timestamp INTEGER NOT NULL,
                metadata TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_validation_pattern "
            "ON pattern_validation(pattern_id)"
        )

    @staticmethod
    def _create_learning_patterns_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS learning_patterns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id INTEGER NOT NULL REFERENCES patterns(id),
                project_fingerprint TEXT NOT NULL,
                execution_data TEXT NOT NULL,
                category TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_learning_fingerprint "
            "ON learning_patterns(project_fingerprint)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_learning_pattern "
            "ON learning_patterns(pattern_id)"
        )

    @staticmethod
    def _get_existing_columns(
        conn: sqlite3.Connection, table_name: str,
    ) -> set[str] | None:
        """Get the column names for a table, or None if the table does not exist."""
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table_name,),
        )
        if not cursor.fetchone():
            return None
        cursor = conn.execute(f"PRAGMA table_info({table_name})")
        return {row["name"] for row in cursor.fetchall()}

    def _migrate_columns(self, conn: sqlite3.Connection) -> None:
        """Add missing columns to tables created by an older schema.

        Only migrates tables that already exist; new tables are handled by
        _create_schema which runs after this method. Patterns gaining the
        ``command`` column have it backfilled from their text.
        """
        for table_name, columns in self._COLUMN_MIGRATIONS.items():
            existing = self._get_existing_columns(conn, table_name)
            if existing is None:
                continue

            for column_name, column_def in columns:
                if column_name in existing:
                    continue
                try:
                    conn.execute(
                        f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_def}"
                    )
                    self._logger.info(
                        "column_added", table=table_name, column=column_name
                    )
                except sqlite3.OperationalError as e:
                    if "duplicate column name" not in str(e).lower():
                        raise

                if table_name == "patterns" and column_name == "command":
                    self._backfill_commands(conn)

    def _backfill_commands(self, conn: sqlite3.Connection) -> None:
        rows = conn.execute(
            "SELECT id, text FROM patterns WHERE command = ''"
        ).fetchall()
        conn.executemany(
            "UPDATE patterns SET command = ? WHERE id = ?",
            [(command_of(row["text"]), row["id"]) for row in rows],
        )
        if rows:
            self._logger.info("commands_backfilled", count=len(rows))

    def clear_all(self) -> None:
        """Clear all data from the store.

        WARNING: This is destructive and should only be used for testing.
        """
        with self._get_connection() as conn:
            conn.execute("DELETE FROM learning_patterns")
            conn.execute("DELETE FROM pattern_validation")
            conn.execute("DELETE FROM pattern_evolution")
            conn.execute("DELETE FROM pattern_usage")
            conn.execute("DELETE FROM patterns")

        _logger.warning("pattern_store_cleared", db_path=str(self.db_path))


__all__ = [
    "PatternStoreBase",
    "SQLParam",
    "WhereBuilder",
    "_logger",
    "now_ms",
]
