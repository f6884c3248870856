"""SQLite storage layer for decisions and decision memory.

This module persists decisions, their message history, cited sources,
per-decision runtime state, completed decision records and small app-level
key/value state (such as the active decision pointer). It also implements
memory search over completed decisions.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from decision_store.schema import (Decision, DecisionRecord, MemoryMatch,
                                   Message, Source, utcnow)
from models.schema import RuntimeState
from workflow.intake import normalize_runtime_state

logger = logging.getLogger(__name__)

ACTIVE_DECISION_KEY = "active_decision_id"
ACTIVE_PROVIDER_KEY = "active_provider"

MEMORY_SEARCH_WINDOW = 50
MEMORY_SNIPPET_CHARS = 220
SOURCE_READ_WINDOW = 30

_REQUIRED_TABLES = {
    "decisions",
    "messages",
    "sources",
    "decision_runtime",
    "decision_records",
    "app_state",
}


class DecisionStore:
    """SQLite storage for the decision workflow.

    Provides persistence for:
    - Decision: one decision thread and its lifecycle status
    - Message: append-only conversation history per decision
    - Source: cited pages per decision
    - RuntimeState: workflow state, replaced atomically on every write
    - DecisionRecord: the immutable summary written at completion

    Supports both file-based and in-memory databases for testing.
    """

    def __init__(self, db_path: str = "claritycheck.db"):
        """Initialize storage with SQLite database.

        Args:
            db_path: Path to SQLite database file. Use ":memory:" for in-memory database.

        Raises:
            RuntimeError: If database initialization or schema verification fails.
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            _ = self.conn
            self._initialize_db()

            if not self._verify_schema():
                raise RuntimeError(
                    f"Database schema verification failed for {db_path}. "
                    "Tables may not have been created properly."
                )

            logger.info(f"Initialized DecisionStore at {db_path}")

        except Exception as e:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

            # Clean up an empty file left behind by a failed first open
            if db_path != ":memory:" and os.path.exists(db_path):
                if os.path.getsize(db_path) == 0:
                    logger.warning(f"Removing empty database file: {db_path}")
                    os.remove(db_path)

            logger.error(
                f"Failed to initialize DecisionStore at {db_path}: {e}", exc_info=True
            )
            raise RuntimeError(
                f"Database initialization failed: {e}. "
                "Check logs and file permissions."
            ) from e

    @property
    def conn(self) -> sqlite3.Connection:
        """Get database connection, creating if needed."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.row_factory = sqlite3.Row
        return self._conn

    @contextmanager
    def transaction(self):
        """Context manager for database transactions with automatic rollback on error."""
        conn = self.conn
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
            raise

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS decisions (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    user_goal TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    decision_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (decision_id) REFERENCES decisions(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sources (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    decision_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    url TEXT NOT NULL,
                    fetched_at TEXT NOT NULL,
                    FOREIGN KEY (decision_id) REFERENCES decisions(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS decision_runtime (
                    decision_id TEXT PRIMARY KEY,
                    state_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (decision_id) REFERENCES decisions(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS decision_records (
                    decision_id TEXT PRIMARY KEY,
                    record_json TEXT NOT NULL,
                    search_blob TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (decision_id) REFERENCES decisions(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_messages_decision
                ON messages(decision_id, id)
            """
            )

            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_sources_decision
                ON sources(decision_id, id)
            """
            )

            # Memory search scans the most recently completed decisions
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_decisions_status_completed
                ON decisions(status, completed_at DESC)
            """
            )

    def _verify_schema(self) -> bool:
        """Verify that the database schema was properly created.

        Returns:
            True if all required tables exist, False otherwise.
        """
        cursor = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        )
        tables = {row[0] for row in cursor.fetchall()}
        missing = _REQUIRED_TABLES - tables
        if missing:
            logger.error(f"Missing required tables: {missing}")
            return False
        return True

    # Decisions

    def create_decision(
        self, title: str, user_goal: str = "", make_active: bool = True
    ) -> Decision:
        """Create a new active decision.

        Args:
            title: Short title (blank titles become "Untitled decision")
            user_goal: Goal text the decision started from
            make_active: Also point the active decision at the new one

        Returns:
            The created Decision
        """
        decision = Decision(
            title=title.strip() or "Untitled decision", user_goal=user_goal.strip()
        )
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO decisions (id, title, user_goal, status, created_at, completed_at)
                VALUES (?, ?, ?, ?, ?, NULL)
                """,
                (
                    decision.id,
                    decision.title,
                    decision.user_goal,
                    decision.status,
                    decision.created_at.isoformat(),
                ),
            )
            if make_active:
                self._set_app_state(conn, ACTIVE_DECISION_KEY, decision.id)
        logger.info(f"Created decision {decision.id}: {decision.title!r}")
        return decision

    def get_decision(self, decision_id: str) -> Optional[Decision]:
        row = self.conn.execute(
            """
            SELECT id, title, user_goal, status, created_at, completed_at
            FROM decisions WHERE id = ?
            """,
            (decision_id,),
        ).fetchone()
        if row is None:
            logger.debug(f"Decision {decision_id} not found")
            return None
        return self._row_to_decision(row)

    def list_decisions(
        self, status: Optional[str] = None, limit: int = 20, offset: int = 0
    ) -> List[Decision]:
        """List decisions, newest first, optionally filtered by status."""
        query = """
            SELECT id, title, user_goal, status, created_at, completed_at
            FROM decisions
        """
        params: list = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self.conn.execute(query, params).fetchall()
        return [self._row_to_decision(row) for row in rows]

    # Messages

    def add_message(self, decision_id: str, role: str, content: str) -> Message:
        message = Message(decision_id=decision_id, role=role, content=content)
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO messages (decision_id, role, content, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (decision_id, role, content, message.created_at.isoformat()),
            )
            message.id = cursor.lastrowid
        return message

    def get_messages(self, decision_id: str, limit: int = 80) -> List[Message]:
        """Return the most recent ``limit`` messages in chronological order."""
        rows = self.conn.execute(
            """
            SELECT id, decision_id, role, content, created_at
            FROM messages
            WHERE decision_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (decision_id, limit),
        ).fetchall()
        return [self._row_to_message(row) for row in reversed(rows)]

    # Sources

    def add_source(self, decision_id: str, title: str, url: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sources (decision_id, title, url, fetched_at)
                VALUES (?, ?, ?, ?)
                """,
                (decision_id, title or url, url, utcnow().isoformat()),
            )

    def get_sources(self, decision_id: str, limit: int = 10) -> List[Source]:
        """Most recent sources for a decision, deduplicated by URL."""
        rows = self.conn.execute(
            """
            SELECT decision_id, title, url, fetched_at
            FROM sources
            WHERE decision_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (decision_id, SOURCE_READ_WINDOW),
        ).fetchall()

        seen = set()
        sources: List[Source] = []
        for row in rows:
            if row["url"] in seen:
                continue
            seen.add(row["url"])
            sources.append(
                Source(
                    decision_id=row["decision_id"],
                    title=row["title"],
                    url=row["url"],
                    fetched_at=datetime.fromisoformat(row["fetched_at"]),
                )
            )
        return sources[:limit]

    # Runtime state

    def get_runtime_state(self, decision_id: str, create: bool = True) -> RuntimeState:
        """Load the decision's runtime state, creating a default one if absent.

        With create=False a missing state is returned without being written.

        Raises:
            ValueError: If the decision does not exist
        """
        decision = self.get_decision(decision_id)
        if decision is None:
            raise ValueError(f"Decision not found: {decision_id}")

        row = self.conn.execute(
            "SELECT state_json FROM decision_runtime WHERE decision_id = ?",
            (decision_id,),
        ).fetchone()

        if row is None:
            state = normalize_runtime_state(None, decision.user_goal)
            if create:
                self.save_runtime_state(decision_id, state)
            return state

        try:
            raw = json.loads(row["state_json"])
        except json.JSONDecodeError:
            logger.warning(
                f"Corrupt runtime state for decision {decision_id}; resetting"
            )
            raw = None
        return normalize_runtime_state(
            raw if isinstance(raw, dict) else None, decision.user_goal
        )

    def save_runtime_state(self, decision_id: str, state: RuntimeState) -> None:
        """Replace the decision's runtime state in a single write."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO decision_runtime (decision_id, state_json, updated_at)
                VALUES (?, ?, ?)
                """,
                (decision_id, state.model_dump_json(), utcnow().isoformat()),
            )
        logger.debug(f"Saved runtime state for {decision_id} (stage={state.stage})")

    # Completion and memory

    def complete_decision(self, record: DecisionRecord) -> None:
        """Mark a decision completed and store its record.

        Source rows are left untouched; the record carries its own source
        list. Runs in one transaction.

        Raises:
            ValueError: If the decision does not exist
        """
        if self.get_decision(record.decision_id) is None:
            raise ValueError(f"Decision not found: {record.decision_id}")

        completed_at = record.completed_at.isoformat()
        with self.transaction() as conn:
            conn.execute(
                "UPDATE decisions SET status = 'completed', completed_at = ? WHERE id = ?",
                (completed_at, record.decision_id),
            )
            conn.execute(
                """
                INSERT OR REPLACE INTO decision_records (
                    decision_id, record_json, search_blob, created_at
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    record.decision_id,
                    record.model_dump_json(),
                    record.search_blob(),
                    completed_at,
                ),
            )
        logger.info(f"Completed decision {record.decision_id}")

    def get_decision_record(self, decision_id: str) -> Optional[DecisionRecord]:
        row = self.conn.execute(
            "SELECT record_json FROM decision_records WHERE decision_id = ?",
            (decision_id,),
        ).fetchone()
        if row is None:
            return None
        return DecisionRecord.model_validate_json(row["record_json"])

    def search_memories(self, query: str, limit: int = 3) -> List[MemoryMatch]:
        """Find completed decisions whose text contains the query terms.

        Scores each of the 50 most recently completed decisions by how many
        lowercase query terms appear in its search blob.

        Args:
            query: Free-text query
            limit: Maximum number of matches (default: 3)

        Returns:
            Matches with score > 0, best first
        """
        terms = query.strip().lower().split()
        if not terms:
            return []

        rows = self.conn.execute(
            """
            SELECT d.id AS decision_id, d.title AS title,
                   d.completed_at AS completed_at, r.search_blob AS search_blob
            FROM decisions d
            JOIN decision_records r ON r.decision_id = d.id
            WHERE d.status = 'completed'
            ORDER BY d.completed_at DESC
            LIMIT ?
            """,
            (MEMORY_SEARCH_WINDOW,),
        ).fetchall()

        scored = []
        for row in rows:
            score = sum(1 for term in terms if term in row["search_blob"])
            if score > 0:
                scored.append((score, row))
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            MemoryMatch(
                decision_id=row["decision_id"],
                title=row["title"],
                completed_at=row["completed_at"],
                score=score,
                snippet=row["search_blob"][:MEMORY_SNIPPET_CHARS],
            )
            for score, row in scored[:limit]
        ]

    # App state

    def get_app_state(self, key: str) -> Optional[str]:
        row = self.conn.execute(
            "SELECT value FROM app_state WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_app_state(self, key: str, value: Optional[str]) -> None:
        """Set an app-level value; None deletes the key."""
        with self.transaction() as conn:
            self._set_app_state(conn, key, value)

    def _set_app_state(
        self, conn: sqlite3.Connection, key: str, value: Optional[str]
    ) -> None:
        if value is None:
            conn.execute("DELETE FROM app_state WHERE key = ?", (key,))
            return
        conn.execute(
            """
            INSERT OR REPLACE INTO app_state (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            (key, value, utcnow().isoformat()),
        )

    def get_active_decision_id(self) -> Optional[str]:
        return self.get_app_state(ACTIVE_DECISION_KEY)

    def set_active_decision_id(self, decision_id: Optional[str]) -> None:
        self.set_app_state(ACTIVE_DECISION_KEY, decision_id)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug(f"Closed database connection to {self.db_path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _row_to_decision(self, row: sqlite3.Row) -> Decision:
        return Decision(
            id=row["id"],
            title=row["title"],
            user_goal=row["user_goal"],
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"])
                if row["completed_at"]
                else None
            ),
        )

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            decision_id=row["decision_id"],
            role=row["role"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


