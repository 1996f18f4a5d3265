"""
Embedded SQLite store

The live database is kept in memory and periodically copied to a snapshot
file with the SQLite online backup API. All methods here are synchronous and
must only be called from the store queue's database thread.
"""

from typing import Optional
from pathlib import Path
import os
import sqlite3

import structlog

logger = structlog.get_logger(__name__)

MEMORY_PATH = ":memory:"

SCHEMA = {
    "context_sessions": """
        CREATE TABLE IF NOT EXISTS context_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            conversation_id TEXT,
            task_type TEXT NOT NULL,
            task_mode TEXT NOT NULL,
            task_description TEXT,
            included_files TEXT NOT NULL,
            excluded_files TEXT,
            confidence_scores TEXT,
            outcome_success INTEGER DEFAULT NULL,
            files_actually_used TEXT,
            model_used TEXT,
            total_tokens INTEGER DEFAULT 0,
            timestamp TEXT NOT NULL
        )
    """,
    "file_relevance": """
        CREATE TABLE IF NOT EXISTS file_relevance (
            file_path TEXT NOT NULL,
            task_type TEXT NOT NULL,
            task_mode TEXT NOT NULL,
            relevance_score REAL DEFAULT 0.5,
            confidence REAL DEFAULT 0.5,
            success_count INTEGER DEFAULT 0,
            total_count INTEGER DEFAULT 0,
            last_updated TEXT,
            PRIMARY KEY (file_path, task_type, task_mode)
        )
    """,
    "file_relationships": """
        CREATE TABLE IF NOT EXISTS file_relationships (
            file_a TEXT NOT NULL,
            file_b TEXT NOT NULL,
            co_occurrence_count INTEGER DEFAULT 0,
            relationship_type TEXT,
            strength REAL DEFAULT 0.0,
            git_co_change_count INTEGER DEFAULT 0,
            PRIMARY KEY (file_a, file_b)
        )
    """,
    "conversation_context": """
        CREATE TABLE IF NOT EXISTS conversation_context (
            conversation_id TEXT PRIMARY KEY,
            files_viewed TEXT,
            current_task TEXT,
            task_progress TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "user_overrides": """
        CREATE TABLE IF NOT EXISTS user_overrides (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id INTEGER NOT NULL,
            user_added TEXT,
            user_removed TEXT,
            user_kept TEXT,
            created_at TEXT NOT NULL
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_context_sessions_conversation ON context_sessions(conversation_id)",
    "CREATE INDEX IF NOT EXISTS idx_context_sessions_timestamp ON context_sessions(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_file_relevance_mode ON file_relevance(task_mode, relevance_score)",
    "CREATE INDEX IF NOT EXISTS idx_file_relationships_b ON file_relationships(file_b)",
    "CREATE INDEX IF NOT EXISTS idx_user_overrides_session ON user_overrides(session_id)",
]


class EmbeddedDatabase:
    """In-memory SQLite database backed by a snapshot file"""

    def __init__(self, path: str = MEMORY_PATH):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_persistent(self) -> bool:
        return self.path != MEMORY_PATH

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not open")
        return self._conn

    def open(self) -> sqlite3.Connection:
        """Create the live database, restoring the last snapshot if present"""

        if self._conn is not None:
            return self._conn

        conn = sqlite3.connect(MEMORY_PATH, check_same_thread=False)
        conn.row_factory = sqlite3.Row

        snapshot = Path(self.path)
        if self.is_persistent and snapshot.exists():
            source = sqlite3.connect(str(snapshot))
            try:
                source.backup(conn)
            finally:
                source.close()
            logger.info("Loaded database snapshot", path=self.path)
        else:
            logger.info("Created new database", persistent=self.is_persistent)

        self._conn = conn
        self._create_tables()
        return conn

    def _create_tables(self) -> None:
        conn = self.connection
        with conn:
            for name, sql in SCHEMA.items():
                conn.execute(sql)
                logger.debug("Created/verified table", table=name)
            for sql in INDEXES:
                conn.execute(sql)

    def snapshot(self) -> bool:
        """Copy the live database to the snapshot file atomically"""

        if not self.is_persistent or self._conn is None:
            return False

        target = Path(self.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(target.name + ".tmp")

        dest = sqlite3.connect(str(tmp_path))
        try:
            self._conn.backup(dest)
        finally:
            dest.close()
        os.replace(tmp_path, target)

        logger.debug("Database snapshot written", path=self.path)
        return True

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
