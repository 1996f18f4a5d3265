"""
Relevance Record Store

Typed access to context sessions, learned file relevance and file
relationships. Every read and write goes through the DurableStoreQueue.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from datetime import datetime
import json
import sqlite3

import structlog

from smart_context.domain.errors import SessionNotFound
from smart_context.domain.models.context_models import (
    ContextSession,
    FileRelationship,
    RelevanceRecord,
    TaskMode,
    UserOverride,
    clamp,
    utcnow,
)
from .durable_queue import DurableStoreQueue

logger = structlog.get_logger(__name__)

# SQLite limits bound parameters per statement
_IN_CHUNK = 500

RelevanceUpdater = Callable[[RelevanceRecord, bool], RelevanceRecord]
RelationshipUpdater = Callable[[Optional[FileRelationship], str, str], FileRelationship]


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _session_from_row(row: Dict[str, Any]) -> ContextSession:
    outcome = row.get("outcome_success")
    return ContextSession(
        id=row["id"],
        conversation_id=row.get("conversation_id"),
        task_type=row["task_type"],
        task_mode=TaskMode(row["task_mode"]),
        task_description=row.get("task_description") or "",
        included_files=json.loads(row.get("included_files") or "[]"),
        excluded_files=json.loads(row.get("excluded_files") or "[]"),
        confidence_scores=json.loads(row.get("confidence_scores") or "{}"),
        outcome_success=None if outcome is None else bool(outcome),
        files_actually_used=json.loads(row.get("files_actually_used") or "[]"),
        total_tokens=row.get("total_tokens") or 0,
        model_used=row.get("model_used"),
        timestamp=_parse_time(row.get("timestamp")),
    )


def _relevance_from_row(row: Dict[str, Any]) -> RelevanceRecord:
    return RelevanceRecord(
        file_path=row["file_path"],
        task_type=row["task_type"],
        task_mode=TaskMode(row["task_mode"]),
        relevance_score=clamp(row["relevance_score"]),
        confidence=clamp(row["confidence"]),
        success_count=row["success_count"],
        total_count=row["total_count"],
        last_updated=_parse_time(row.get("last_updated")),
    )


def _relationship_from_row(row: Dict[str, Any]) -> FileRelationship:
    return FileRelationship(
        file_a=row["file_a"],
        file_b=row["file_b"],
        co_occurrence_count=row.get("co_occurrence_count") or 0,
        git_co_change_count=row.get("git_co_change_count") or 0,
        relationship_type=row.get("relationship_type"),
        strength=clamp(row.get("strength") or 0.0),
    )


def _chunks(items: List[str], size: int = _IN_CHUNK) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _upsert_relevance(conn: sqlite3.Connection, record: RelevanceRecord) -> None:
    conn.execute(
        """
        INSERT INTO file_relevance
            (file_path, task_type, task_mode, relevance_score, confidence,
             success_count, total_count, last_updated)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(file_path, task_type, task_mode) DO UPDATE SET
            relevance_score = excluded.relevance_score,
            confidence = excluded.confidence,
            success_count = excluded.success_count,
            total_count = excluded.total_count,
            last_updated = excluded.last_updated
        """,
        (
            record.file_path,
            record.task_type,
            record.task_mode.value,
            record.relevance_score,
            record.confidence,
            record.success_count,
            record.total_count,
            (record.last_updated or utcnow()).isoformat(),
        ),
    )


def _load_relationship(conn: sqlite3.Connection, file_a: str, file_b: str) -> Optional[FileRelationship]:
    row = conn.execute(
        "SELECT * FROM file_relationships WHERE file_a = ? AND file_b = ?",
        (file_a, file_b),
    ).fetchone()
    return _relationship_from_row(dict(row)) if row is not None else None


def _save_relationship(conn: sqlite3.Connection, rel: FileRelationship) -> None:
    conn.execute(
        """
        INSERT INTO file_relationships
            (file_a, file_b, co_occurrence_count, relationship_type, strength, git_co_change_count)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(file_a, file_b) DO UPDATE SET
            co_occurrence_count = excluded.co_occurrence_count,
            relationship_type = excluded.relationship_type,
            strength = excluded.strength,
            git_co_change_count = excluded.git_co_change_count
        """,
        (rel.file_a, rel.file_b, rel.co_occurrence_count, rel.relationship_type, rel.strength, rel.git_co_change_count),
    )


class RelevanceStore:
    """Persisted sessions, relevance records and relationships"""

    def __init__(self, queue: DurableStoreQueue):
        self.queue = queue

    # ---- relevance records ----

    async def get_relevance_record(self, file_path: str, task_type: str, task_mode: TaskMode) -> Optional[RelevanceRecord]:
        row = await self.queue.get(
            "SELECT * FROM file_relevance WHERE file_path = ? AND task_type = ? AND task_mode = ?",
            (file_path, task_type, task_mode.value),
        )
        return _relevance_from_row(row) if row else None

    async def get_relevance_records(
        self,
        file_paths: List[str],
        task_type: str,
        task_mode: TaskMode,
        timeout: Optional[float] = None,
    ) -> Dict[str, RelevanceRecord]:
        """Bulk lookup of relevance records, keyed by path"""

        paths = list(dict.fromkeys(file_paths))
        if not paths:
            return {}

        def op(conn: sqlite3.Connection):
            rows = []
            for chunk in _chunks(paths):
                placeholders = ",".join("?" for _ in chunk)
                rows.extend(
                    dict(r) for r in conn.execute(
                        f"SELECT * FROM file_relevance WHERE task_type = ? AND task_mode = ? "
                        f"AND file_path IN ({placeholders})",
                        (task_type, task_mode.value, *chunk),
                    ).fetchall()
                )
            return rows

        rows = await self.queue.execute(op, timeout=timeout, name="get_relevance_records")
        return {row["file_path"]: _relevance_from_row(row) for row in rows}

    async def get_top_files(self, task_mode: Optional[TaskMode] = None, min_score: float = 0.7, limit: int = 20) -> List[RelevanceRecord]:
        sql = "SELECT * FROM file_relevance WHERE relevance_score > ?"
        params: List[Any] = [min_score]
        if task_mode is not None:
            sql += " AND task_mode = ?"
            params.append(task_mode.value)
        sql += " ORDER BY relevance_score DESC, confidence DESC, file_path ASC LIMIT ?"
        params.append(limit)

        rows = await self.queue.all(sql, params)
        return [_relevance_from_row(row) for row in rows]

    # ---- relationships ----

    async def get_relationship(self, path_a: str, path_b: str) -> Optional[FileRelationship]:
        file_a, file_b = FileRelationship.normalize_pair(path_a, path_b)
        row = await self.queue.get(
            "SELECT * FROM file_relationships WHERE file_a = ? AND file_b = ?",
            (file_a, file_b),
        )
        return _relationship_from_row(row) if row else None

    async def get_relationships_for(self, file_path: str, timeout: Optional[float] = None) -> Dict[str, FileRelationship]:
        """All relationships touching a file, keyed by the other file"""

        rows = await self.queue.all(
            "SELECT * FROM file_relationships WHERE file_a = ? OR file_b = ?",
            (file_path, file_path),
            timeout=timeout,
        )
        relationships = [_relationship_from_row(row) for row in rows]
        return {rel.other(file_path): rel for rel in relationships}

    async def get_file_relationships(self, file_path: str, relationship_type: str = "all", limit: int = 20) -> List[FileRelationship]:
        sql = "SELECT * FROM file_relationships WHERE (file_a = ? OR file_b = ?)"
        params: List[Any] = [file_path, file_path]
        if relationship_type != "all":
            sql += " AND relationship_type = ?"
            params.append(relationship_type)
        sql += " ORDER BY strength DESC, git_co_change_count DESC, file_a, file_b LIMIT ?"
        params.append(limit)

        rows = await self.queue.all(sql, params)
        return [_relationship_from_row(row) for row in rows]

    async def record_co_changes(self, co_changes: Dict[Tuple[str, str], int]) -> int:
        """Write git co-change counts for file pairs in one transaction"""

        pairs = {FileRelationship.normalize_pair(a, b): count for (a, b), count in co_changes.items() if a != b}
        if not pairs:
            return 0

        def op(conn: sqlite3.Connection):
            for (file_a, file_b), count in pairs.items():
                existing = _load_relationship(conn, file_a, file_b)
                if existing is not None:
                    updated = existing.model_copy(update={
                        "git_co_change_count": count,
                        "strength": clamp(existing.strength + count * 0.01),
                    })
                else:
                    updated = FileRelationship(
                        file_a=file_a,
                        file_b=file_b,
                        git_co_change_count=count,
                        relationship_type="git-co-change",
                        strength=clamp(count * 0.1),
                    )
                _save_relationship(conn, updated)
            return len(pairs)

        return await self.queue.transaction(op, name="record_co_changes")

    # ---- sessions ----

    async def create_session(
        self,
        task_type: str,
        task_mode: TaskMode,
        task_description: str,
        included_files: List[str],
        excluded_files: List[str],
        confidence_scores: Dict[str, float],
        total_tokens: int,
        conversation_id: Optional[str] = None,
        model_used: Optional[str] = None,
    ) -> int:
        """Persist a new context session and return its id"""

        result = await self.queue.run(
            """
            INSERT INTO context_sessions
                (conversation_id, task_type, task_mode, task_description, included_files,
                 excluded_files, confidence_scores, model_used, total_tokens, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conversation_id,
                task_type,
                task_mode.value,
                task_description,
                json.dumps(included_files),
                json.dumps(excluded_files),
                json.dumps(confidence_scores),
                model_used,
                total_tokens,
                utcnow().isoformat(),
            ),
        )
        return int(result.lastrowid)

    async def get_session(self, session_id: int) -> ContextSession:
        row = await self.queue.get("SELECT * FROM context_sessions WHERE id = ?", (session_id,))
        if row is None:
            raise SessionNotFound(session_id)
        return _session_from_row(row)

    async def apply_outcome(
        self,
        session_id: int,
        was_successful: bool,
        files_actually_used: List[str],
        update_relevance: RelevanceUpdater,
        update_relationship: Optional[RelationshipUpdater] = None,
    ) -> Tuple[bool, List[str]]:
        """
        Record a session outcome and the resulting relevance updates as one transaction.

        The outcome columns are only written while still unset, so a repeated
        report matches no row and leaves every record untouched.

        Returns:
            (applied, updated_file_paths)
        """

        used = list(dict.fromkeys(files_actually_used))
        used_set = set(used)

        def op(conn: sqlite3.Connection):
            row = conn.execute("SELECT * FROM context_sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                raise SessionNotFound(session_id)
            session = _session_from_row(dict(row))

            cursor = conn.execute(
                """
                UPDATE context_sessions
                SET outcome_success = ?, files_actually_used = ?
                WHERE id = ? AND outcome_success IS NULL
                """,
                (1 if was_successful else 0, json.dumps(used), session_id),
            )
            if cursor.rowcount == 0:
                return False, []

            updated: List[str] = []
            for file_path in dict.fromkeys(session.included_files):
                existing = conn.execute(
                    "SELECT * FROM file_relevance WHERE file_path = ? AND task_type = ? AND task_mode = ?",
                    (file_path, session.task_type, session.task_mode.value),
                ).fetchone()
                record = (
                    _relevance_from_row(dict(existing)) if existing is not None
                    else RelevanceRecord(file_path=file_path, task_type=session.task_type, task_mode=session.task_mode)
                )
                _upsert_relevance(conn, update_relevance(record, file_path in used_set))
                updated.append(file_path)

            if update_relationship is not None and was_successful and len(used) > 1:
                for i, path_a in enumerate(used):
                    for path_b in used[i + 1:]:
                        file_a, file_b = FileRelationship.normalize_pair(path_a, path_b)
                        existing_rel = _load_relationship(conn, file_a, file_b)
                        _save_relationship(conn, update_relationship(existing_rel, file_a, file_b))

            return True, updated

        return await self.queue.transaction(op, name="apply_outcome")

    async def record_user_override(self, override: UserOverride) -> int:
        def op(conn: sqlite3.Connection):
            exists = conn.execute("SELECT 1 FROM context_sessions WHERE id = ?", (override.session_id,)).fetchone()
            if exists is None:
                raise SessionNotFound(override.session_id)
            cursor = conn.execute(
                """
                INSERT INTO user_overrides (session_id, user_added, user_removed, user_kept, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    override.session_id,
                    json.dumps(override.added),
                    json.dumps(override.removed),
                    json.dumps(override.kept),
                    override.created_at.isoformat(),
                ),
            )
            return cursor.lastrowid

        return await self.queue.transaction(op, name="record_user_override")

    async def get_user_overrides(self, session_id: int) -> List[UserOverride]:
        rows = await self.queue.all(
            "SELECT * FROM user_overrides WHERE session_id = ? ORDER BY id",
            (session_id,),
        )
        return [
            UserOverride(
                session_id=row["session_id"],
                added=json.loads(row["user_added"] or "[]"),
                removed=json.loads(row["user_removed"] or "[]"),
                kept=json.loads(row["user_kept"] or "[]"),
                created_at=_parse_time(row["created_at"]) or utcnow(),
            )
            for row in rows
        ]

    async def get_task_stats(self, task_mode: Optional[TaskMode] = None) -> List[Dict[str, Any]]:
        """Session counts and outcomes grouped by task type and mode"""

        sql = """
            SELECT
                task_type,
                task_mode,
                COUNT(*) AS session_count,
                SUM(CASE WHEN outcome_success IS NOT NULL THEN 1 ELSE 0 END) AS reported_count,
                SUM(CASE WHEN outcome_success = 1 THEN 1 ELSE 0 END) AS success_count,
                AVG(total_tokens) AS avg_tokens,
                COUNT(DISTINCT conversation_id) AS unique_conversations
            FROM context_sessions
        """
        params: List[Any] = []
        if task_mode is not None:
            sql += " WHERE task_mode = ?"
            params.append(task_mode.value)
        sql += " GROUP BY task_type, task_mode ORDER BY task_type, task_mode"

        return await self.queue.all(sql, params)
