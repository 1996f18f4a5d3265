from typing import Any, Dict, Iterable, Optional
from datetime import datetime, timedelta
import asyncio
import json
import sqlite3

import structlog

from smart_context.domain.models.context_models import ConversationState, utcnow

logger = structlog.get_logger(__name__)


def _state_from_row(row: Dict[str, Any]) -> ConversationState:
    return ConversationState(
        conversation_id=row["conversation_id"],
        files_viewed=json.loads(row.get("files_viewed") or "[]"),
        current_task=row.get("current_task"),
        task_progress=json.loads(row.get("task_progress") or "{}"),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _save_state(conn: sqlite3.Connection, state: ConversationState) -> None:
    conn.execute(
        """
        INSERT INTO conversation_context
            (conversation_id, files_viewed, current_task, task_progress, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(conversation_id) DO UPDATE SET
            files_viewed = excluded.files_viewed,
            current_task = excluded.current_task,
            task_progress = excluded.task_progress,
            updated_at = excluded.updated_at
        """,
        (
            state.conversation_id,
            json.dumps(state.files_viewed),
            state.current_task,
            json.dumps(state.task_progress),
            state.created_at.isoformat(),
            state.updated_at.isoformat(),
        ),
    )


class ConversationTracker:
    """Tracks which files each conversation has already seen"""

    def __init__(self, queue):
        self.queue = queue
        self.states: Dict[str, ConversationState] = {}
        self._lock = asyncio.Lock()

    async def get_or_create(self, conversation_id: str, current_task: Optional[str] = None) -> ConversationState:
        """Get the state for a conversation, creating it on first use"""

        async with self._lock:
            state = self.states.get(conversation_id)
            if state is None:
                row = await self.queue.get(
                    "SELECT * FROM conversation_context WHERE conversation_id = ?",
                    (conversation_id,),
                )
                if row is not None:
                    state = _state_from_row(row)
                else:
                    state = ConversationState(conversation_id=conversation_id, current_task=current_task)
                    await self.queue.transaction(lambda conn: _save_state(conn, state), name="create_conversation")
                    logger.debug("Created conversation", conversation_id=conversation_id)
                self.states[conversation_id] = state
            return state.model_copy(deep=True)

    async def mark_files_viewed(self, conversation_id: str, paths: Iterable[str]) -> ConversationState:
        await self.get_or_create(conversation_id)

        async with self._lock:
            state = self.states[conversation_id]
            viewed = list(dict.fromkeys([*state.files_viewed, *paths]))
            updated = state.model_copy(update={"files_viewed": viewed, "updated_at": utcnow()})
            await self.queue.transaction(lambda conn: _save_state(conn, updated), name="mark_files_viewed")
            self.states[conversation_id] = updated
            return updated.model_copy(deep=True)

    async def update_task_progress(
        self,
        conversation_id: str,
        progress: Dict[str, Any],
        current_task: Optional[str] = None,
    ) -> ConversationState:
        await self.get_or_create(conversation_id)

        async with self._lock:
            state = self.states[conversation_id]
            changes: Dict[str, Any] = {
                "task_progress": {**state.task_progress, **progress},
                "updated_at": utcnow(),
            }
            if current_task is not None:
                changes["current_task"] = current_task
            updated = state.model_copy(update=changes)
            await self.queue.transaction(lambda conn: _save_state(conn, updated), name="update_task_progress")
            self.states[conversation_id] = updated
            return updated.model_copy(deep=True)

    async def cleanup_old_conversations(self, max_age_hours: int = 24) -> int:
        """Forget conversations idle for longer than max_age_hours"""

        cutoff = (utcnow() - timedelta(hours=max_age_hours)).isoformat()

        async with self._lock:
            def op(conn: sqlite3.Connection) -> int:
                return conn.execute(
                    "DELETE FROM conversation_context WHERE updated_at < ?", (cutoff,)
                ).rowcount

            removed = await self.queue.transaction(op, name="cleanup_conversations")
            stale = [cid for cid, state in self.states.items() if state.updated_at.isoformat() < cutoff]
            for cid in stale:
                del self.states[cid]

        if removed:
            logger.info("Cleaned up old conversations", removed=removed, max_age_hours=max_age_hours)
        return removed
