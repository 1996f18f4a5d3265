from datetime import timedelta

import pytest

from smart_context.domain.context.state.conversation_tracker import ConversationTracker
from smart_context.domain.models.context_models import utcnow


@pytest.mark.asyncio
async def test_get_or_create_persists_new_conversation(queue):
    tracker = ConversationTracker(queue)

    state = await tracker.get_or_create("conv-1", current_task="fix login")

    assert state.conversation_id == "conv-1"
    assert state.current_task == "fix login"
    assert state.files_viewed == []
    row = await queue.get("SELECT * FROM conversation_context WHERE conversation_id = ?", ("conv-1",))
    assert row["current_task"] == "fix login"


@pytest.mark.asyncio
async def test_mark_files_viewed_deduplicates_and_survives_reload(queue):
    tracker = ConversationTracker(queue)
    await tracker.mark_files_viewed("conv-1", ["a.js", "b.js"])
    await tracker.mark_files_viewed("conv-1", ["b.js", "c.js"])

    reloaded = await ConversationTracker(queue).get_or_create("conv-1")

    assert reloaded.files_viewed == ["a.js", "b.js", "c.js"]
    assert reloaded.has_viewed("c.js")


@pytest.mark.asyncio
async def test_returned_state_is_a_copy(queue):
    tracker = ConversationTracker(queue)
    state = await tracker.get_or_create("conv-1")
    state.files_viewed.append("sneaky.js")

    assert (await tracker.get_or_create("conv-1")).files_viewed == []


@pytest.mark.asyncio
async def test_update_task_progress_merges(queue):
    tracker = ConversationTracker(queue)
    await tracker.update_task_progress("conv-1", {"step": 1})
    state = await tracker.update_task_progress("conv-1", {"done": ["parse"]}, current_task="refactor parser")

    assert state.task_progress == {"step": 1, "done": ["parse"]}
    assert state.current_task == "refactor parser"


@pytest.mark.asyncio
async def test_cleanup_removes_idle_conversations(queue):
    tracker = ConversationTracker(queue)
    await tracker.get_or_create("fresh")
    stale_time = (utcnow() - timedelta(hours=30)).isoformat()
    await queue.run(
        "INSERT INTO conversation_context (conversation_id, files_viewed, task_progress, created_at, updated_at) "
        "VALUES (?, '[]', '{}', ?, ?)",
        ("stale", stale_time, stale_time),
    )
    await tracker.get_or_create("stale")

    removed = await tracker.cleanup_old_conversations(max_age_hours=24)

    assert removed == 1
    remaining = await queue.all("SELECT conversation_id FROM conversation_context")
    assert remaining == [{"conversation_id": "fresh"}]
    assert "stale" not in tracker.states
