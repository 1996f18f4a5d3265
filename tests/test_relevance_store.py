import pytest

from smart_context.domain.errors import SessionNotFound
from smart_context.domain.models.context_models import FileRelationship, RelevanceRecord, TaskMode
from smart_context.infrastructure.storage.relevance_store import _upsert_relevance


@pytest.mark.asyncio
async def test_session_round_trip(store):
    session_id = await store.create_session(
        task_type="feature",
        task_mode=TaskMode.FEATURE,
        task_description="add a settings page",
        included_files=["src/settings.js"],
        excluded_files=["README.md"],
        confidence_scores={"src/settings.js": 0.6},
        total_tokens=420,
        conversation_id="conv-1",
        model_used="claude-3-opus",
    )
    next_id = await store.create_session(
        task_type="feature", task_mode=TaskMode.FEATURE, task_description="again",
        included_files=[], excluded_files=[], confidence_scores={}, total_tokens=0,
    )

    session = await store.get_session(session_id)

    assert next_id > session_id
    assert session.included_files == ["src/settings.js"]
    assert session.excluded_files == ["README.md"]
    assert session.confidence_scores == {"src/settings.js": 0.6}
    assert session.total_tokens == 420
    assert session.task_mode == TaskMode.FEATURE
    assert session.conversation_id == "conv-1"
    assert session.outcome_success is None
    assert not session.has_outcome
    assert session.timestamp is not None


@pytest.mark.asyncio
async def test_missing_session(store):
    with pytest.raises(SessionNotFound):
        await store.get_session(12345)


@pytest.mark.asyncio
async def test_bulk_relevance_lookup(queue, store):
    records = [
        RelevanceRecord(file_path=f"f{i}.js", task_type="debug", task_mode=TaskMode.DEBUG, relevance_score=0.1 * i)
        for i in range(1, 4)
    ]
    other_mode = RelevanceRecord(file_path="f1.js", task_type="debug", task_mode=TaskMode.FEATURE, relevance_score=0.9)

    def op(conn):
        for record in [*records, other_mode]:
            _upsert_relevance(conn, record)

    await queue.transaction(op)

    found = await store.get_relevance_records(["f1.js", "f3.js", "missing.js", "f1.js"], "debug", TaskMode.DEBUG)

    assert set(found) == {"f1.js", "f3.js"}
    assert found["f1.js"].relevance_score == pytest.approx(0.1)
    assert await store.get_relevance_records([], "debug", TaskMode.DEBUG) == {}


@pytest.mark.asyncio
async def test_bulk_lookup_handles_many_paths(queue, store):
    paths = [f"src/file_{i}.py" for i in range(1200)]

    def op(conn):
        for path in paths[::100]:
            _upsert_relevance(conn, RelevanceRecord(file_path=path, task_type="general", task_mode=TaskMode.GENERAL))

    await queue.transaction(op)

    found = await store.get_relevance_records(paths, "general", TaskMode.GENERAL)
    assert len(found) == 12


@pytest.mark.asyncio
async def test_co_changes_are_normalized_and_merged(store):
    assert await store.record_co_changes({("src/b.js", "src/a.js"): 4, ("src/a.js", "src/a.js"): 9}) == 1

    rel = await store.get_relationship("src/a.js", "src/b.js")
    assert (rel.file_a, rel.file_b) == ("src/a.js", "src/b.js")
    assert rel.git_co_change_count == 4
    assert rel.strength == pytest.approx(0.4)
    assert rel.relationship_type == "git-co-change"

    await store.record_co_changes({("src/a.js", "src/b.js"): 6})
    rel = await store.get_relationship("src/b.js", "src/a.js")
    assert rel.git_co_change_count == 6
    assert rel.strength == pytest.approx(0.46)


@pytest.mark.asyncio
async def test_relationships_for_a_file_are_keyed_by_the_other_file(store):
    await store.record_co_changes({("src/a.js", "src/b.js"): 2, ("src/c.js", "src/a.js"): 1, ("src/c.js", "src/d.js"): 1})

    related = await store.get_relationships_for("src/a.js")

    assert set(related) == {"src/b.js", "src/c.js"}
    assert isinstance(related["src/c.js"], FileRelationship)


@pytest.mark.asyncio
async def test_top_files_filters_by_score_and_mode(queue, store):
    def op(conn):
        _upsert_relevance(conn, RelevanceRecord(file_path="a.js", task_type="debug", task_mode=TaskMode.DEBUG, relevance_score=0.9))
        _upsert_relevance(conn, RelevanceRecord(file_path="b.js", task_type="debug", task_mode=TaskMode.DEBUG, relevance_score=0.75))
        _upsert_relevance(conn, RelevanceRecord(file_path="c.js", task_type="debug", task_mode=TaskMode.DEBUG, relevance_score=0.7))
        _upsert_relevance(conn, RelevanceRecord(file_path="d.js", task_type="feature", task_mode=TaskMode.FEATURE, relevance_score=0.95))

    await queue.transaction(op)

    debug = await store.get_top_files(TaskMode.DEBUG)
    everything = await store.get_top_files()

    assert [r.file_path for r in debug] == ["a.js", "b.js"]
    assert [r.file_path for r in everything] == ["d.js", "a.js", "b.js"]
