import asyncio

import pytest

from smart_context.domain.context.relevance_scorer import (
    RelevanceScorer,
    file_stem,
    has_import_relationship,
    path_similarity,
)
from smart_context.domain.models.context_models import (
    ConversationState,
    FileRecord,
    QueryAnalysis,
    RelevanceRecord,
    TaskMode,
)
from smart_context.infrastructure.config import ContextConfig
from smart_context.infrastructure.storage.relevance_store import _upsert_relevance

from conftest import FakeRecency, FakeSimilarity

QUERY = QueryAnalysis(original="fix it")


def make_scorer(store=None, similarity=None, recency=None, **config):
    return RelevanceScorer(
        store,
        similarity=similarity or FakeSimilarity(),
        recency=recency,
        config=ContextConfig(**config),
    )


# =============================================================================
# HELPERS
# =============================================================================

def test_file_stem_strips_directories_and_extension():
    assert file_stem("src/utils/helper.js") == "helper"
    assert file_stem("./helper") == "helper"
    assert file_stem("Helper.tsx") == "Helper"


def test_import_relationship_matches_stems_in_either_direction():
    app = FileRecord(path="src/app.js", imports=["./utils/helper"])
    helper = FileRecord(path="src/utils/helper.js")
    other = FileRecord(path="src/other.js")

    assert has_import_relationship(app, helper)
    assert has_import_relationship(helper, app)
    assert not has_import_relationship(app, other)
    assert not has_import_relationship(None, helper)


def test_import_relationship_is_case_sensitive():
    app = FileRecord(path="src/app.js", imports=["./Helper"])
    helper = FileRecord(path="src/helper.js")
    assert not has_import_relationship(app, helper)


def test_import_relationship_counts_exports():
    app = FileRecord(path="src/app.js", imports=["validators"])
    forms = FileRecord(path="src/forms.js", exports=["validators"])
    assert has_import_relationship(app, forms)


def test_path_similarity_counts_shared_leading_directories():
    assert path_similarity("src/components/TaskList.js", "src/components/TaskItem.js") == pytest.approx(2 / 3)
    assert path_similarity("src/app.js", "src/utils/helper.js") == pytest.approx(1 / 3)
    assert path_similarity("a/x.js", "b/x.js") == 0.0


# =============================================================================
# SCORING SIGNALS
# =============================================================================

@pytest.mark.asyncio
async def test_base_score_without_signals():
    scorer = make_scorer()
    files = [FileRecord(path="docs/guide.md")]

    scored = await scorer.score(QUERY, files, progressive_level=2)

    result = scored["docs/guide.md"]
    assert result.score == pytest.approx(0.1)
    assert result.confidence == pytest.approx(0.5)
    assert result.reasons == []


@pytest.mark.asyncio
async def test_viewed_file_is_dropped_at_level_one():
    scorer = make_scorer(similarity=FakeSimilarity({"src/a.js": 1.0}))
    conversation = ConversationState(conversation_id="c1", files_viewed=["src/a.js"])
    files = [FileRecord(path="src/a.js")]

    scored = await scorer.score(QUERY, files, conversation=conversation, progressive_level=1)

    assert "src/a.js" not in scored


@pytest.mark.asyncio
async def test_viewed_file_is_discounted_at_higher_levels():
    scorer = make_scorer()
    conversation = ConversationState(conversation_id="c1", files_viewed=["src/a.js"])

    scored = await scorer.score(QUERY, [FileRecord(path="src/a.js")], conversation=conversation, progressive_level=2)

    assert scored["src/a.js"].score == pytest.approx(0.05)
    assert scored["src/a.js"].reasons == ["Already viewed in conversation"]


@pytest.mark.asyncio
async def test_semantic_similarity_adds_score_and_confidence():
    scorer = make_scorer(similarity=FakeSimilarity({"src/a.js": 0.4}))

    scored = await scorer.score(QUERY, [FileRecord(path="src/a.js")], progressive_level=2)

    assert scored["src/a.js"].score == pytest.approx(0.2)
    assert scored["src/a.js"].confidence == pytest.approx(0.6)
    assert scored["src/a.js"].reasons == ["Semantic match (40%)"]


@pytest.mark.asyncio
async def test_historical_relevance_above_half_counts(queue, store):
    record = RelevanceRecord(
        file_path="src/a.js", task_type="general", task_mode=TaskMode.GENERAL,
        relevance_score=0.9, confidence=0.8,
    )
    await queue.transaction(lambda conn: _upsert_relevance(conn, record))
    scorer = make_scorer(store=store)

    scored = await scorer.score(
        QUERY, [FileRecord(path="src/a.js"), FileRecord(path="src/b.js")], progressive_level=2,
    )

    assert scored["src/a.js"].score == pytest.approx(0.28)
    assert scored["src/a.js"].confidence == pytest.approx(0.8)
    assert scored["src/a.js"].reasons == ["Historical relevance (90%)"]
    # Missing records use the 0.5 default, which does not clear the bar
    assert scored["src/b.js"].score == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_debug_mode_rewards_recent_and_error_files():
    recency = FakeRecency(recent=["src/errorHandler.js"])
    scorer = make_scorer(recency=recency)

    scored = await scorer.score(
        QUERY, [FileRecord(path="src/errorHandler.js")], task_mode=TaskMode.DEBUG, progressive_level=2,
    )

    assert scored["src/errorHandler.js"].score == pytest.approx(0.6)
    assert scored["src/errorHandler.js"].reasons == ["Recently modified", "Error handling file"]
    assert recency.calls == [("src/errorHandler.js", 48)]


@pytest.mark.asyncio
async def test_recency_only_consulted_in_debug_mode():
    recency = FakeRecency(recent=["src/a.js"])
    scorer = make_scorer(recency=recency)

    await scorer.score(QUERY, [FileRecord(path="src/a.js")], task_mode=TaskMode.FEATURE, progressive_level=2)

    assert recency.calls == []


@pytest.mark.asyncio
async def test_feature_mode_matches_concepts_in_path():
    query = QueryAnalysis(original="add login", concepts=["authentication"])
    scorer = make_scorer()

    scored = await scorer.score(
        query,
        [FileRecord(path="src/Authentication/provider.js"), FileRecord(path="src/ui/button.js")],
        task_mode=TaskMode.FEATURE,
        progressive_level=2,
    )

    assert scored["src/Authentication/provider.js"].score == pytest.approx(0.4)
    assert scored["src/Authentication/provider.js"].reasons == ["Similar feature pattern"]
    assert scored["src/ui/button.js"].score == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_import_relationship_in_general_and_refactor_mode():
    files = [
        FileRecord(path="src/app.js", imports=["./utils/helper"]),
        FileRecord(path="src/utils/helper.js"),
    ]
    scorer = make_scorer()

    general = await scorer.score(QUERY, files, current_file="src/app.js", progressive_level=2)
    refactor = await scorer.score(
        QUERY, files, current_file="src/app.js", task_mode=TaskMode.REFACTOR, progressive_level=2,
    )

    assert general["src/utils/helper.js"].score == pytest.approx(0.35)
    assert general["src/utils/helper.js"].reasons == ["Import relationship"]
    assert refactor["src/utils/helper.js"].score == pytest.approx(0.75)
    assert refactor["src/utils/helper.js"].reasons == ["Direct dependency", "Import relationship"]


@pytest.mark.asyncio
async def test_git_co_change_with_current_file(store):
    await store.record_co_changes({("src/a.js", "src/b.js"): 5})
    scorer = make_scorer(store=store)

    scored = await scorer.score(
        QUERY, [FileRecord(path="src/a.js"), FileRecord(path="src/b.js")],
        current_file="src/a.js", progressive_level=2,
    )

    assert scored["src/b.js"].score == pytest.approx(0.175)
    assert scored["src/b.js"].reasons == ["Frequently changed together (50%)"]


@pytest.mark.asyncio
async def test_path_similarity_needs_current_file():
    files = [FileRecord(path="src/components/TaskList.js"), FileRecord(path="src/components/TaskItem.js")]
    scorer = make_scorer()

    with_current = await scorer.score(QUERY, files, current_file="src/components/TaskList.js", progressive_level=2)
    without = await scorer.score(QUERY, files, progressive_level=2)

    assert with_current["src/components/TaskItem.js"].score == pytest.approx(0.1 + (2 / 3) * 0.1)
    assert "Same directory/feature" in with_current["src/components/TaskItem.js"].reasons
    assert without["src/components/TaskItem.js"].score == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_progressive_cutoff_at_level_one():
    files = [
        FileRecord(path="src/app.js", imports=["./helper"]),
        FileRecord(path="src/helper.js"),
        FileRecord(path="docs/guide.md"),
    ]
    scorer = make_scorer()

    kept, held_back = await scorer.score_with_held_back(
        QUERY, files, current_file="src/app.js", task_mode=TaskMode.REFACTOR, progressive_level=1,
    )

    # the current file stays even though it scores below the cutoff
    assert list(kept) == ["src/app.js", "src/helper.js"]
    assert list(held_back) == ["docs/guide.md"]
    assert held_back["docs/guide.md"].score == pytest.approx(0.1)
    assert list(await scorer.score(QUERY, files, current_file="src/app.js", progressive_level=1)) == ["src/app.js"]


@pytest.mark.asyncio
async def test_nothing_is_held_back_above_level_one():
    scorer = make_scorer()

    kept, held_back = await scorer.score_with_held_back(QUERY, [FileRecord(path="docs/guide.md")], progressive_level=2)

    assert list(kept) == ["docs/guide.md"]
    assert held_back == {}


@pytest.mark.asyncio
async def test_viewed_current_file_is_kept_at_level_one():
    scorer = make_scorer()
    conversation = ConversationState(conversation_id="c1", files_viewed=["src/a.js", "src/b.js"])
    files = [FileRecord(path="src/a.js"), FileRecord(path="src/b.js")]

    kept, held_back = await scorer.score_with_held_back(
        QUERY, files, conversation=conversation, current_file="src/a.js", progressive_level=1,
    )

    assert list(kept) == ["src/a.js"]
    assert kept["src/a.js"].reasons[0] == "Already viewed in conversation"
    assert held_back == {}


@pytest.mark.asyncio
async def test_progressive_cutoff_is_configurable():
    scorer = make_scorer(progressive_cutoff=0.05)

    scored = await scorer.score(QUERY, [FileRecord(path="docs/guide.md")], progressive_level=1)

    assert "docs/guide.md" in scored


# =============================================================================
# INVARIANTS AND FAILURES
# =============================================================================

@pytest.mark.asyncio
async def test_scores_and_confidence_are_clamped(queue, store):
    record = RelevanceRecord(
        file_path="src/errorHandler.js", task_type="general", task_mode=TaskMode.REFACTOR,
        relevance_score=1.0, confidence=1.0,
    )
    await queue.transaction(lambda conn: _upsert_relevance(conn, record))
    await store.record_co_changes({("src/app.js", "src/errorHandler.js"): 40})
    files = [
        FileRecord(path="src/app.js", imports=["./errorHandler"]),
        FileRecord(path="src/errorHandler.js"),
    ]
    scorer = make_scorer(store=store, similarity=FakeSimilarity({"src/errorHandler.js": 1.0}))

    scored = await scorer.score(
        QUERY, files, current_file="src/app.js", task_mode=TaskMode.REFACTOR, progressive_level=3,
    )

    for result in scored.values():
        assert 0.0 <= result.score <= 1.0
        assert 0.0 <= result.confidence <= 1.0
    assert scored["src/errorHandler.js"].score == 1.0


@pytest.mark.asyncio
async def test_result_keeps_candidate_order():
    files = [FileRecord(path=p) for p in ("z.js", "a.js", "m.js")]
    scorer = make_scorer(similarity=FakeSimilarity({"a.js": 1.0}))

    scored = await scorer.score(QUERY, files, progressive_level=3)

    assert list(scored) == ["z.js", "a.js", "m.js"]


@pytest.mark.asyncio
async def test_failing_signals_contribute_nothing():
    scorer = make_scorer(
        similarity=FakeSimilarity({"src/a.js": 0.8}, fail_for=["src/a.js"]),
        recency=FakeRecency(fail=True),
    )

    scored = await scorer.score(QUERY, [FileRecord(path="src/a.js")], task_mode=TaskMode.DEBUG, progressive_level=2)

    assert scored["src/a.js"].score == pytest.approx(0.1)
    assert scored["src/a.js"].reasons == []


@pytest.mark.asyncio
async def test_slow_signal_times_out():
    scorer = make_scorer(similarity=FakeSimilarity({"src/a.js": 0.8}, delay=0.5), signal_timeout_seconds=0.05)

    scored = await asyncio.wait_for(
        scorer.score(QUERY, [FileRecord(path="src/a.js")], progressive_level=2),
        timeout=2.0,
    )

    assert scored["src/a.js"].score == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_store_unavailable_falls_back_to_defaults(queue, store):
    await queue.close()
    scorer = make_scorer(store=store, similarity=FakeSimilarity({"src/a.js": 0.4}))

    scored = await scorer.score(QUERY, [FileRecord(path="src/a.js")], current_file="src/a.js", progressive_level=2)

    assert scored["src/a.js"].score == pytest.approx(0.2)
