import pytest

from smart_context.domain.models.context_models import TaskMode
from smart_context.domain.signals.query_analyzer import KeywordQueryAnalyzer, stem


@pytest.fixture
def analyzer():
    return KeywordQueryAnalyzer()


def test_stem_strips_common_suffixes():
    assert stem("loading") == "load"
    assert stem("failed") == "fail"
    assert stem("tokens") == "token"
    assert stem("is") == "is"


def test_analyze_extracts_tokens_concepts_and_entities(analyzer):
    analysis = analyzer.analyze("Fix the login error in auth.js when validateToken() fails")

    assert "the" not in analysis.tokens
    assert "login" in analysis.tokens
    assert {"authentication", "error"} <= set(analysis.concepts)
    assert analysis.intent == "fix"
    assert analysis.entities.functions == ["validateToken"]
    assert analysis.entities.files == ["auth.js"]
    assert "validateToken" in analysis.function_hints
    assert analysis.file_hints == ["auth.js"]


def test_error_messages_are_extracted(analyzer):
    analysis = analyzer.analyze("Getting TypeError: cannot read property id of undefined")
    assert analysis.entities.errors == ["cannot read property id of undefined"]


@pytest.mark.parametrize(
    "task, intent",
    [
        ("How does the cache work", "understand"),
        ("Add a dark mode toggle", "implement"),
        ("Fix crash on startup", "fix"),
        ("Refactor the billing module", "modify"),
        ("Optimize image loading", "optimize"),
        ("Verify the parser output", "test"),
        ("Billing module", "general"),
    ],
)
def test_detect_intent(analyzer, task, intent):
    assert analyzer.detect_intent(task) == intent


@pytest.mark.parametrize(
    "task, task_type",
    [
        ("fix the broken login", "debug"),
        ("implement a new export button", "feature"),
        ("refactor the storage layer", "refactor"),
        ("write unit test for parser", "test"),
        ("document the public api", "docs"),
        ("look at the billing module", "general"),
    ],
)
def test_classify_task(analyzer, task, task_type):
    assert analyzer.classify_task(task) == task_type


@pytest.mark.parametrize(
    "task, mode",
    [
        ("fix the crash when saving", TaskMode.DEBUG),
        ("add a new feature to export data", TaskMode.FEATURE),
        ("refactor and clean up the storage module", TaskMode.REFACTOR),
        ("look at the billing module", TaskMode.GENERAL),
    ],
)
def test_detect_task_mode(analyzer, task, mode):
    assert analyzer.detect_task_mode(task, analyzer.analyze(task)) == mode
