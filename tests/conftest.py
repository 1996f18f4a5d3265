"""Shared fixtures: in-memory store queue, fake signal sources, sample files."""

import asyncio
from typing import Dict, Iterable, Optional

import pytest
import pytest_asyncio

from smart_context.domain.models.context_models import FileRecord, QueryAnalysis
from smart_context.infrastructure.config import ContextConfig, DatabaseConfig, EngineConfig
from smart_context.infrastructure.observability.logging import metrics
from smart_context.infrastructure.storage import DurableStoreQueue, RelevanceStore


class FakeSimilarity:
    """Fixed similarity per path"""

    def __init__(self, scores: Optional[Dict[str, float]] = None, fail_for: Iterable[str] = (), delay: float = 0.0):
        self.scores = scores or {}
        self.fail_for = set(fail_for)
        self.delay = delay

    async def similarity(self, query: QueryAnalysis, file: FileRecord) -> float:
        if self.delay:
            await asyncio.sleep(self.delay)
        if file.path in self.fail_for:
            raise RuntimeError("similarity backend down")
        return self.scores.get(file.path, 0.0)


class FakeRecency:
    def __init__(self, recent: Iterable[str] = (), fail: bool = False):
        self.recent = set(recent)
        self.fail = fail
        self.calls = []

    async def has_recent_changes(self, path: str, hours_window: int) -> bool:
        self.calls.append((path, hours_window))
        if self.fail:
            raise OSError("git not available")
        return path in self.recent


class FakeTokens:
    def __init__(self, costs: Optional[Dict[str, int]] = None, default: int = 100):
        self.costs = costs or {}
        self.default = default

    async def estimate_tokens(self, path: str) -> int:
        return self.costs.get(path, self.default)


@pytest.fixture(autouse=True)
def clean_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest_asyncio.fixture
async def queue():
    q = DurableStoreQueue(max_concurrent_operations=3, operation_timeout=2.0)
    await q.start()
    yield q
    await q.close()


@pytest.fixture
def store(queue):
    return RelevanceStore(queue)


@pytest.fixture
def context_config():
    return ContextConfig()


@pytest.fixture
def engine_config(tmp_path):
    return EngineConfig(project_root=str(tmp_path), database=DatabaseConfig(path=":memory:"))


@pytest.fixture
def sample_files():
    return [
        FileRecord(
            path="src/auth/login.js",
            size=1200,
            extension=".js",
            imports=["../services/api", "./session"],
            exports=["login", "logout"],
            functions=["login", "logout", "validateCredentials"],
        ),
        FileRecord(
            path="src/auth/session.js",
            size=800,
            extension=".js",
            exports=["createSession"],
            functions=["createSession"],
        ),
        FileRecord(
            path="src/services/api.js",
            size=2000,
            extension=".js",
            exports=["request"],
            functions=["request", "handleError"],
        ),
        FileRecord(
            path="src/utils/errorHandler.js",
            size=600,
            extension=".js",
            functions=["handleError"],
        ),
        FileRecord(
            path="tests/auth/login.test.js",
            size=900,
            extension=".js",
            imports=["../../src/auth/login"],
            has_tests=True,
        ),
        FileRecord(
            path="README.md",
            size=3000,
            extension=".md",
        ),
    ]
