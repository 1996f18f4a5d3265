"""
Engine wiring

Builds the store, default signal collaborators and domain services from an
EngineConfig, and owns their start/close lifecycle.
"""

from typing import Optional

import structlog

from smart_context.domain.context.context_assembler import ContextAssembler
from smart_context.domain.context.context_manager import ContextManager
from smart_context.domain.context.memory.cache_memory_store import CacheMemoryStore
from smart_context.domain.context.relevance_scorer import RelevanceScorer
from smart_context.domain.context.state.conversation_tracker import ConversationTracker
from smart_context.domain.learning.feedback_loop import FeedbackLoop
from smart_context.domain.signals import (
    FileTokenEstimator,
    GitHistoryAnalyzer,
    KeywordQueryAnalyzer,
    KeywordSimilarityScorer,
)
from smart_context.infrastructure.config import EngineConfig
from smart_context.infrastructure.storage import DurableStoreQueue, RelevanceStore

logger = structlog.get_logger(__name__)


class ContextEngine:
    """All engine components for one project root"""

    def __init__(
        self,
        config: EngineConfig,
        queue: Optional[DurableStoreQueue] = None,
        similarity=None,
        recency=None,
        token_estimator=None,
        query_analyzer=None,
    ):
        self.config = config
        self.queue = queue or DurableStoreQueue.from_config(config.database)
        self.store = RelevanceStore(self.queue)

        self.git = GitHistoryAnalyzer(
            config.project_root,
            relevance_store=self.store,
            command_timeout=config.git.command_timeout_seconds,
            recent_cache_ttl=config.git.recent_cache_ttl_seconds,
        )
        self.token_estimator = token_estimator or FileTokenEstimator(config.project_root)
        self.cache = CacheMemoryStore(
            ttl_seconds=config.context.cache_ttl_seconds,
            max_entries=config.context.cache_max_entries,
        )
        self.conversations = ConversationTracker(self.queue)
        self.feedback = FeedbackLoop(self.store, config.learning)

        self.scorer = RelevanceScorer(
            self.store,
            similarity=similarity or KeywordSimilarityScorer(),
            recency=recency or self.git,
            config=config.context,
        )
        self.assembler = ContextAssembler(self.token_estimator, config.context)
        self.context_manager = ContextManager(
            query_analyzer=query_analyzer or KeywordQueryAnalyzer(),
            scorer=self.scorer,
            assembler=self.assembler,
            relevance_store=self.store,
            feedback_loop=self.feedback,
            conversation_tracker=self.conversations,
            cache_store=self.cache,
            config=config.context,
        )

    async def start(self) -> None:
        await self.queue.start()
        if self.config.database.handle_exit_signals:
            self.queue.install_signal_handlers()
        logger.info("Context engine started", project_root=self.config.project_root, database=self.config.database.path)

    async def close(self) -> None:
        await self.queue.close()
        logger.info("Context engine stopped")

    def register_files(self, files) -> None:
        """Let the default token estimator fall back to known file sizes"""
        if isinstance(self.token_estimator, FileTokenEstimator):
            self.token_estimator.register(files)

    async def analyze_git_history(self, commit_limit: Optional[int] = None) -> dict:
        """Mine co-changes from git and store them as file relationships"""

        limit = commit_limit or self.config.git.default_commit_limit
        co_changes = await self.git.analyze_co_changes(limit)
        await self.cache.clear()
        return {
            "is_git_repo": await self.git.is_git_repo(),
            "commit_limit": limit,
            "pairs": len(co_changes),
        }

    async def health(self) -> dict:
        store = await self.queue.health_check()
        return {
            "status": store.get("status", "unknown"),
            "store": store,
            "cache": await self.cache.get_stats(),
        }
