from typing import Dict, List, Any, Optional, Sequence
import time

import structlog

from smart_context.domain.errors import ValidationError
from smart_context.domain.models.context_models import (
    AssemblyResult,
    FileRecord,
    OptimalContext,
    QueryAnalysis,
    Suggestion,
    TaskMode,
)
from smart_context.domain.signals.interfaces import QueryAnalyzer
from smart_context.infrastructure.config import ContextConfig
from smart_context.infrastructure.observability.logging import metrics
from .context_assembler import ContextAssembler
from .relevance_scorer import RelevanceScorer
from .memory.cache_memory_store import CacheMemoryStore
from .state.conversation_tracker import ConversationTracker

logger = structlog.get_logger(__name__)

PROGRESSIVE_LEVELS = (1, 2, 3)
TEST_MARKERS = ("test", "spec")


class ContextManager:
    """Selects the files worth putting in front of a model for a task"""

    def __init__(
        self,
        query_analyzer: QueryAnalyzer,
        scorer: RelevanceScorer,
        assembler: ContextAssembler,
        relevance_store,
        feedback_loop,
        conversation_tracker: Optional[ConversationTracker] = None,
        cache_store: Optional[CacheMemoryStore] = None,
        config: Optional[ContextConfig] = None,
    ):
        self.config = config or ContextConfig()
        self.query_analyzer = query_analyzer
        self.scorer = scorer
        self.assembler = assembler
        self.relevance_store = relevance_store
        self.feedback_loop = feedback_loop
        self.conversation_tracker = conversation_tracker
        self.cache_store = cache_store or CacheMemoryStore(
            ttl_seconds=self.config.cache_ttl_seconds,
            max_entries=self.config.cache_max_entries,
        )

    def _validate(self, task: str, target_tokens: int, progressive_level: int, min_relevance_score: float) -> None:
        if not task or not task.strip():
            raise ValidationError("Task description is required", field="task")
        if target_tokens < 0:
            raise ValidationError("Token budget must not be negative", field="target_tokens")
        if progressive_level not in PROGRESSIVE_LEVELS:
            raise ValidationError("Progressive level must be 1, 2 or 3", field="progressive_level")
        if not 0.0 <= min_relevance_score <= 1.0:
            raise ValidationError("Minimum relevance score must be between 0 and 1", field="min_relevance_score")

    async def get_optimal_context(
        self,
        task: str,
        current_file: Optional[str] = None,
        target_tokens: Optional[int] = None,
        project_files: Sequence[FileRecord] = (),
        conversation_id: Optional[str] = None,
        progressive_level: int = 1,
        min_relevance_score: Optional[float] = None,
        model: Optional[str] = None,
    ) -> OptimalContext:
        """
        Score and pack the project's files for a task.

        Every call records a new context session, including cache hits, so
        outcomes can always be reported against the returned session_id.

        Raises:
            ValidationError: malformed request
            StoreError: the session could not be persisted
        """

        budget = self.config.default_token_budget if target_tokens is None else target_tokens
        threshold = self.config.min_relevance_score if min_relevance_score is None else min_relevance_score
        model = model or self.config.default_model
        self._validate(task, budget, progressive_level, threshold)

        start = time.perf_counter()
        analysis = self.query_analyzer.analyze(task)
        task_type = self.query_analyzer.classify_task(task)
        task_mode = self.query_analyzer.detect_task_mode(task, analysis)

        logger.info(
            "Building context",
            task_type=task_type,
            task_mode=task_mode.value,
            candidates=len(project_files),
            conversation_id=conversation_id,
        )

        conversation = None
        if conversation_id and self.conversation_tracker is not None:
            conversation = await self.conversation_tracker.get_or_create(conversation_id, current_task=task)

        cache_key = CacheMemoryStore.make_key(
            task, current_file, budget, progressive_level, threshold, conversation_id,
            (f.path for f in project_files),
            viewed_files=conversation.files_viewed if conversation else (),
        )
        cached = await self.cache_store.get(cache_key)

        if cached is not None:
            assembly: AssemblyResult = cached
            confidence_scores = {f.path: f.confidence for f in assembly.included}
            metrics.increment_counter("context_cache_hits")
        else:
            scored, held_back = await self.scorer.score_with_held_back(
                analysis,
                project_files,
                conversation=conversation,
                current_file=current_file,
                task_mode=task_mode,
                progressive_level=progressive_level,
                task_type=task_type,
            )
            metrics.record_latency("scoring", (time.perf_counter() - start) * 1000)

            assembly = await self.assembler.assemble(
                scored,
                token_budget=budget,
                current_file=current_file,
                min_relevance_score=threshold,
                held_back=held_back,
            )
            confidence_scores = {f.path: f.confidence for f in assembly.included}
            await self.cache_store.set(cache_key, assembly)

        session_id = await self.relevance_store.create_session(
            task_type=task_type,
            task_mode=task_mode,
            task_description=task,
            included_files=assembly.included_paths,
            excluded_files=[f.path for f in assembly.excluded],
            confidence_scores=confidence_scores,
            total_tokens=assembly.total_tokens,
            conversation_id=conversation_id,
            model_used=model,
        )

        if conversation_id and self.conversation_tracker is not None:
            await self.conversation_tracker.mark_files_viewed(conversation_id, assembly.included_paths)

        result = OptimalContext(
            session_id=session_id,
            task_mode=task_mode,
            task_type=task_type,
            query_analysis=analysis,
            included=assembly.included,
            excluded=assembly.excluded,
            total_tokens=assembly.total_tokens,
            token_budget=assembly.token_budget,
            low_score_warning=assembly.low_score_warning,
            suggestions=self.build_suggestions(assembly, task_mode, analysis),
            cached=cached is not None,
        )

        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_latency("get_optimal_context", duration_ms)
        metrics.increment_counter("context_requests")
        if assembly.token_budget > 0:
            metrics.set_gauge("context_budget_utilization", round(assembly.total_tokens / assembly.token_budget, 4))
        logger.info(
            "Context built",
            session_id=session_id,
            included=len(result.included),
            excluded=len(result.excluded),
            total_tokens=result.total_tokens,
            cached=result.cached,
            duration_ms=round(duration_ms, 2),
        )
        return result

    def build_suggestions(self, assembly: AssemblyResult, task_mode: TaskMode, analysis: QueryAnalysis) -> List[Suggestion]:
        """Hints about widening or narrowing the request"""

        suggestions: List[Suggestion] = []

        if task_mode == TaskMode.DEBUG:
            test_files = [
                f.path for f in assembly.excluded
                if any(marker in f.path.lower() for marker in TEST_MARKERS)
            ]
            if test_files:
                suggestions.append(Suggestion(
                    type="expand",
                    message="Consider including test files to understand expected behavior",
                    files=test_files[:3],
                ))

        if assembly.total_tokens < assembly.token_budget * 0.5:
            suggestions.append(Suggestion(
                type="expand",
                message="Token budget has room for more context, consider a higher progressive level",
                available_tokens=assembly.token_budget - assembly.total_tokens,
            ))

        if assembly.low_score_warning:
            concepts = ", ".join(analysis.concepts) or "none detected"
            suggestions.append(Suggestion(
                type="refine",
                message=f"No file scored above the threshold, results are low confidence. "
                        f"Try naming files or functions explicitly (concepts: {concepts})",
            ))

        return suggestions

    async def record_session_outcome(
        self,
        session_id: int,
        was_successful: bool,
        files_actually_used: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Report whether a session's context helped"""

        start = time.perf_counter()
        outcome = await self.feedback_loop.record_outcome(session_id, was_successful, files_actually_used or [])
        metrics.record_latency("record_outcome", (time.perf_counter() - start) * 1000)
        if outcome.applied:
            # Learned scores changed, cached selections are stale
            await self.cache_store.clear()
        return {"success": outcome.success, "applied": outcome.applied, "updated_files": outcome.updated_files}
