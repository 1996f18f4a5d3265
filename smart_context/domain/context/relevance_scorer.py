from typing import Awaitable, Dict, List, Optional, Sequence, Tuple
from pathlib import PurePosixPath
import asyncio

import structlog

from smart_context.domain.errors import SignalUnavailable, StoreError
from smart_context.domain.models.context_models import (
    ConversationState,
    FileRecord,
    FileRelationship,
    QueryAnalysis,
    RelevanceRecord,
    ScoredFile,
    TaskMode,
    clamp,
)
from smart_context.domain.signals.interfaces import RecencySignal, SimilarityScorer
from smart_context.infrastructure.config import ContextConfig

logger = structlog.get_logger(__name__)

BASE_SCORE = 0.1
BASE_CONFIDENCE = 0.5
ERROR_MARKERS = ("error", "exception")


def file_stem(path: str) -> str:
    """Last path segment without its extension"""
    return PurePosixPath(path.replace("\\", "/")).stem


def has_import_relationship(file_a: Optional[FileRecord], file_b: Optional[FileRecord]) -> bool:
    """True if either file imports the other"""

    if file_a is None or file_b is None or file_a.path == file_b.path:
        return False

    def imports(source: FileRecord, target: FileRecord) -> bool:
        target_stem = file_stem(target.path)
        for name in source.imports:
            stem = file_stem(name)
            if stem == target_stem or stem in target.exports:
                return True
        return False

    return imports(file_a, file_b) or imports(file_b, file_a)


def path_similarity(path_a: str, path_b: str) -> float:
    """Shared leading directory segments over the longer path's segment count"""

    parts_a = path_a.split("/")
    parts_b = path_b.split("/")
    common = 0
    for seg_a, seg_b in zip(parts_a[:-1], parts_b[:-1]):
        if seg_a != seg_b:
            break
        common += 1
    return common / max(len(parts_a), len(parts_b))


def _percent(value: float) -> str:
    return f"{value * 100:.0f}%"


class RelevanceScorer:
    """Scores candidate files against a task from several weighted signals"""

    def __init__(
        self,
        relevance_store,
        similarity: SimilarityScorer,
        recency: Optional[RecencySignal] = None,
        config: Optional[ContextConfig] = None,
    ):
        self.relevance_store = relevance_store
        self.similarity = similarity
        self.recency = recency
        self.config = config or ContextConfig()

    async def score(
        self,
        query: QueryAnalysis,
        candidates: Sequence[FileRecord],
        conversation: Optional[ConversationState] = None,
        current_file: Optional[str] = None,
        task_mode: TaskMode = TaskMode.GENERAL,
        progressive_level: int = 1,
        task_type: str = "general",
    ) -> Dict[str, ScoredFile]:
        """Score every candidate; the result keeps candidate order"""

        kept, _ = await self.score_with_held_back(
            query,
            candidates,
            conversation=conversation,
            current_file=current_file,
            task_mode=task_mode,
            progressive_level=progressive_level,
            task_type=task_type,
        )
        return kept

    async def score_with_held_back(
        self,
        query: QueryAnalysis,
        candidates: Sequence[FileRecord],
        conversation: Optional[ConversationState] = None,
        current_file: Optional[str] = None,
        task_mode: TaskMode = TaskMode.GENERAL,
        progressive_level: int = 1,
        task_type: str = "general",
    ) -> Tuple[Dict[str, ScoredFile], Dict[str, ScoredFile]]:
        """
        Score every candidate, splitting off files below the progressive cutoff.

        Returns:
            (kept, held_back): both keep candidate order. held_back only fills
            at level 1 and feeds the assembler's low-score fallback. The
            current file is never held back or dropped as already viewed.
        """

        paths = [f.path for f in candidates]
        by_path = {f.path: f for f in candidates}
        current = by_path.get(current_file) if current_file else None

        history = await self._load_history(paths, task_type, task_mode)
        relationships = await self._load_relationships(current_file)

        results = await asyncio.gather(*[
            self._score_file(
                file,
                query=query,
                conversation=conversation,
                current_file=current_file,
                current=current,
                task_mode=task_mode,
                progressive_level=progressive_level,
                history=history.get(file.path),
                relationship=relationships.get(file.path),
            )
            for file in candidates
        ])

        kept: Dict[str, ScoredFile] = {}
        held_back: Dict[str, ScoredFile] = {}
        for result in results:
            if result is None:
                continue
            below_cutoff = (
                progressive_level == 1
                and result.path != current_file
                and result.score < self.config.progressive_cutoff
            )
            if below_cutoff:
                held_back[result.path] = result
            else:
                kept[result.path] = result

        logger.debug(
            "Scored candidates",
            candidates=len(candidates),
            kept=len(kept),
            held_back=len(held_back),
            task_mode=task_mode.value,
            progressive_level=progressive_level,
        )
        return kept, held_back

    async def _score_file(
        self,
        file: FileRecord,
        query: QueryAnalysis,
        conversation: Optional[ConversationState],
        current_file: Optional[str],
        current: Optional[FileRecord],
        task_mode: TaskMode,
        progressive_level: int,
        history: Optional[RelevanceRecord],
        relationship: Optional[FileRelationship],
    ) -> Optional[ScoredFile]:
        score = BASE_SCORE
        confidence = BASE_CONFIDENCE
        reasons: List[str] = []

        # Already viewed
        if conversation is not None and conversation.has_viewed(file.path):
            if progressive_level == 1 and file.path != current_file:
                return None
            score *= 0.5
            reasons.append("Already viewed in conversation")

        # Semantic similarity
        sim = await self._signal("similarity", file.path, self.similarity.similarity(query, file))
        sim = clamp(float(sim or 0.0))
        if sim > 0:
            score += sim * 0.25
            confidence += 0.1
            reasons.append(f"Semantic match ({_percent(sim)})")

        # Historical relevance
        if history is not None and history.relevance_score > 0.5:
            score += history.relevance_score * 0.2
            confidence = max(confidence, history.confidence)
            reasons.append(f"Historical relevance ({_percent(history.relevance_score)})")

        imports_current = has_import_relationship(current, file)

        # Task mode signals
        if task_mode == TaskMode.DEBUG:
            if self.recency is not None:
                recent = await self._signal(
                    "recency",
                    file.path,
                    self.recency.has_recent_changes(file.path, self.config.recency_window_hours),
                )
                if recent:
                    score += 0.3
                    reasons.append("Recently modified")
            if any(marker in file.path for marker in ERROR_MARKERS):
                score += 0.2
                reasons.append("Error handling file")
        elif task_mode == TaskMode.FEATURE:
            path_lower = file.path.lower()
            if any(concept in path_lower for concept in query.concepts):
                score += 0.3
                reasons.append("Similar feature pattern")
        elif task_mode == TaskMode.REFACTOR:
            if imports_current:
                score += 0.4
                reasons.append("Direct dependency")

        if imports_current:
            score += 0.25
            reasons.append("Import relationship")

        # Git co-change with the current file
        if relationship is not None and relationship.git_co_change_count > 0:
            co_change = relationship.co_change_score
            score += co_change * 0.15
            reasons.append(f"Frequently changed together ({_percent(co_change)})")

        if current_file:
            similarity = path_similarity(current_file, file.path)
            if similarity > 0.5:
                score += similarity * 0.1
                reasons.append("Same directory/feature")

        return ScoredFile(path=file.path, score=clamp(score), confidence=clamp(confidence), reasons=reasons)

    async def _signal(self, name: str, path: str, call: Awaitable):
        """Await an external signal; failures contribute nothing"""

        try:
            return await asyncio.wait_for(call, timeout=self.config.signal_timeout_seconds)
        except asyncio.TimeoutError:
            unavailable = SignalUnavailable(name, path, "timed out")
        except Exception as e:
            unavailable = SignalUnavailable(name, path, str(e) or type(e).__name__)

        logger.warning("Scoring signal unavailable", signal=unavailable.signal, file=unavailable.path, reason=unavailable.reason)
        return None

    async def _load_history(self, paths: List[str], task_type: str, task_mode: TaskMode) -> Dict[str, RelevanceRecord]:
        if self.relevance_store is None or not paths:
            return {}
        try:
            return await self.relevance_store.get_relevance_records(
                paths, task_type, task_mode, timeout=self.config.signal_timeout_seconds,
            )
        except StoreError as e:
            logger.warning("Historical relevance unavailable, using defaults", error=e.message)
            return {}

    async def _load_relationships(self, current_file: Optional[str]) -> Dict[str, FileRelationship]:
        if self.relevance_store is None or not current_file:
            return {}
        try:
            return await self.relevance_store.get_relationships_for(
                current_file, timeout=self.config.signal_timeout_seconds,
            )
        except StoreError as e:
            logger.warning("File relationships unavailable", file=current_file, error=e.message)
            return {}
