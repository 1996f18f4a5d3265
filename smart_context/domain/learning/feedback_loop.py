from typing import Any, Dict, List, Optional

import structlog

from smart_context.domain.errors import ValidationError
from smart_context.domain.models.context_models import (
    FileRelationship,
    OutcomeResult,
    RelevanceRecord,
    TaskMode,
    UserOverride,
    clamp,
    utcnow,
)
from smart_context.infrastructure.config import LearningConfig

logger = structlog.get_logger(__name__)

CO_USAGE_TYPE = "actually-used-together"
NEW_PAIR_STRENGTH = 0.6


def _rate(numerator: int, denominator: int) -> Optional[float]:
    return round(numerator / denominator, 4) if denominator else None


class FeedbackLoop:
    """Turns reported session outcomes into relevance adjustments"""

    def __init__(self, relevance_store, config: Optional[LearningConfig] = None):
        self.relevance_store = relevance_store
        self.config = config or LearningConfig()

    def calculate_score_adjustment(self, was_successful: bool, was_used: bool) -> float:
        if was_successful:
            return self.config.success_used_delta if was_used else self.config.success_unused_delta
        return self.config.failure_used_delta if was_used else self.config.failure_unused_delta

    def adjust_record(self, record: RelevanceRecord, was_used: bool, was_successful: bool) -> RelevanceRecord:
        """Apply one outcome to a relevance record"""

        delta = self.calculate_score_adjustment(was_successful, was_used)
        return record.model_copy(update={
            "relevance_score": clamp(record.relevance_score + delta),
            "confidence": min(record.confidence + self.config.confidence_step, 1.0),
            "total_count": record.total_count + 1,
            "success_count": record.success_count + (1 if was_used and was_successful else 0),
            "last_updated": utcnow(),
        })

    def reinforce_relationship(self, existing: Optional[FileRelationship], file_a: str, file_b: str) -> FileRelationship:
        """Strengthen a pair of files that were used together successfully"""

        if existing is None:
            return FileRelationship(
                file_a=file_a,
                file_b=file_b,
                co_occurrence_count=1,
                relationship_type=CO_USAGE_TYPE,
                strength=NEW_PAIR_STRENGTH,
            )
        return existing.model_copy(update={
            "co_occurrence_count": existing.co_occurrence_count + 1,
            "strength": clamp(existing.strength + self.config.relationship_step),
            "relationship_type": CO_USAGE_TYPE,
        })

    async def record_outcome(
        self,
        session_id: int,
        was_successful: bool,
        files_actually_used: Optional[List[str]] = None,
    ) -> OutcomeResult:
        """
        Record whether a context session helped and learn from it.

        The outcome and every relevance update are written in one transaction.
        A second report for the same session changes nothing and comes back
        with applied=False.

        Raises:
            SessionNotFound: unknown session id
        """

        used = [p for p in (files_actually_used or []) if p]

        applied, updated = await self.relevance_store.apply_outcome(
            session_id,
            was_successful,
            used,
            update_relevance=lambda record, was_used: self.adjust_record(record, was_used, was_successful),
            update_relationship=self.reinforce_relationship,
        )

        if applied:
            logger.info(
                "Recorded session outcome",
                session_id=session_id,
                success=was_successful,
                files_used=len(used),
                files_updated=len(updated),
            )
        else:
            logger.info("Outcome already recorded, ignoring", session_id=session_id)

        return OutcomeResult(session_id=session_id, success=True, applied=applied, updated_files=updated)

    async def apply_user_overrides(
        self,
        session_id: int,
        added: Optional[List[str]] = None,
        removed: Optional[List[str]] = None,
        kept: Optional[List[str]] = None,
    ) -> UserOverride:
        """Record manual changes a user made to a selection"""

        override = UserOverride(
            session_id=session_id,
            added=list(added or []),
            removed=list(removed or []),
            kept=list(kept or []),
        )
        if not (override.added or override.removed or override.kept):
            raise ValidationError("At least one of added, removed or kept is required", field="overrides")

        await self.relevance_store.record_user_override(override)
        logger.info(
            "Recorded user overrides",
            session_id=session_id,
            added=len(override.added),
            removed=len(override.removed),
            kept=len(override.kept),
        )
        return override

    async def get_file_relationships(self, file_path: str, relationship_type: str = "all", limit: int = 20) -> List[Dict[str, Any]]:
        relationships = await self.relevance_store.get_file_relationships(file_path, relationship_type, limit)
        return [
            {
                "file": rel.other(file_path),
                "type": rel.relationship_type,
                "strength": rel.strength,
                "co_occurrences": rel.co_occurrence_count,
                "git_co_changes": rel.git_co_change_count,
            }
            for rel in relationships
        ]

    async def get_insights(self, task_mode: Optional[TaskMode] = None) -> Dict[str, Any]:
        """Session statistics, best files and an overall summary"""

        stats = await self.relevance_store.get_task_stats(task_mode)
        top_files = await self.relevance_store.get_top_files(task_mode, min_score=0.7, limit=20)

        task_mode_stats = []
        for row in stats:
            reported = row["reported_count"] or 0
            successes = row["success_count"] or 0
            task_mode_stats.append({
                "task_type": row["task_type"],
                "task_mode": row["task_mode"],
                "session_count": row["session_count"],
                "reported_count": reported,
                "success_count": successes,
                "success_rate": _rate(successes, reported),
                "avg_tokens": round(row["avg_tokens"] or 0.0, 1),
                "unique_conversations": row["unique_conversations"],
            })

        total_sessions = sum(s["session_count"] for s in task_mode_stats)
        total_reported = sum(s["reported_count"] for s in task_mode_stats)
        total_success = sum(s["success_count"] for s in task_mode_stats)

        # Aggregate per mode since stats are grouped by (type, mode)
        per_mode: Dict[str, List[int]] = {}
        for s in task_mode_stats:
            counts = per_mode.setdefault(s["task_mode"], [0, 0])
            counts[0] += s["success_count"]
            counts[1] += s["reported_count"]
        ranked_modes = sorted(
            ((mode, _rate(success, reported)) for mode, (success, reported) in per_mode.items() if reported),
            key=lambda item: item[1],
            reverse=True,
        )

        return {
            "task_mode_stats": task_mode_stats,
            "top_files": [
                {
                    "file_path": record.file_path,
                    "task_type": record.task_type,
                    "task_mode": record.task_mode.value,
                    "relevance_score": record.relevance_score,
                    "confidence": record.confidence,
                    "success_count": record.success_count,
                    "total_count": record.total_count,
                    "success_rate": _rate(record.success_count, record.total_count),
                }
                for record in top_files
            ],
            "summary": {
                "total_sessions": total_sessions,
                "sessions_with_outcome": total_reported,
                "overall_success_rate": _rate(total_success, total_reported),
                "most_successful_mode": ranked_modes[0][0] if ranked_modes else None,
            },
        }
