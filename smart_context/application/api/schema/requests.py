from typing import Dict, Any, Optional, List
from pydantic import BaseModel, Field

from smart_context.domain.models.context_models import (
    FileRecord,
    IncludedFile,
    OptimalContext,
    QueryAnalysis,
    Suggestion,
)


class OptimalContextRequest(BaseModel):
    """Request for the best files to include for a task"""
    task: str
    current_file: Optional[str] = None
    target_tokens: Optional[int] = Field(None, description="Token budget, defaults to the configured budget")
    project_files: List[FileRecord] = Field(default_factory=list)
    conversation_id: Optional[str] = None
    progressive_level: int = 1
    min_relevance_score: Optional[float] = None
    model: Optional[str] = None


class FileScoreDebug(BaseModel):
    score: float
    confidence: float


class IncludedFileResponse(BaseModel):
    """Included file as shown to clients"""
    path: str
    tier: str
    tokens: int
    reasons: List[str]
    primary_reason: str
    forced: bool = False
    debug: FileScoreDebug

    @classmethod
    def from_included(cls, included: IncludedFile) -> "IncludedFileResponse":
        return cls(
            path=included.path,
            tier=included.tier.value,
            tokens=included.tokens,
            reasons=included.reasons,
            primary_reason=included.primary_reason,
            forced=included.forced,
            debug=FileScoreDebug(score=round(included.score, 4), confidence=round(included.confidence, 4)),
        )


class ExcludedFileResponse(BaseModel):
    path: str
    score: float
    tokens: int
    reason: str


class OptimalContextResponse(BaseModel):
    """Selected context plus the session id to report outcomes against"""
    session_id: int
    task_mode: str
    task_type: str
    included: List[IncludedFileResponse]
    excluded: List[ExcludedFileResponse]
    total_tokens: int
    token_budget: int
    low_score_warning: bool
    cached: bool
    suggestions: List[Suggestion]
    query_analysis: QueryAnalysis

    @classmethod
    def from_context(cls, context: OptimalContext) -> "OptimalContextResponse":
        return cls(
            session_id=context.session_id,
            task_mode=context.task_mode.value,
            task_type=context.task_type,
            included=[IncludedFileResponse.from_included(f) for f in context.included],
            excluded=[
                ExcludedFileResponse(path=f.path, score=round(f.score, 4), tokens=f.tokens, reason=f.reason.value)
                for f in context.excluded
            ],
            total_tokens=context.total_tokens,
            token_budget=context.token_budget,
            low_score_warning=context.low_score_warning,
            cached=context.cached,
            suggestions=context.suggestions,
            query_analysis=context.query_analysis,
        )


class OutcomeRequest(BaseModel):
    """Whether the selected context helped"""
    was_successful: bool
    files_actually_used: List[str] = Field(default_factory=list)


class OutcomeResponse(BaseModel):
    success: bool
    applied: bool
    updated_files: List[str] = Field(default_factory=list)


class OverrideRequest(BaseModel):
    """Manual changes to a selection"""
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    kept: List[str] = Field(default_factory=list)


class OverrideResponse(BaseModel):
    session_id: int
    added: List[str]
    removed: List[str]
    kept: List[str]


class RelationshipResponse(BaseModel):
    file: str
    type: Optional[str] = None
    strength: float
    co_occurrences: int
    git_co_changes: int


class GitAnalyzeRequest(BaseModel):
    commit_limit: Optional[int] = Field(None, ge=1)


class HealthResponse(BaseModel):
    status: str
    store: Dict[str, Any]
    cache: Dict[str, Any]
    metrics: Dict[str, Any] = Field(default_factory=dict)
