from typing import Dict, Any, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp a value into [lower, upper]"""
    return max(lower, min(upper, value))


class TaskMode(str, Enum):
    """Coarse intent of a request, selects which scoring signals apply"""
    DEBUG = "debug"
    FEATURE = "feature"
    REFACTOR = "refactor"
    GENERAL = "general"


class Tier(str, Enum):
    """Display bucket derived from a file's final score"""
    ESSENTIAL = "essential"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"

    @classmethod
    def for_score(cls, score: float) -> "Tier":
        if score >= 0.8:
            return cls.ESSENTIAL
        if score >= 0.5:
            return cls.RECOMMENDED
        return cls.OPTIONAL


class ExclusionReason(str, Enum):
    """Why the assembler left a file out"""
    TOKEN_BUDGET_EXCEEDED = "Token budget exceeded"
    SCORE_BELOW_THRESHOLD = "Score below threshold"


class FileRecord(BaseModel):
    """Metadata for one candidate file, supplied by the file scanner"""
    model_config = ConfigDict(frozen=True)

    path: str = Field(description="Project-relative path using '/' separators")
    size: int = Field(default=0, ge=0)
    mtime: Optional[float] = Field(None, description="Modification time (epoch seconds)")
    extension: str = Field(default="")
    imports: List[str] = Field(default_factory=list)
    exports: List[str] = Field(default_factory=list)
    functions: List[str] = Field(default_factory=list)
    classes: List[str] = Field(default_factory=list)
    has_tests: bool = Field(default=False)
    complexity: float = Field(default=0.0, ge=0.0, le=1.0)


class QueryEntities(BaseModel):
    """Named things mentioned in a task description"""
    model_config = ConfigDict(frozen=True)

    functions: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class QueryAnalysis(BaseModel):
    """Result of analyzing a natural-language task"""
    model_config = ConfigDict(frozen=True)

    original: str = Field(default="")
    tokens: List[str] = Field(default_factory=list)
    stemmed: List[str] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list, description="Unordered, treated as a set")
    intent: str = Field(default="general")
    entities: QueryEntities = Field(default_factory=QueryEntities)
    function_hints: List[str] = Field(default_factory=list)
    file_hints: List[str] = Field(default_factory=list)


class ConversationState(BaseModel):
    """What a conversation has already seen"""
    conversation_id: str
    files_viewed: List[str] = Field(default_factory=list)
    current_task: Optional[str] = None
    task_progress: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_viewed(self, path: str) -> bool:
        return path in self.files_viewed


class ScoredFile(BaseModel):
    """Score, confidence and explanation for one file in one request"""
    path: str
    score: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)


class RelevanceRecord(BaseModel):
    """Learned relevance of a file for a (task type, task mode) pair"""
    file_path: str
    task_type: str
    task_mode: TaskMode
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    success_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)
    last_updated: Optional[datetime] = None


class FileRelationship(BaseModel):
    """Relatedness of an unordered pair of files"""
    file_a: str
    file_b: str
    co_occurrence_count: int = Field(default=0, ge=0)
    git_co_change_count: int = Field(default=0, ge=0)
    relationship_type: Optional[str] = None
    strength: float = Field(default=0.0, ge=0.0, le=1.0)

    @staticmethod
    def normalize_pair(path_a: str, path_b: str) -> Tuple[str, str]:
        return (path_a, path_b) if path_a <= path_b else (path_b, path_a)

    def other(self, path: str) -> str:
        return self.file_b if self.file_a == path else self.file_a

    @property
    def co_change_score(self) -> float:
        """Co-change count normalized against ten shared commits"""
        return min(self.git_co_change_count / 10, 1.0)


class ContextSession(BaseModel):
    """One context selection, kept for outcome reporting"""
    id: int
    conversation_id: Optional[str] = None
    task_type: str
    task_mode: TaskMode
    task_description: str = ""
    included_files: List[str] = Field(default_factory=list)
    excluded_files: List[str] = Field(default_factory=list)
    confidence_scores: Dict[str, float] = Field(default_factory=dict)
    outcome_success: Optional[bool] = Field(None, description="None until an outcome is reported")
    files_actually_used: List[str] = Field(default_factory=list)
    total_tokens: int = 0
    model_used: Optional[str] = None
    timestamp: Optional[datetime] = None

    @property
    def has_outcome(self) -> bool:
        return self.outcome_success is not None


class UserOverride(BaseModel):
    """Manual adjustments a user made to a context selection"""
    session_id: int
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    kept: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class IncludedFile(BaseModel):
    """A file selected for the context window"""
    path: str
    score: float
    confidence: float
    tokens: int
    reasons: List[str] = Field(default_factory=list)
    tier: Tier
    forced: bool = Field(default=False, description="Included by the current-file or fallback rule")

    @property
    def primary_reason(self) -> str:
        return self.reasons[0] if self.reasons else "Related to task"


class ExcludedFile(BaseModel):
    """A scored file left out, with the specific cause"""
    path: str
    score: float
    tokens: int
    reason: ExclusionReason


class AssemblyResult(BaseModel):
    """Output of packing scored files into a token budget"""
    included: List[IncludedFile] = Field(default_factory=list)
    excluded: List[ExcludedFile] = Field(default_factory=list)
    total_tokens: int = 0
    token_budget: int = 0
    low_score_warning: bool = False

    @property
    def included_paths(self) -> List[str]:
        return [f.path for f in self.included]


class Suggestion(BaseModel):
    """Hint returned to the caller about adjusting the request"""
    type: str
    message: str
    files: List[str] = Field(default_factory=list)
    available_tokens: Optional[int] = None


class OptimalContext(BaseModel):
    """Full response of a context request"""
    session_id: int
    task_mode: TaskMode
    task_type: str
    query_analysis: QueryAnalysis
    included: List[IncludedFile] = Field(default_factory=list)
    excluded: List[ExcludedFile] = Field(default_factory=list)
    total_tokens: int = 0
    token_budget: int = 0
    low_score_warning: bool = False
    suggestions: List[Suggestion] = Field(default_factory=list)
    cached: bool = False


class OutcomeResult(BaseModel):
    """Result of reporting a session outcome"""
    session_id: int
    success: bool = True
    applied: bool = Field(description="False when the outcome had already been recorded")
    updated_files: List[str] = Field(default_factory=list)
