"""
Narrow interfaces to the collaborators the engine consumes.

The scorer and assembler only depend on these protocols, so the defaults
shipped in this package can be swapped for anything with the same shape.
"""

from typing import Protocol, runtime_checkable

from smart_context.domain.models.context_models import FileRecord, QueryAnalysis, TaskMode


@runtime_checkable
class SimilarityScorer(Protocol):
    async def similarity(self, query: QueryAnalysis, file: FileRecord) -> float:
        """Semantic similarity between a query and a file, in [0, 1]"""
        ...


@runtime_checkable
class RecencySignal(Protocol):
    async def has_recent_changes(self, path: str, hours_window: int) -> bool:
        """True if the file changed within the last hours_window hours"""
        ...


@runtime_checkable
class TokenEstimator(Protocol):
    async def estimate_tokens(self, path: str) -> int:
        """Token cost of including a file"""
        ...


@runtime_checkable
class QueryAnalyzer(Protocol):
    def analyze(self, task: str) -> QueryAnalysis:
        ...

    def classify_task(self, task: str) -> str:
        ...

    def detect_task_mode(self, task: str, analysis: QueryAnalysis) -> TaskMode:
        ...
