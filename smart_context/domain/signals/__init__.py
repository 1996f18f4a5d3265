from .interfaces import SimilarityScorer, RecencySignal, TokenEstimator, QueryAnalyzer
from .query_analyzer import KeywordQueryAnalyzer
from .similarity import KeywordSimilarityScorer
from .git_history import GitHistoryAnalyzer, GitCommandError
from .token_estimator import FileTokenEstimator

__all__ = [
    "SimilarityScorer",
    "RecencySignal",
    "TokenEstimator",
    "QueryAnalyzer",
    "KeywordQueryAnalyzer",
    "KeywordSimilarityScorer",
    "GitHistoryAnalyzer",
    "GitCommandError",
    "FileTokenEstimator",
]
