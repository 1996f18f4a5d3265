from typing import List
from collections import OrderedDict
import json

from smart_context.domain.models.context_models import FileRecord, QueryAnalysis

# Serialized records kept across requests
MAX_CACHED_RECORDS = 4096


class KeywordSimilarityScorer:
    """Keyword overlap between a query analysis and a file's metadata"""

    def __init__(self, max_entries: int = MAX_CACHED_RECORDS):
        self.max_entries = max_entries
        self._haystacks: "OrderedDict[str, str]" = OrderedDict()

    def _haystack(self, file: FileRecord) -> str:
        key = f"{file.path}:{file.mtime}"
        if key in self._haystacks:
            self._haystacks.move_to_end(key)
            return self._haystacks[key]

        content = json.dumps(file.model_dump(), sort_keys=True).lower()
        self._haystacks[key] = content
        while len(self._haystacks) > self.max_entries:
            self._haystacks.popitem(last=False)
        return content

    async def similarity(self, query: QueryAnalysis, file: FileRecord) -> float:
        """Calculate similarity between query and file metadata"""

        content = self._haystack(file)
        score = 0.0

        # Concept matching
        for concept in query.concepts:
            if concept in content:
                score += 0.2

        # Token matching on stems
        for token in query.stemmed:
            if token in content:
                score += 0.1

        # Named functions weigh more than loose words
        for func in query.entities.functions:
            if func in file.functions:
                score += 0.3

        for path in query.entities.files:
            if path in file.path:
                score += 0.5

        return min(score, 1.0)

    def matched_concepts(self, query: QueryAnalysis, file: FileRecord) -> List[str]:
        content = self._haystack(file)
        return [c for c in query.concepts if c in content]
