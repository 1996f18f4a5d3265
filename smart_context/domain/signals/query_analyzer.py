from typing import Dict, List, Pattern
import re

from smart_context.domain.models.context_models import QueryAnalysis, QueryEntities, TaskMode


STOP_WORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "does", "for", "from",
    "how", "i", "in", "is", "it", "me", "my", "of", "on", "or", "please", "should", "that",
    "the", "this", "to", "was", "we", "what", "when", "where", "which", "why", "with", "you",
}

CONCEPT_PATTERNS: Dict[str, Pattern] = {
    "authentication": re.compile(r"auth|login|signin|session|jwt|token", re.I),
    "database": re.compile(r"database|\bdb\b|sql|query|migration|schema", re.I),
    "api": re.compile(r"\bapi\b|endpoint|route|rest|graphql|request", re.I),
    "ui": re.compile(r"\bui\b|component|view|screen|render|display", re.I),
    "state": re.compile(r"state|store|redux|context|provider", re.I),
    "error": re.compile(r"error|exception|fail|crash|bug|issue", re.I),
    "performance": re.compile(r"performance|optimi[sz]e|slow|speed|cache", re.I),
    "testing": re.compile(r"test|spec|mock|assert|expect", re.I),
}

# Checked in order, first match wins
INTENT_PATTERNS: List[tuple] = [
    ("understand", re.compile(r"\bhow\b|\bwhat\b|\bwhere\b|explain|understand", re.I)),
    ("implement", re.compile(r"\badd\b|create|implement|build|\bmake\b", re.I)),
    ("fix", re.compile(r"\bfix|debug|solve|repair|issue", re.I)),
    ("modify", re.compile(r"change|update|modify|edit|refactor", re.I)),
    ("optimize", re.compile(r"optimi[sz]e|improve|enhance|speed up", re.I)),
    ("test", re.compile(r"\btest|verify|check|validate", re.I)),
]

TASK_TYPE_PATTERNS: List[tuple] = [
    ("debug", re.compile(r"fix|bug|error|issue|problem|debug|crash|fail", re.I)),
    ("feature", re.compile(r"\badd\b|create|implement|build|new feature|develop", re.I)),
    ("refactor", re.compile(r"refactor|clean|improve|optimi[sz]e|restructure|reorgani[sz]e", re.I)),
    ("test", re.compile(r"test|testing|unit test|integration|spec", re.I)),
    ("docs", re.compile(r"document|docs|comment|explain|readme", re.I)),
]

MODE_KEYWORDS: Dict[TaskMode, List[str]] = {
    TaskMode.DEBUG: ["error", "bug", "fix", "issue", "fail", "crash", "exception"],
    TaskMode.FEATURE: ["add", "create", "implement", "new", "feature", "build"],
    TaskMode.REFACTOR: ["refactor", "clean", "improve", "optimize", "restructure", "rename"],
}

MODE_INTENTS: Dict[TaskMode, str] = {
    TaskMode.DEBUG: "fix",
    TaskMode.FEATURE: "implement",
    TaskMode.REFACTOR: "modify",
}

FUNCTION_CALL = re.compile(r"\b([a-zA-Z_][a-zA-Z0-9_]*)\s*\(")
FILE_PATH = re.compile(r"[\w\-./]+\.(?:js|jsx|ts|tsx|py|java|go|rs|cpp|c|h|cs|rb|php)\b")
ERROR_MESSAGE = re.compile(r"(?:error|exception):\s*([^.!?\n]+)", re.I)
IDENTIFIER = re.compile(r"\b(?:[a-z]+(?:[A-Z][a-z0-9]+)+|[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]+)+|[a-z0-9]+(?:_[a-z0-9]+)+)\b")
WORD = re.compile(r"[a-zA-Z0-9_./-]+")


def stem(token: str) -> str:
    """Crude suffix stripping, good enough for substring matching"""

    for suffix in ("ing", "ed", "es", "s"):
        if token.endswith(suffix) and len(token) - len(suffix) >= 3:
            return token[: -len(suffix)]
    return token


class KeywordQueryAnalyzer:
    """Pattern-based query analysis: tokens, concepts, intent and entities"""

    def analyze(self, task: str) -> QueryAnalysis:
        tokens = [t.lower() for t in WORD.findall(task)]
        tokens = [t for t in tokens if t not in STOP_WORDS and len(t) > 1]
        stemmed = list(dict.fromkeys(stem(t) for t in tokens))

        entities = self.extract_entities(task)
        identifiers = list(dict.fromkeys(IDENTIFIER.findall(task)))

        return QueryAnalysis(
            original=task,
            tokens=tokens,
            stemmed=stemmed,
            concepts=self.extract_concepts(task),
            intent=self.detect_intent(task),
            entities=entities,
            function_hints=list(dict.fromkeys(entities.functions + identifiers)),
            file_hints=list(entities.files),
        )

    def extract_concepts(self, task: str) -> List[str]:
        return [concept for concept, pattern in CONCEPT_PATTERNS.items() if pattern.search(task)]

    def detect_intent(self, task: str) -> str:
        for intent, pattern in INTENT_PATTERNS:
            if pattern.search(task):
                return intent
        return "general"

    def extract_entities(self, task: str) -> QueryEntities:
        functions = list(dict.fromkeys(FUNCTION_CALL.findall(task)))
        files = list(dict.fromkeys(FILE_PATH.findall(task)))
        errors = [m.strip() for m in ERROR_MESSAGE.findall(task)]
        return QueryEntities(functions=functions, files=files, errors=errors)

    def classify_task(self, task: str) -> str:
        """Coarse task type used as part of the relevance key"""

        for task_type, pattern in TASK_TYPE_PATTERNS:
            if pattern.search(task):
                return task_type
        return "general"

    def detect_task_mode(self, task: str, analysis: QueryAnalysis) -> TaskMode:
        """Pick the mode with the most keyword hits plus intent alignment"""

        task_lower = task.lower()
        best_mode = TaskMode.GENERAL
        highest = 0.0

        for mode, keywords in MODE_KEYWORDS.items():
            score = sum(0.2 for keyword in keywords if keyword in task_lower)
            if analysis.intent == MODE_INTENTS[mode]:
                score += 0.3
            if score > highest:
                highest = score
                best_mode = mode

        return best_mode
