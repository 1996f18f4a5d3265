from .database import EmbeddedDatabase
from .durable_queue import DurableStoreQueue, RunResult
from .relevance_store import RelevanceStore

__all__ = ["EmbeddedDatabase", "DurableStoreQueue", "RunResult", "RelevanceStore"]
