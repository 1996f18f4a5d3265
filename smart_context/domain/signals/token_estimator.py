from typing import Optional, Tuple
from collections import OrderedDict
from pathlib import Path
import asyncio

import structlog
import tiktoken

from smart_context.domain.models.context_models import FileRecord

logger = structlog.get_logger(__name__)

# Used when a file can't be read and its size is unknown
DEFAULT_FILE_TOKENS = 100

# Records and counts kept across requests
MAX_CACHED_FILES = 4096


class FileTokenEstimator:
    """
    Token cost of a file's content.

    Uses tiktoken's cl100k_base encoding, falling back to ~4 characters per
    token when the encoding cannot be loaded.
    """

    def __init__(self, project_root: str, encoding_name: str = "cl100k_base", max_entries: int = MAX_CACHED_FILES):
        self.project_root = Path(project_root)
        self.encoding_name = encoding_name
        self._encoding = None
        self._encoding_loaded = False
        self.max_entries = max_entries
        self._records: "OrderedDict[str, FileRecord]" = OrderedDict()
        self._cache: "OrderedDict[Tuple[str, Optional[float]], int]" = OrderedDict()

    def register(self, files) -> None:
        """Remember file records so sizes can stand in for unreadable files"""
        for record in files:
            self._remember(self._records, record.path, record)

    def _remember(self, mapping: OrderedDict, key, value) -> None:
        mapping.pop(key, None)
        mapping[key] = value
        while len(mapping) > self.max_entries:
            mapping.popitem(last=False)

    def _get_encoding(self):
        if not self._encoding_loaded:
            self._encoding_loaded = True
            try:
                self._encoding = tiktoken.get_encoding(self.encoding_name)
            except Exception as e:
                logger.warning("tiktoken unavailable, using estimation", error=str(e))
                self._encoding = None
        return self._encoding

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        encoding = self._get_encoding()
        if encoding is not None:
            return len(encoding.encode(text, disallowed_special=()))
        return len(text) // 4

    def _estimate_sync(self, path: str) -> int:
        record = self._records.get(path)
        try:
            text = (self.project_root / path).read_text(encoding="utf-8", errors="replace")
        except OSError:
            if record is not None and record.size > 0:
                return max(1, record.size // 4)
            return DEFAULT_FILE_TOKENS
        return self.count_text(text)

    async def estimate_tokens(self, path: str) -> int:
        record = self._records.get(path)
        key = (path, record.mtime if record else None)
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        tokens = await asyncio.to_thread(self._estimate_sync, path)
        self._remember(self._cache, key, tokens)
        return tokens
