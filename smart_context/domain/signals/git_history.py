from typing import Dict, List, Optional, Set, Tuple
from collections import Counter
from datetime import datetime, timedelta, timezone
import asyncio
import time

import structlog

logger = structlog.get_logger(__name__)

COMMIT_MARKER = "__commit__"


class GitCommandError(Exception):
    """A git invocation failed, timed out or git is not installed"""


class GitHistoryAnalyzer:
    """Recency and co-change signals mined from git history"""

    def __init__(
        self,
        project_root: str,
        relevance_store=None,
        command_timeout: float = 10.0,
        recent_cache_ttl: float = 60.0,
    ):
        self.project_root = project_root
        self.relevance_store = relevance_store
        self.command_timeout = command_timeout
        self.recent_cache_ttl = recent_cache_ttl
        self._is_repo: Optional[bool] = None
        self._recent_cache: Dict[int, Tuple[float, Set[str]]] = {}
        self._lock = asyncio.Lock()

    async def _git(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "git", *args,
                cwd=self.project_root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as e:
            raise GitCommandError(f"Cannot run git: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.command_timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise GitCommandError(f"git {args[0]} timed out after {self.command_timeout}s") from e

        if proc.returncode != 0:
            raise GitCommandError(stderr.decode(errors="replace").strip() or f"git {args[0]} failed")
        return stdout.decode(errors="replace")

    async def is_git_repo(self) -> bool:
        if self._is_repo is None:
            try:
                output = await self._git("rev-parse", "--is-inside-work-tree")
                self._is_repo = output.strip() == "true"
            except GitCommandError:
                self._is_repo = False
        return self._is_repo

    async def recently_modified_files(self, hours: int = 24) -> List[Dict[str, object]]:
        """Files touched by commits in the last `hours`, most frequently changed first"""

        if not await self.is_git_repo():
            return []

        since = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()
        output = await self._git("log", f"--since={since}", "--name-only", "--relative", "--pretty=format:")

        counts = Counter(line.strip() for line in output.splitlines() if line.strip())
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [{"file": path, "modification_count": count} for path, count in ranked]

    async def _recent_set(self, hours: int) -> Set[str]:
        async with self._lock:
            cached = self._recent_cache.get(hours)
            if cached and time.monotonic() - cached[0] < self.recent_cache_ttl:
                return cached[1]

            files = {entry["file"] for entry in await self.recently_modified_files(hours)}
            self._recent_cache[hours] = (time.monotonic(), files)
            return files

    async def has_recent_changes(self, path: str, hours_window: int = 48) -> bool:
        return path in await self._recent_set(hours_window)

    async def analyze_co_changes(self, commit_limit: int = 100) -> Dict[Tuple[str, str], int]:
        """Count how often each pair of files changed in the same commit"""

        if not await self.is_git_repo():
            logger.debug("Not a git repository, skipping co-change analysis", project_root=self.project_root)
            return {}

        output = await self._git(
            "log", "-n", str(commit_limit), "--name-only", "--relative", f"--pretty=format:{COMMIT_MARKER}",
        )

        co_changes: Counter = Counter()
        commits = 0
        for block in output.split(COMMIT_MARKER):
            files = sorted({line.strip() for line in block.splitlines() if line.strip()})
            if not files:
                continue
            commits += 1
            for i, file_a in enumerate(files):
                for file_b in files[i + 1:]:
                    co_changes[(file_a, file_b)] += 1

        if self.relevance_store is not None and co_changes:
            await self.relevance_store.record_co_changes(dict(co_changes))

        logger.info("Analyzed git co-changes", commits=commits, pairs=len(co_changes))
        return dict(co_changes)
