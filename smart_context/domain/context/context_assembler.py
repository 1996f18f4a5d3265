from typing import Dict, List, Optional
import asyncio

import structlog

from smart_context.domain.models.context_models import (
    AssemblyResult,
    ExcludedFile,
    ExclusionReason,
    IncludedFile,
    ScoredFile,
    Tier,
)
from smart_context.domain.signals.interfaces import TokenEstimator
from smart_context.infrastructure.config import ContextConfig

logger = structlog.get_logger(__name__)

LOW_SCORE_REASON = "Included despite low score"


class ContextAssembler:
    """Packs scored files into a token budget"""

    def __init__(self, token_estimator: TokenEstimator, config: Optional[ContextConfig] = None):
        self.token_estimator = token_estimator
        self.config = config or ContextConfig()

    async def assemble(
        self,
        scored: Dict[str, ScoredFile],
        token_budget: int,
        current_file: Optional[str] = None,
        min_relevance_score: Optional[float] = None,
        held_back: Optional[Dict[str, ScoredFile]] = None,
    ) -> AssemblyResult:
        """
        Select files by score until the budget is spent.

        The current file is always included first. If nothing clears the
        threshold, the top candidates are force-included and the result is
        flagged with low_score_warning. Files the scorer held back below the
        progressive cutoff only compete for that fallback.
        """

        threshold = self.config.min_relevance_score if min_relevance_score is None else min_relevance_score

        # Stable sort keeps discovery order for equal scores
        ordered = sorted(scored.values(), key=lambda f: f.score, reverse=True)
        costs = await self._estimate_all([f.path for f in ordered])

        included: List[IncludedFile] = []
        excluded: List[ExcludedFile] = []
        total = 0

        if current_file and current_file in scored:
            current = scored[current_file]
            included.append(self._include(current, costs[current_file], forced=True))
            total += costs[current_file]

        for file in ordered:
            if file.path == current_file:
                continue
            cost = costs[file.path]
            fits = total + cost <= token_budget
            if file.score > threshold and fits:
                included.append(self._include(file, cost))
                total += cost
            else:
                reason = ExclusionReason.TOKEN_BUDGET_EXCEEDED if not fits else ExclusionReason.SCORE_BELOW_THRESHOLD
                excluded.append(ExcludedFile(path=file.path, score=file.score, tokens=cost, reason=reason))

        low_score_warning = False
        if not included and (ordered or held_back):
            low_score_warning = True
            pool = sorted([*scored.values(), *(held_back or {}).values()], key=lambda f: f.score, reverse=True)
            costs.update(await self._estimate_all([f.path for f in pool if f.path not in costs]))
            forced = self._fallback(pool, costs, token_budget)
            forced_paths = {f.path for f in forced}
            included = forced
            total = sum(f.tokens for f in forced)
            excluded = [f for f in excluded if f.path not in forced_paths]
            logger.info("No file cleared the threshold, using fallback", forced=len(forced), threshold=threshold)

        return AssemblyResult(
            included=included,
            excluded=excluded,
            total_tokens=total,
            token_budget=token_budget,
            low_score_warning=low_score_warning,
        )

    def _fallback(self, ordered: List[ScoredFile], costs: Dict[str, int], token_budget: int) -> List[IncludedFile]:
        forced: List[IncludedFile] = []
        total = 0
        for file in ordered[: self.config.fallback_count]:
            cost = costs[file.path]
            if total + cost <= token_budget:
                forced.append(self._include(file, cost, forced=True, low_score=True))
                total += cost

        # Never return an empty selection when candidates exist
        if not forced:
            top = ordered[0]
            forced.append(self._include(top, costs[top.path], forced=True, low_score=True))
        return forced

    def _include(self, file: ScoredFile, tokens: int, forced: bool = False, low_score: bool = False) -> IncludedFile:
        reasons = list(file.reasons)
        if low_score:
            reasons.append(LOW_SCORE_REASON)
        return IncludedFile(
            path=file.path,
            score=file.score,
            confidence=file.confidence,
            tokens=tokens,
            reasons=reasons,
            tier=Tier.for_score(file.score),
            forced=forced,
        )

    async def _estimate_all(self, paths: List[str]) -> Dict[str, int]:
        counts = await asyncio.gather(*[self.token_estimator.estimate_tokens(p) for p in paths])
        return {path: max(0, int(count)) for path, count in zip(paths, counts)}
