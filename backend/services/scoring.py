"""
Scoring aggregator for ranking batches.

Turns fetch outcomes into per-combo competition levels, batch ratios and the
"low competition, high strength" opportunity view. Also derives an optional
priority score per combo:

- Strength (30%): tier score from the combo model
- Popularity (25%): estimated from result count and phrase length
- Opportunity (20%): room to improve given the current position
- Trend (15%): movement since the previous snapshot
- Intent (10%): caller-supplied, neutral when absent
"""

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from core.combo_model import (
    COMPETITION_LEVELS,
    COMPETITION_RANK,
    PRIORITY_TIERS,
    PRIORITY_WEIGHTS,
    TIER_SCORES,
    StrengthTier,
)
from core.domain.combos import Combo, ComboOutcome, FetchStatus, RankingResult, Trend
from services.ranking_fetcher import DEFAULT_RESULT_CAP
from services.strength_classifier import strengthening_hint

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50

# Phrase length -> popularity penalty; longer phrases are searched less
_SPECIFICITY_PENALTY = {1: 0, 2: -3, 3: -8, 4: -15}


def competition_level(total_results: int) -> str:
    """Grade competition from a result count (<30 low ... >=200 very_high)."""
    for lower_bound, level in COMPETITION_LEVELS:
        if total_results >= lower_bound:
            return level
    return COMPETITION_LEVELS[-1][1]


def competition_display(total_results: int, cap: int = DEFAULT_RESULT_CAP) -> str:
    """Render a result count. A capped count is a lower bound, shown as "≥cap"."""
    if total_results >= cap:
        return f"≥{cap}"
    return str(total_results)


def estimate_popularity(
    total_results: int, token_count: int, cap: int = DEFAULT_RESULT_CAP
) -> int:
    """
    Rough 5-100 search popularity proxy.

    Broad terms fill the result window; long-tail phrases are penalized.
    """
    breadth = 70 * min(total_results, cap) / cap
    penalty = _SPECIFICITY_PENALTY.get(token_count, -22)
    return int(round(max(5, min(100, 10 + breadth + penalty))))


@dataclass(frozen=True)
class PriorityScore:
    """Weighted priority breakdown (all components 0-100)."""

    strength: int
    popularity: int
    opportunity: int
    trend: int
    intent: int
    total: int
    tier: str
    data_quality: str


def opportunity_score(result: Optional[RankingResult]) -> int:
    if result is None:
        return 60
    if result.position is None:
        level = competition_level(result.total_results)
        if level == "very_high":
            return 70
        if level == "high":
            return 75
        return 80

    position = result.position
    if position <= 5:
        return 5
    if position <= 10:
        return 10
    if position <= 20:
        return 60
    if position <= 50:
        return 50
    if position <= 100:
        return 40
    return 30


def trend_score(result: Optional[RankingResult]) -> int:
    if result is None or result.trend is None:
        return NEUTRAL_SCORE

    change = abs(result.position_change or 0)
    if result.trend == Trend.UP:
        if change >= 10:
            return 100
        return 90 if change >= 5 else 80
    if result.trend == Trend.DOWN:
        if change >= 10:
            return 20
        return 30 if change >= 5 else 40
    if result.trend == Trend.NEW:
        return 60
    if result.trend == Trend.LOST:
        return 20
    return NEUTRAL_SCORE


def priority_tier(total: int) -> str:
    for lower_bound, tier in PRIORITY_TIERS:
        if total >= lower_bound:
            return tier
    return PRIORITY_TIERS[-1][1]


def priority_score(
    combo: Combo,
    result: Optional[RankingResult] = None,
    popularity: Optional[int] = None,
    intent: Optional[int] = None,
) -> PriorityScore:
    """Weighted priority of a combo. Missing inputs fall back to neutral values."""
    if popularity is None and result is not None:
        popularity = estimate_popularity(result.total_results, combo.length)

    components = {
        "strength": TIER_SCORES[combo.tier],
        "popularity": popularity if popularity is not None else NEUTRAL_SCORE,
        "opportunity": opportunity_score(result),
        "trend": trend_score(result),
        "intent": intent if intent is not None else NEUTRAL_SCORE,
    }
    total = int(round(sum(components[name] * weight for name, weight in PRIORITY_WEIGHTS.items())))

    if result is not None and intent is not None:
        data_quality = "complete"
    elif result is not None or intent is not None:
        data_quality = "partial"
    else:
        data_quality = "missing"

    return PriorityScore(
        total=total,
        tier=priority_tier(total),
        data_quality=data_quality,
        **components,
    )


@dataclass(frozen=True)
class ComboScore:
    """One summarized combo."""

    combo: Combo
    status: FetchStatus
    result: Optional[RankingResult]
    cached: bool
    competition_level: Optional[str]
    competition_display: Optional[str]
    priority: PriorityScore
    suggestion: Optional[str]
    error: Optional[str] = None

    @property
    def tier(self) -> StrengthTier:
        return self.combo.tier


@dataclass
class BatchSummary:
    """Per-combo scores plus batch-level ratios."""

    entries: list[ComboScore] = field(default_factory=list)
    cache_hit_rate: float = 0.0
    success_rate: float = 0.0
    degraded: bool = False
    cancelled: bool = False
    level_counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.entries)


def _score(outcome: ComboOutcome, cap: int) -> ComboScore:
    result = outcome.result
    return ComboScore(
        combo=outcome.combo,
        status=outcome.status,
        result=result,
        cached=outcome.cached,
        competition_level=competition_level(result.total_results) if result else None,
        competition_display=competition_display(result.total_results, cap) if result else None,
        priority=priority_score(outcome.combo, result),
        suggestion=strengthening_hint(outcome.combo.tier),
        error=outcome.error,
    )


def summarize(
    entries: Iterable[ComboOutcome],
    degraded: bool = False,
    cap: int = DEFAULT_RESULT_CAP,
) -> BatchSummary:
    """
    Summarize fetch outcomes.

    Args:
        entries: Outcomes in caller order (order is preserved)
        degraded: Batch-level degraded flag from the fetcher
        cap: Endpoint result cap used for the "≥cap" rendering

    Returns:
        BatchSummary with competition levels, cache-hit and success ratios
    """
    scores = [_score(outcome, cap) for outcome in entries]
    total = len(scores)
    cached = sum(1 for score in scores if score.cached)
    succeeded = sum(1 for score in scores if score.status == FetchStatus.OK)
    levels = Counter(score.competition_level for score in scores if score.competition_level)

    return BatchSummary(
        entries=scores,
        cache_hit_rate=round(cached / total, 4) if total else 0.0,
        success_rate=round(succeeded / total, 4) if total else 0.0,
        degraded=degraded or any(s.status == FetchStatus.CIRCUIT_OPEN for s in scores),
        cancelled=any(s.status == FetchStatus.CANCELLED for s in scores),
        level_counts=dict(levels),
    )


def opportunities(
    summary: BatchSummary,
    max_level: str = "medium",
    min_tier: StrengthTier = StrengthTier.CROSS_SOURCE,
) -> list[ComboScore]:
    """
    Low-competition, high-strength combos: strongest tier first, then lowest
    competition, then batch order.
    """
    if max_level not in COMPETITION_RANK:
        raise ValueError(f"Unknown competition level: {max_level}")
    ceiling = COMPETITION_RANK[max_level]

    candidates = [
        (index, score)
        for index, score in enumerate(summary.entries)
        if score.competition_level is not None
        and COMPETITION_RANK[score.competition_level] <= ceiling
        and score.tier >= min_tier
    ]
    candidates.sort(
        key=lambda item: (-item[1].tier, COMPETITION_RANK[item[1].competition_level], item[0])
    )
    return [score for _, score in candidates]
