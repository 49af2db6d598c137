"""
Strength classifier for keyword combos.

Maps a combo's provenance (which metadata fields its words came from and
whether they sit next to each other) onto a StrengthTier. All of the
tier assumptions live in core.combo_model; this module only applies them.
"""

from dataclasses import dataclass
from typing import Optional

from core.combo_model import (
    STRENGTHENING_HINTS,
    TIER_LABELS,
    TIER_SCORES,
    TIER_TABLE,
    StrengthTier,
)
from core.domain.combos import Combo, Provenance


@dataclass(frozen=True)
class Classification:
    """Tier plus the structural hint that would promote it."""

    tier: StrengthTier
    suggestion: Optional[str]


def classify_tier(provenance: Provenance) -> StrengthTier:
    """Tier for a provenance. Cross-source combos ignore contiguity."""
    if not provenance.sources:
        raise ValueError("Provenance must name at least one source")
    if provenance.is_cross_source:
        return StrengthTier.CROSS_SOURCE
    (source,) = provenance.sources
    return TIER_TABLE[(source.role, provenance.contiguous)]


def strengthening_hint(tier: StrengthTier) -> Optional[str]:
    """Human-readable promotion hint; None for the strongest tier."""
    return STRENGTHENING_HINTS.get(tier)


def classify(tokens: tuple[str, ...], provenance: Provenance) -> Classification:
    """Classify a combo's tokens by provenance."""
    tier = classify_tier(provenance)
    return Classification(tier=tier, suggestion=strengthening_hint(tier))


def tier_score(combo: Combo) -> int:
    """Numeric strength (0-100) used by priority scoring."""
    return TIER_SCORES[combo.tier]


def tier_label(tier: StrengthTier) -> str:
    return TIER_LABELS[tier]
