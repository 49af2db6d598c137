"""
Ranking-model configuration for keyword combos.

This module is the single source of truth for how metadata structure is
believed to translate into App Store ranking power, and for the thresholds
used to grade competition. The mapping is a product hypothesis about a
search algorithm we cannot observe, so every assumption lives here and
nowhere else. It sits in core/ so the domain, service and API layers can all
import it without circular dependencies.
"""

from enum import IntEnum


class StrengthTier(IntEnum):
    """Hypothesized ranking power of a combo, ordered weakest to strongest.

    Integer values define the one total order used for sorting, filtering and
    tiering: a higher value is a stronger tier.
    """

    SECONDARY_NON_CONTIGUOUS = 1
    SECONDARY_CONTIGUOUS = 2
    CROSS_SOURCE = 3
    PRIMARY_NON_CONTIGUOUS = 4
    PRIMARY_CONTIGUOUS = 5

    @property
    def slug(self) -> str:
        return self.name.lower()

    @classmethod
    def from_slug(cls, value: str) -> "StrengthTier":
        return cls[value.upper()]

    @classmethod
    def strongest(cls) -> "StrengthTier":
        return max(cls)


# Which metadata fields carry primary weight. Keyword field vs subtitle
# weighting is unverified; both are treated as secondary.
SOURCE_ROLES = {
    "title": "primary",
    "subtitle": "secondary",
    "keyword_field": "secondary",
}

# Maximum characters indexed per field
SOURCE_CHAR_LIMITS = {
    "title": 30,
    "subtitle": 30,
    "keyword_field": 100,
}

# (role, contiguous) -> tier for single-source combos
TIER_TABLE = {
    ("primary", True): StrengthTier.PRIMARY_CONTIGUOUS,
    ("primary", False): StrengthTier.PRIMARY_NON_CONTIGUOUS,
    ("secondary", True): StrengthTier.SECONDARY_CONTIGUOUS,
    ("secondary", False): StrengthTier.SECONDARY_NON_CONTIGUOUS,
}

# Numeric strength used by priority scoring (0-100)
TIER_SCORES = {
    StrengthTier.PRIMARY_CONTIGUOUS: 100,
    StrengthTier.PRIMARY_NON_CONTIGUOUS: 85,
    StrengthTier.CROSS_SOURCE: 70,
    StrengthTier.SECONDARY_CONTIGUOUS: 50,
    StrengthTier.SECONDARY_NON_CONTIGUOUS: 30,
}

TIER_LABELS = {
    StrengthTier.PRIMARY_CONTIGUOUS: "Excellent",
    StrengthTier.PRIMARY_NON_CONTIGUOUS: "Good",
    StrengthTier.CROSS_SOURCE: "Medium",
    StrengthTier.SECONDARY_CONTIGUOUS: "Medium",
    StrengthTier.SECONDARY_NON_CONTIGUOUS: "Poor",
}

# Structural change that would promote a combo out of its tier
STRENGTHENING_HINTS = {
    StrengthTier.PRIMARY_NON_CONTIGUOUS: "Make the words adjacent in the title",
    StrengthTier.CROSS_SOURCE: "Move all words into the title",
    StrengthTier.SECONDARY_CONTIGUOUS: "Move the phrase into the title",
    StrengthTier.SECONDARY_NON_CONTIGUOUS: (
        "Make the words adjacent, or move them into the title"
    ),
}


# Competition grading from the endpoint's result count. Bounds are lower
# limits, checked from the top; the top band is the endpoint's result cap.
COMPETITION_LEVELS = (
    (200, "very_high"),
    (60, "high"),
    (30, "medium"),
    (0, "low"),
)

# Ordering used when sorting by competition (lower is better)
COMPETITION_RANK = {"low": 0, "medium": 1, "high": 2, "very_high": 3}


# Priority weighting (sums to 1.0)
PRIORITY_WEIGHTS = {
    "strength": 0.30,
    "popularity": 0.25,
    "opportunity": 0.20,
    "trend": 0.15,
    "intent": 0.10,
}

PRIORITY_TIERS = (
    (70, "high"),
    (40, "medium"),
    (0, "low"),
)


# Value of adding a missing combo to the metadata, by token count. Three-word
# phrases are specific enough to rank for and short enough to fit.
COMBO_LENGTH_VALUE = {
    2: 60,
    3: 70,
    4: 65,
}

# How many missing combos to recommend adding
RECOMMENDED_TO_ADD_LIMIT = 10
