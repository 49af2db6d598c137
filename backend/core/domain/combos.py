"""Keyword combo domain entities."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from ..combo_model import SOURCE_ROLES, StrengthTier


class SourceKind(str, Enum):
    """Metadata field a token came from."""
    TITLE = "title"
    SUBTITLE = "subtitle"
    KEYWORD_FIELD = "keyword_field"

    @property
    def role(self) -> str:
        return SOURCE_ROLES[self.value]


class Trend(str, Enum):
    """Ranking movement compared with the previous snapshot."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"
    NEW = "new"
    LOST = "lost"


class FetchStatus(str, Enum):
    """Per-combo outcome of a ranking batch."""
    OK = "ok"
    UPSTREAM_TRANSIENT = "upstream_transient"
    UPSTREAM_PERMANENT = "upstream_permanent"
    CIRCUIT_OPEN = "circuit_open"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TextSource:
    """One metadata field: its raw text and filtered token sequence."""

    kind: SourceKind
    text: str
    tokens: tuple[str, ...]

    @property
    def unique_tokens(self) -> tuple[str, ...]:
        """Tokens with repeats removed, first occurrence order kept."""
        return tuple(dict.fromkeys(self.tokens))


@dataclass(frozen=True)
class Provenance:
    """Where a combo's tokens came from and whether they were adjacent."""

    sources: frozenset[SourceKind]
    contiguous: bool

    @property
    def is_cross_source(self) -> bool:
        return len(self.sources) > 1


@dataclass(frozen=True)
class Combo:
    """A normalized candidate search phrase of 2-4 tokens."""

    tokens: tuple[str, ...]
    tier: StrengthTier
    provenance: Provenance

    @property
    def text(self) -> str:
        return " ".join(self.tokens)

    @property
    def length(self) -> int:
        return len(self.tokens)


@dataclass(frozen=True)
class RankingResult:
    """Outcome of one search query for one combo against one subject."""

    combo: str
    position: Optional[int]
    total_results: int
    checked_at: datetime
    trend: Optional[Trend] = None
    position_change: Optional[int] = None

    @property
    def is_ranking(self) -> bool:
        return self.position is not None


@dataclass(frozen=True)
class TrackedSubject:
    """Subject with a durable tracked-app row."""

    identifier: str
    tracked_id: str


@dataclass(frozen=True)
class EphemeralSubject:
    """Subject with no durable row; cached by identifier only."""

    identifier: str


SubjectRef = Union[TrackedSubject, EphemeralSubject]


@dataclass
class ComboOutcome:
    """Per-combo entry of a fetched batch."""

    combo: Combo
    status: FetchStatus
    result: Optional[RankingResult] = None
    cached: bool = False
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == FetchStatus.OK


@dataclass
class BatchFetchResult:
    """All outcomes of a batch, in the caller's combo order."""

    outcomes: list[ComboOutcome] = field(default_factory=list)
    degraded: bool = False
    cancelled: bool = False
