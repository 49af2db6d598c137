# Domain Entities
# Pure business objects with no external dependencies
from .combos import (
    BatchFetchResult,
    Combo,
    ComboOutcome,
    EphemeralSubject,
    FetchStatus,
    Provenance,
    RankingResult,
    SourceKind,
    SubjectRef,
    TextSource,
    TrackedSubject,
    Trend,
)
from .errors import (
    CacheWriteError,
    CircuitOpenError,
    ComboEngineError,
    InvalidArgumentsError,
    UpstreamError,
    UpstreamPermanentError,
    UpstreamTransientError,
)

__all__ = [
    "SourceKind",
    "TextSource",
    "Provenance",
    "Combo",
    "RankingResult",
    "Trend",
    "FetchStatus",
    "TrackedSubject",
    "EphemeralSubject",
    "SubjectRef",
    "ComboOutcome",
    "BatchFetchResult",
    "ComboEngineError",
    "InvalidArgumentsError",
    "UpstreamError",
    "UpstreamTransientError",
    "UpstreamPermanentError",
    "CircuitOpenError",
    "CacheWriteError",
]
