"""
Combination generator.

Builds candidate search phrases ("combos") from tokenized metadata fields:

- Contiguous windows: order-preserving n-grams of one field. Bounded linearly
  by field length.
- All-selections: every order-preserving n-subset of one field's unique
  tokens, plus (with include_cross) subsets of the merged token set that no
  single field can cover on its own. Combinatorial, so every pool is capped.

Iteration order is fixed (windows first, then n ascending, then index order
from itertools.combinations), so truncation at a cap always keeps the same
combos for the same input.
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from itertools import combinations
from typing import Optional

from core.combo_model import COMBO_LENGTH_VALUE, RECOMMENDED_TO_ADD_LIMIT
from core.domain.combos import Combo, Provenance, SourceKind, TextSource
from core.domain.errors import InvalidArgumentsError
from services.strength_classifier import classify
from services.tokenizer import brand_tokens

logger = logging.getLogger(__name__)

MIN_COMBO_TOKENS = 2
MAX_COMBO_TOKENS = 4

CROSS_POOL = "cross"
RUN_POOL = "run"


@dataclass(frozen=True)
class GenerationOptions:
    """Length range and explosion-guard caps for one generation run."""

    min_len: int = 2
    max_len: int = 4
    per_source_cap: int = 500
    include_cross: bool = True
    max_combos: int = 1500
    brand_terms: tuple[str, ...] = ()

    def validate(self) -> None:
        """Raise InvalidArgumentsError for an unusable configuration."""
        if self.min_len < MIN_COMBO_TOKENS:
            raise InvalidArgumentsError(
                f"min_len must be at least {MIN_COMBO_TOKENS}, got {self.min_len}"
            )
        if self.max_len > MAX_COMBO_TOKENS:
            raise InvalidArgumentsError(
                f"max_len must be at most {MAX_COMBO_TOKENS}, got {self.max_len}"
            )
        if self.max_len < self.min_len:
            raise InvalidArgumentsError(
                f"max_len ({self.max_len}) is less than min_len ({self.min_len})"
            )
        if self.per_source_cap < 1:
            raise InvalidArgumentsError("per_source_cap must be positive")
        if self.max_combos < 1:
            raise InvalidArgumentsError("max_combos must be positive")

    @property
    def lengths(self) -> range:
        return range(self.min_len, self.max_len + 1)


@dataclass
class GenerationResult:
    """
    Combos of one run, strongest tier first.

    ``truncated`` is the explosion-guard signal: some pool hit its cap and
    the run proceeds with the capped set. ``truncated_pools`` names them
    (source kinds, ``cross`` and ``run``).

    Coverage counts every deduplicated candidate, before the run cap. A
    combo "exists" when one field already holds all its words in order;
    cross-source combos are missing from the metadata as written.
    """

    combos: list[Combo] = field(default_factory=list)
    truncated: bool = False
    truncated_pools: tuple[str, ...] = ()
    total_candidates: int = 0
    existing_count: int = 0
    missing_count: int = 0
    recommended_to_add: list[Combo] = field(default_factory=list)

    @property
    def texts(self) -> list[str]:
        return [combo.text for combo in self.combos]

    @property
    def coverage(self) -> float:
        """Share of candidates already present in the metadata (0.0-1.0)."""
        if not self.total_candidates:
            return 0.0
        return round(self.existing_count / self.total_candidates, 4)


class _Pool:
    """Distinct candidates of one pool, in insertion order, up to a cap."""

    def __init__(self, name: str, cap: int, banned: frozenset[str]):
        self.name = name
        self.cap = cap
        self.banned = banned
        self.items: dict[str, tuple[tuple[str, ...], Provenance]] = {}
        self.truncated = False

    @property
    def full(self) -> bool:
        return len(self.items) >= self.cap

    def offer(self, tokens: tuple[str, ...], provenance: Provenance) -> bool:
        """Add a candidate. Returns False once the cap stops generation."""
        if self.banned and any(token in self.banned for token in tokens):
            return True
        text = " ".join(tokens)
        if text in self.items:
            return True
        if self.full:
            self.truncated = True
            return False
        self.items[text] = (tokens, provenance)
        return True


def contiguous_windows(tokens: Sequence[str], lengths: Iterable[int]) -> Iterator[tuple[str, ...]]:
    """Yield order-preserving n-grams, skipping windows that repeat a token."""
    for n in lengths:
        for start in range(len(tokens) - n + 1):
            window = tuple(tokens[start:start + n])
            if len(set(window)) == n:
                yield window


def selections(tokens: Sequence[str], lengths: Iterable[int]) -> Iterator[tuple[str, ...]]:
    """Yield every order-preserving n-subset of *tokens* (which must be unique)."""
    for n in lengths:
        yield from combinations(tokens, n)


def _source_pool(
    source: TextSource, options: GenerationOptions, banned: frozenset[str]
) -> _Pool:
    pool = _Pool(source.kind.value, options.per_source_cap, banned)
    only_this = frozenset({source.kind})

    contiguous = Provenance(sources=only_this, contiguous=True)
    for window in contiguous_windows(source.tokens, options.lengths):
        if not pool.offer(window, contiguous):
            return pool

    scattered = Provenance(sources=only_this, contiguous=False)
    for selection in selections(source.unique_tokens, options.lengths):
        if not pool.offer(selection, scattered):
            return pool
    return pool


def _cross_pool(
    sources: Sequence[TextSource], options: GenerationOptions, banned: frozenset[str]
) -> _Pool:
    pool = _Pool(CROSS_POOL, options.per_source_cap, banned)

    # First source each token appears in, in source order
    origin: dict[str, SourceKind] = {}
    for source in sources:
        for token in source.unique_tokens:
            origin.setdefault(token, source.kind)
    token_sets = [frozenset(source.tokens) for source in sources]

    for selection in selections(list(origin), options.lengths):
        if any(token_set.issuperset(selection) for token_set in token_sets):
            continue
        provenance = Provenance(
            sources=frozenset(origin[token] for token in selection),
            contiguous=False,
        )
        if not pool.offer(selection, provenance):
            break
    return pool


def generate(
    sources: Sequence[TextSource],
    options: Optional[GenerationOptions] = None,
) -> GenerationResult:
    """
    Generate and classify combos for a set of metadata fields.

    Args:
        sources: Tokenized fields, most prominent first
        options: Length range and caps (defaults when omitted)

    Returns:
        GenerationResult with combos deduplicated by canonical text, each
        carrying the strongest tier among its provenances

    Raises:
        InvalidArgumentsError: If the options are out of range
    """
    options = options or GenerationOptions()
    options.validate()

    sources = [source for source in sources if source.tokens]
    if not sources:
        return GenerationResult()

    banned = brand_tokens(options.brand_terms)
    pools = [_source_pool(source, options, banned) for source in sources]
    if options.include_cross and len(sources) > 1:
        pools.append(_cross_pool(sources, options, banned))

    merged: dict[str, Combo] = {}
    for pool in pools:
        for text, (tokens, provenance) in pool.items.items():
            tier = classify(tokens, provenance).tier
            current = merged.get(text)
            if current is None:
                merged[text] = Combo(tokens=tokens, tier=tier, provenance=provenance)
            elif tier > current.tier:
                # Keep first-seen position, upgrade to the stronger provenance
                merged[text] = Combo(tokens=current.tokens, tier=tier, provenance=provenance)

    order = {text: index for index, text in enumerate(merged)}
    ranked = sorted(merged.values(), key=lambda c: (-c.tier, order[c.text]))

    truncated_pools = [pool.name for pool in pools if pool.truncated]
    if len(ranked) > options.max_combos:
        ranked = ranked[:options.max_combos]
        truncated_pools.append(RUN_POOL)

    if truncated_pools:
        logger.info(
            "Explosion guard truncated %s (kept %d of %d candidates)",
            ", ".join(truncated_pools),
            len(ranked),
            len(merged),
        )

    missing = [combo for combo in merged.values() if not exists_in_metadata(combo)]

    return GenerationResult(
        combos=ranked,
        truncated=bool(truncated_pools),
        truncated_pools=tuple(truncated_pools),
        total_candidates=len(merged),
        existing_count=len(merged) - len(missing),
        missing_count=len(missing),
        recommended_to_add=recommend_missing(missing),
    )


def exists_in_metadata(combo: Combo) -> bool:
    """True when a single field already contains the combo's words in order."""
    return not combo.provenance.is_cross_source


def recommend_missing(
    missing: Iterable[Combo], limit: int = RECOMMENDED_TO_ADD_LIMIT
) -> list[Combo]:
    """
    Missing combos most worth adding, best first.

    Stronger tiers first, then the more valuable phrase length; ties keep
    generation order.
    """
    ranked = sorted(
        missing,
        key=lambda combo: (-combo.tier, -COMBO_LENGTH_VALUE.get(combo.length, 0)),
    )
    return ranked[:limit]


def group_by_length(combos: Iterable[Combo]) -> dict[int, list[Combo]]:
    """Group combos by token count, shortest first."""
    grouped: dict[int, list[Combo]] = {}
    for combo in combos:
        grouped.setdefault(combo.length, []).append(combo)
    return dict(sorted(grouped.items()))


def filter_by_keyword(combos: Iterable[Combo], keyword: str) -> list[Combo]:
    """Combos containing *keyword* as a whole token (case-insensitive)."""
    keyword = keyword.strip().lower()
    return [combo for combo in combos if keyword in combo.tokens]


def count_with_keyword(combos: Iterable[Combo], keyword: str) -> int:
    return len(filter_by_keyword(combos, keyword))
