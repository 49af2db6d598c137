"""
Combo ranking engine.

Library entry point tying the pipeline together: tokenize the metadata
fields, generate and classify combos, resolve the subject once, fetch
rankings (cache first) and summarize the batch.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from core.domain.combos import SourceKind, SubjectRef, TextSource
from core.domain.errors import InvalidArgumentsError
from services.combo_generator import GenerationOptions, GenerationResult, generate
from services.ranking_fetcher import RankingFetcher
from services.scoring import BatchSummary, summarize
from services.subject_resolver import SubjectResolver
from services.tokenizer import build_source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingRequest:
    """Batch request: metadata fields plus the market to rank them in."""

    title: str = ""
    subtitle: str = ""
    keyword_field: str = ""
    platform: str = "ios"
    locale: str = "us"
    subject_id: Optional[str] = None
    brand_terms: tuple[str, ...] = ()
    max_combos: Optional[int] = None
    min_len: int = 2
    max_len: int = 4
    include_cross: bool = True


@dataclass
class RankingRun:
    """Everything produced by one engine run."""

    subject: SubjectRef
    generation: GenerationResult
    summary: BatchSummary


class ComboRankingEngine:
    """Runs the generate -> classify -> fetch -> summarize pipeline."""

    def __init__(
        self,
        fetcher: RankingFetcher,
        subjects: SubjectResolver,
        supported_platforms: list[str],
        supported_countries: list[str],
        per_source_cap: int = 500,
        max_per_run: int = 1500,
        max_per_request: int = 500,
    ):
        self.fetcher = fetcher
        self.subjects = subjects
        self.supported_platforms = supported_platforms
        self.supported_countries = supported_countries
        self.per_source_cap = per_source_cap
        self.max_per_run = max_per_run
        self.max_per_request = max_per_request

    def _validate(self, request: RankingRequest) -> None:
        if request.platform not in self.supported_platforms:
            raise InvalidArgumentsError(
                f"Unsupported platform '{request.platform}'. "
                f"Supported: {', '.join(self.supported_platforms)}"
            )
        if request.locale not in self.supported_countries:
            raise InvalidArgumentsError(
                f"Unsupported locale '{request.locale}'. "
                f"Supported: {', '.join(self.supported_countries)}"
            )
        if not any(
            text and text.strip()
            for text in (request.title, request.subtitle, request.keyword_field)
        ):
            raise InvalidArgumentsError(
                "At least one of title, subtitle or keyword_field must be non-empty"
            )
        if request.max_combos is not None and not 1 <= request.max_combos <= self.max_per_run:
            raise InvalidArgumentsError(
                f"max_combos must be between 1 and {self.max_per_run}"
            )

    def build_sources(self, request: RankingRequest) -> list[TextSource]:
        fields = (
            (SourceKind.TITLE, request.title),
            (SourceKind.SUBTITLE, request.subtitle),
            (SourceKind.KEYWORD_FIELD, request.keyword_field),
        )
        return [
            build_source(kind, text, brand_terms=request.brand_terms, locale=request.locale)
            for kind, text in fields
        ]

    def generate(self, request: RankingRequest, max_combos: Optional[int] = None) -> GenerationResult:
        """
        Generate and classify combos without fetching anything.

        Raises:
            InvalidArgumentsError: If the request or length range is invalid
        """
        self._validate(request)
        options = GenerationOptions(
            min_len=request.min_len,
            max_len=request.max_len,
            per_source_cap=self.per_source_cap,
            include_cross=request.include_cross,
            max_combos=max_combos or request.max_combos or self.max_per_run,
            brand_terms=request.brand_terms,
        )
        return generate(self.build_sources(request), options)

    async def run(
        self,
        tenant_id: str,
        request: RankingRequest,
        cancel: Optional[asyncio.Event] = None,
    ) -> RankingRun:
        """
        Rank the strongest combos of *request* for a tenant.

        Only InvalidArgumentsError escapes, and only before any work starts;
        per-combo failures are reported in the summary.
        """
        max_combos = min(request.max_combos or self.max_per_request, self.max_per_run)
        generation = self.generate(request, max_combos=max_combos)

        subject = await self.subjects.resolve(
            tenant_id, request.subject_id or "", request.platform
        )

        batch = await self.fetcher.fetch_batch(
            tenant_id,
            subject,
            generation.combos,
            request.platform,
            request.locale,
            cancel=cancel,
        )
        summary = summarize(batch.outcomes, degraded=batch.degraded, cap=self.fetcher.result_cap)

        logger.info(
            "Ranked %d combos for tenant %s (cache hit %.0f%%, success %.0f%%)",
            summary.total,
            tenant_id,
            summary.cache_hit_rate * 100,
            summary.success_rate * 100,
            extra={"tenant_id": tenant_id, "subject_id": subject.identifier},
        )
        return RankingRun(subject=subject, generation=generation, summary=summary)
