"""
Keyword combo API routes: generation, ranking batches and tracked apps.
"""

import asyncio
import contextlib
import logging

from fastapi import APIRouter, Request, status

from api.dependencies import Engine, TenantId
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.combos import (
    BatchMetaResponse,
    ComboGenerateRequest,
    ComboGenerateResponse,
    ComboRankingResponse,
    ComboRankingsRequest,
    ComboRankingsResponse,
    CoverageResponse,
    GeneratedComboResponse,
    TrackedAppRequest,
    TrackedAppResponse,
)
from core.combo_model import TIER_LABELS, TIER_SCORES
from core.domain.combos import Combo, TrackedSubject
from core.domain.errors import InvalidArgumentsError
from services.combo_engine import RankingRequest
from services.combo_generator import group_by_length
from services.scoring import opportunities
from services.strength_classifier import strengthening_hint

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/combos", tags=["Combos"])

# How often an in-progress batch checks whether the caller went away
DISCONNECT_POLL_SECONDS = 0.5


def _to_engine_request(body: ComboGenerateRequest) -> RankingRequest:
    return RankingRequest(
        title=body.tokens.title,
        subtitle=body.tokens.subtitle,
        keyword_field=body.tokens.keyword_field,
        platform=body.platform.lower(),
        locale=body.locale.lower(),
        subject_id=getattr(body, "subject_id", None),
        brand_terms=tuple(body.brand_terms),
        max_combos=body.max_combos,
        min_len=body.min_len,
        max_len=body.max_len,
        include_cross=body.include_cross,
    )


async def _watch_disconnect(request: Request, cancel: asyncio.Event) -> None:
    """Set *cancel* once the client disconnects."""
    while not cancel.is_set():
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling ranking batch")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/generate", response_model=ComboGenerateResponse)
async def generate_combos(
    body: ComboGenerateRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> ComboGenerateResponse:
    """
    Generate and classify combos from metadata, strongest tier first.

    No rankings are fetched.
    """
    result = engine.generate(_to_engine_request(body))
    logger.debug("Generated %d combos for tenant %s", len(result.combos), tenant_id)

    combos = [_generated_combo(combo) for combo in result.combos]

    return ComboGenerateResponse(
        combos=combos,
        total=len(combos),
        total_candidates=result.total_candidates,
        truncated=result.truncated,
        truncated_pools=list(result.truncated_pools),
        by_length={length: len(items) for length, items in group_by_length(result.combos).items()},
        coverage=CoverageResponse(
            existing=result.existing_count,
            missing=result.missing_count,
            coverage=result.coverage,
            recommended_to_add=[_generated_combo(c) for c in result.recommended_to_add],
        ),
    )


def _generated_combo(combo: Combo) -> GeneratedComboResponse:
    return GeneratedComboResponse(
        text=combo.text,
        length=combo.length,
        tier=combo.tier.slug,
        tier_label=TIER_LABELS[combo.tier],
        strength_score=TIER_SCORES[combo.tier],
        sources=sorted(source.value for source in combo.provenance.sources),
        contiguous=combo.provenance.contiguous,
        suggestion=strengthening_hint(combo.tier),
    )


@router.post("/rankings", response_model=ComboRankingsResponse)
@limiter.limit(get_rate_limit("rankings"))
async def rank_combos(
    request: Request,
    body: ComboRankingsRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> ComboRankingsResponse:
    """
    Generate combos and rank them against the store search endpoint.

    Same-day results are served from the cache. Per-combo failures are
    reported in each entry's status; the batch itself only fails on invalid
    input (422).
    """
    cancel = asyncio.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancel))
    try:
        run = await engine.run(tenant_id, _to_engine_request(body), cancel=cancel)
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

    summary = run.summary
    combos = [
        ComboRankingResponse(
            text=entry.combo.text,
            tier=entry.tier.slug,
            tier_label=TIER_LABELS[entry.tier],
            status=entry.status.value,
            cached=entry.cached,
            competition_level=entry.competition_level,
            competition_display=entry.competition_display,
            position=entry.result.position if entry.result else None,
            total_results=entry.result.total_results if entry.result else None,
            trend=entry.result.trend.value if entry.result and entry.result.trend else None,
            position_change=entry.result.position_change if entry.result else None,
            priority_score=entry.priority.total,
            priority_tier=entry.priority.tier,
            suggestion=entry.suggestion,
            error=entry.error,
        )
        for entry in summary.entries
    ]

    return ComboRankingsResponse(
        combos=combos,
        batch_meta=BatchMetaResponse(
            cache_hit_rate=summary.cache_hit_rate,
            success_rate=summary.success_rate,
            degraded=summary.degraded,
            cancelled=summary.cancelled,
            truncated=run.generation.truncated,
            truncated_pools=list(run.generation.truncated_pools),
            total_generated=run.generation.total_candidates,
            subject_mode="tracked" if isinstance(run.subject, TrackedSubject) else "ephemeral",
            level_counts=summary.level_counts,
        ),
        opportunities=[entry.combo.text for entry in opportunities(summary)],
    )


@router.post(
    "/tracked-apps",
    response_model=TrackedAppResponse,
    status_code=status.HTTP_201_CREATED,
)
async def track_app(
    body: TrackedAppRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> TrackedAppResponse:
    """Register an app so its combo rankings are also kept as history."""
    platform = body.platform.lower()
    if platform not in engine.supported_platforms:
        raise InvalidArgumentsError(f"Unsupported platform '{body.platform}'")

    subject = await engine.subjects.track(
        tenant_id, body.app_store_id.strip(), platform, name=body.name
    )
    return TrackedAppResponse(
        tracked_id=subject.tracked_id,
        app_store_id=subject.identifier,
        platform=platform,
    )
