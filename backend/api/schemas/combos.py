"""
Keyword combo API schemas for generation and ranking batches.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Request Schemas
# ============================================================================


class MetadataTokens(BaseModel):
    """Raw metadata fields the combos are built from."""

    title: str = Field(default="", max_length=200)
    subtitle: str = Field(default="", max_length=200)
    keyword_field: str = Field(default="", max_length=500)


class ComboGenerateRequest(BaseModel):
    """Generate and classify combos without fetching rankings."""

    tokens: MetadataTokens
    brand_terms: List[str] = Field(default_factory=list, max_length=20)
    platform: str = Field(default="ios", max_length=16)
    locale: str = Field(default="us", min_length=2, max_length=8)
    max_combos: Optional[int] = Field(None, ge=1)
    min_len: int = 2
    max_len: int = 4
    include_cross: bool = True


class ComboRankingsRequest(ComboGenerateRequest):
    """Rank the strongest combos of an app's metadata in one market."""

    subject_id: Optional[str] = Field(
        None,
        max_length=64,
        description="Store identifier of the app to locate in results",
    )


class TrackedAppRequest(BaseModel):
    """Register an app for durable ranking history."""

    app_store_id: str = Field(..., min_length=1, max_length=64)
    platform: str = Field(default="ios", max_length=16)
    name: Optional[str] = Field(None, max_length=200)


# ============================================================================
# Response Schemas
# ============================================================================


class GeneratedComboResponse(BaseModel):
    """One generated combo."""

    text: str
    length: int
    tier: str
    tier_label: str
    strength_score: int
    sources: List[str]
    contiguous: bool
    suggestion: Optional[str] = None


class CoverageResponse(BaseModel):
    """How many candidate combos the metadata already contains."""

    existing: int
    missing: int
    coverage: float = Field(..., description="Existing share of all candidates, 0.0-1.0")
    recommended_to_add: List[GeneratedComboResponse] = Field(default_factory=list)


class ComboGenerateResponse(BaseModel):
    """Generated combos, strongest tier first."""

    combos: List[GeneratedComboResponse]
    total: int
    total_candidates: int
    truncated: bool
    truncated_pools: List[str] = Field(default_factory=list)
    by_length: Dict[int, int] = Field(default_factory=dict)
    coverage: CoverageResponse


class ComboRankingResponse(BaseModel):
    """Ranking outcome for one combo."""

    text: str
    tier: str
    tier_label: str
    status: str
    cached: bool
    competition_level: Optional[str] = None
    competition_display: Optional[str] = None
    position: Optional[int] = None
    total_results: Optional[int] = None
    trend: Optional[str] = None
    position_change: Optional[int] = None
    priority_score: int
    priority_tier: str
    suggestion: Optional[str] = None
    error: Optional[str] = None


class BatchMetaResponse(BaseModel):
    """Batch-level ratios and flags."""

    cache_hit_rate: float
    success_rate: float
    degraded: bool
    cancelled: bool = False
    truncated: bool
    truncated_pools: List[str] = Field(default_factory=list)
    total_generated: int
    subject_mode: str
    level_counts: Dict[str, int] = Field(default_factory=dict)


class ComboRankingsResponse(BaseModel):
    """Per-combo results in generation order plus batch metadata."""

    combos: List[ComboRankingResponse]
    batch_meta: BatchMetaResponse
    opportunities: List[str] = Field(
        default_factory=list,
        description="Low-competition, high-strength combos, best first",
    )


class TrackedAppResponse(BaseModel):
    """Registered tracked app."""

    tracked_id: str
    app_store_id: str
    platform: str

    model_config = ConfigDict(from_attributes=True)
