"""
API request and response schemas.
"""

from .combos import (
    BatchMetaResponse,
    ComboGenerateRequest,
    ComboGenerateResponse,
    ComboRankingResponse,
    ComboRankingsRequest,
    ComboRankingsResponse,
    GeneratedComboResponse,
    MetadataTokens,
    TrackedAppRequest,
    TrackedAppResponse,
)

__all__ = [
    "MetadataTokens",
    "ComboGenerateRequest",
    "ComboRankingsRequest",
    "TrackedAppRequest",
    "GeneratedComboResponse",
    "ComboGenerateResponse",
    "ComboRankingResponse",
    "BatchMetaResponse",
    "ComboRankingsResponse",
    "TrackedAppResponse",
]
