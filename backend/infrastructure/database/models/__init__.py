"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .combo_cache import ComboRankingCache
from .tracking import ComboRankingHistory, TrackedApp

__all__ = [
    "Base",
    "TimestampMixin",
    "ComboRankingCache",
    "TrackedApp",
    "ComboRankingHistory",
]
