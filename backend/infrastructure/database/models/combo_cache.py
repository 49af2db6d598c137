"""Combo ranking cache model."""
from __future__ import annotations
from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Date, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class ComboRankingCache(Base, TimestampMixin):
    """Day-scoped ranking snapshots for keyword combos.

    Deliberately has no foreign key to any subject table: ephemeral subjects
    (apps nobody tracks) are cached under their store identifier alone.
    """

    __tablename__ = "combo_rankings_cache"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    # Cache key
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_identifier: Mapped[str] = mapped_column(String(64), nullable=False)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    locale: Mapped[str] = mapped_column(String(8), nullable=False)
    combo: Mapped[str] = mapped_column(String(200), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Ranking snapshot
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_results: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trend: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    position_change: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "subject_identifier",
            "platform",
            "locale",
            "combo",
            "snapshot_date",
            name="uq_combo_cache_key_day",
        ),
        # Batch lookups fetch every combo of one subject for one day
        Index(
            "ix_combo_cache_subject_day",
            "tenant_id",
            "subject_identifier",
            "platform",
            "locale",
            "snapshot_date",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ComboRankingCache(subject={self.subject_identifier}, combo={self.combo[:30]}, "
            f"date={self.snapshot_date}, position={self.position})>"
        )
