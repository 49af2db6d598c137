"""
Tracked-subject models.

A tracked app has a durable row; its combo rankings are additionally kept in
a history table bound to it by foreign key. Apps without a row are served in
ephemeral mode from the FK-free combo cache only.
"""

from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class TrackedApp(Base, TimestampMixin):
    """An app a tenant monitors over time."""

    __tablename__ = "tracked_apps"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    app_store_id: Mapped[str] = mapped_column(String(64), nullable=False)
    platform: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "app_store_id", "platform", name="uq_tracked_app_tenant_store_platform"
        ),
    )

    def __repr__(self) -> str:
        return f"<TrackedApp(tenant={self.tenant_id}, app={self.app_store_id}, platform={self.platform})>"


class ComboRankingHistory(Base):
    """Append-only ranking history for tracked apps, used for trend analysis."""

    __tablename__ = "combo_ranking_history"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    tracked_app_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("tracked_apps.id", ondelete="CASCADE"),
        nullable=False,
    )

    combo: Mapped[str] = mapped_column(String(200), nullable=False)
    locale: Mapped[str] = mapped_column(String(8), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_results: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trend: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    position_change: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_combo_history_app_combo_date", "tracked_app_id", "combo", "snapshot_date"),
    )

    def __repr__(self) -> str:
        return f"<ComboRankingHistory(app={self.tracked_app_id}, combo={self.combo[:30]}, date={self.snapshot_date})>"
