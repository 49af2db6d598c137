"""
Day-scoped ranking cache backed by SQLAlchemy.

Entries are keyed by (tenant, subject identifier, platform, locale, combo,
snapshot date). An entry is fresh only when its snapshot date is today in
UTC according to the injected clock; older rows are kept for trend
computation and never served as fresh.

The cache table has no foreign key to tracked apps, so ephemeral subjects
read and write exactly like tracked ones. For tracked subjects each write
also appends to ``combo_ranking_history``; that side effect is best effort
and its failures are only logged.
"""

import logging
from collections.abc import Iterator
from datetime import UTC, date, datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import Clock, system_clock
from core.domain.combos import RankingResult, SubjectRef, TrackedSubject, Trend
from core.domain.errors import CacheWriteError
from core.interfaces.repositories import CacheKey, RankingCacheRepository
from infrastructure.database.models.combo_cache import ComboRankingCache
from infrastructure.database.models.tracking import ComboRankingHistory

logger = logging.getLogger(__name__)

# Keeps IN (...) lists well below driver parameter limits
_CHUNK_SIZE = 500

# asyncpg raises refused connections and connect timeouts as plain OSError
# (TimeoutError included), outside SQLAlchemy's exception wrapping
_STORE_ERRORS = (SQLAlchemyError, OSError)

_KEY_COLUMNS = [
    "tenant_id",
    "subject_identifier",
    "platform",
    "locale",
    "combo",
    "snapshot_date",
]


def _chunks(items: list[str]) -> Iterator[list[str]]:
    for start in range(0, len(items), _CHUNK_SIZE):
        yield items[start:start + _CHUNK_SIZE]


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo on round trip; stored values are always UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_result(row: ComboRankingCache) -> RankingResult:
    return RankingResult(
        combo=row.combo,
        position=row.position,
        total_results=row.total_results,
        checked_at=_aware(row.checked_at),
        trend=Trend(row.trend) if row.trend else None,
        position_change=row.position_change,
    )


class RankingCache(RankingCacheRepository):
    """SQL implementation of the ranking cache."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Clock = system_clock,
    ):
        self._session_maker = session_maker
        self.clock = clock

    def _key_filter(self, key: CacheKey):
        return (
            ComboRankingCache.tenant_id == key.tenant_id,
            ComboRankingCache.subject_identifier == key.subject_identifier,
            ComboRankingCache.platform == key.platform,
            ComboRankingCache.locale == key.locale,
        )

    async def get(
        self, key: CacheKey, combo: str, day: Optional[date] = None
    ) -> Optional[RankingResult]:
        found = await self.get_many(key, [combo], day)
        return found.get(combo)

    async def get_many(
        self, key: CacheKey, combos: list[str], day: Optional[date] = None
    ) -> dict[str, RankingResult]:
        day = day or self.clock.today()
        found: dict[str, RankingResult] = {}
        if not combos:
            return found

        async with self._session_maker() as session:
            for chunk in _chunks(list(dict.fromkeys(combos))):
                rows = await session.execute(
                    select(ComboRankingCache).where(
                        *self._key_filter(key),
                        ComboRankingCache.snapshot_date == day,
                        ComboRankingCache.combo.in_(chunk),
                    )
                )
                for row in rows.scalars():
                    found[row.combo] = _to_result(row)
        return found

    async def get_previous(
        self, key: CacheKey, combos: list[str], before: date
    ) -> dict[str, RankingResult]:
        previous: dict[str, RankingResult] = {}
        if not combos:
            return previous

        async with self._session_maker() as session:
            for chunk in _chunks(list(dict.fromkeys(combos))):
                rows = await session.execute(
                    select(ComboRankingCache)
                    .where(
                        *self._key_filter(key),
                        ComboRankingCache.snapshot_date < before,
                        ComboRankingCache.combo.in_(chunk),
                    )
                    .order_by(ComboRankingCache.snapshot_date.desc())
                )
                for row in rows.scalars():
                    # Newest first: keep the first row seen per combo
                    if row.combo not in previous:
                        previous[row.combo] = _to_result(row)
        return previous

    def _upsert_statement(self, dialect: str, values: dict):
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert(ComboRankingCache).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=_KEY_COLUMNS,
            set_={
                "position": stmt.excluded.position,
                "total_results": stmt.excluded.total_results,
                "trend": stmt.excluded.trend,
                "position_change": stmt.excluded.position_change,
                "checked_at": stmt.excluded.checked_at,
                "updated_at": datetime.now(UTC),
            },
            # Last write wins on checked_at, not on arrival order
            where=ComboRankingCache.checked_at <= stmt.excluded.checked_at,
        )

    async def put(
        self,
        key: CacheKey,
        result: RankingResult,
        day: Optional[date] = None,
        subject: Optional[SubjectRef] = None,
    ) -> None:
        day = day or self.clock.today()
        values = {
            "tenant_id": key.tenant_id,
            "subject_identifier": key.subject_identifier,
            "platform": key.platform,
            "locale": key.locale,
            "combo": result.combo,
            "snapshot_date": day,
            "position": result.position,
            "total_results": result.total_results,
            "trend": result.trend.value if result.trend else None,
            "position_change": result.position_change,
            "checked_at": result.checked_at,
        }

        try:
            async with self._session_maker() as session:
                stmt = self._upsert_statement(session.bind.dialect.name, values)
                await session.execute(stmt)
                await session.commit()
        except _STORE_ERRORS as e:
            raise CacheWriteError(
                f"Cache write failed for '{result.combo}' ({key.subject_identifier}): {e}"
            ) from e

        if isinstance(subject, TrackedSubject):
            await self._append_history(subject, key, result, day)

    async def _append_history(
        self, subject: TrackedSubject, key: CacheKey, result: RankingResult, day: date
    ) -> None:
        try:
            async with self._session_maker() as session:
                session.add(
                    ComboRankingHistory(
                        tracked_app_id=subject.tracked_id,
                        combo=result.combo,
                        locale=key.locale,
                        snapshot_date=day,
                        position=result.position,
                        total_results=result.total_results,
                        trend=result.trend.value if result.trend else None,
                        position_change=result.position_change,
                        checked_at=result.checked_at,
                    )
                )
                await session.commit()
        except _STORE_ERRORS as e:
            logger.warning(
                "History write failed for tracked app %s, combo '%s': %s",
                subject.tracked_id,
                result.combo,
                e,
            )

    async def prune_before(self, day: date) -> int:
        """Delete cache rows with a snapshot date before *day*. Returns the count."""
        async with self._session_maker() as session:
            result = await session.execute(
                delete(ComboRankingCache).where(ComboRankingCache.snapshot_date < day)
            )
            await session.commit()
        deleted = result.rowcount or 0
        logger.info("Pruned %d ranking cache rows older than %s", deleted, day)
        return deleted
