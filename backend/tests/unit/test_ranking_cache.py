"""
Tests for the SQL ranking cache (SQLite via aiosqlite).
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, UTC
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from core.domain.combos import EphemeralSubject, RankingResult, TrackedSubject, Trend
from core.domain.errors import CacheWriteError
from core.interfaces.repositories import CacheKey
from infrastructure.database.models import ComboRankingCache, ComboRankingHistory
from services.ranking_cache import RankingCache
from conftest import TEST_NOW, refused_session_maker

KEY = CacheKey(tenant_id="org-1", subject_identifier="571800810", platform="ios", locale="us")


def result(combo: str, position=3, checked_at=TEST_NOW, **kwargs) -> RankingResult:
    return RankingResult(
        combo=combo,
        position=position,
        total_results=kwargs.pop("total_results", 120),
        checked_at=checked_at,
        **kwargs,
    )


async def count_rows(session_maker, model) -> int:
    async with session_maker() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestReadWrite:
    """Tests for get/get_many/put."""

    async def test_put_then_get(self, ranking_cache):
        await ranking_cache.put(KEY, result("sleep timer", trend=Trend.UP, position_change=2))

        cached = await ranking_cache.get(KEY, "sleep timer")

        assert cached.position == 3
        assert cached.total_results == 120
        assert cached.trend == Trend.UP
        assert cached.position_change == 2
        assert cached.checked_at == TEST_NOW

    async def test_not_ranking_is_cached(self, ranking_cache):
        await ranking_cache.put(KEY, result("sleep timer", position=None))

        cached = await ranking_cache.get(KEY, "sleep timer")

        assert cached is not None
        assert cached.is_ranking is False

    async def test_miss_returns_none(self, ranking_cache):
        assert await ranking_cache.get(KEY, "sleep timer") is None

    async def test_get_many_returns_only_hits(self, ranking_cache):
        await ranking_cache.put(KEY, result("sleep timer"))
        await ranking_cache.put(KEY, result("meditation sleep", position=9))

        found = await ranking_cache.get_many(
            KEY, ["sleep timer", "meditation sleep", "calm sounds"]
        )

        assert set(found) == {"sleep timer", "meditation sleep"}
        assert found["meditation sleep"].position == 9

    async def test_get_many_empty(self, ranking_cache):
        assert await ranking_cache.get_many(KEY, []) == {}

    async def test_get_many_across_chunks(self, ranking_cache):
        combos = [f"combo {i}" for i in range(520)]
        await ranking_cache.put(KEY, result("combo 7"))
        await ranking_cache.put(KEY, result("combo 515"))

        found = await ranking_cache.get_many(KEY, combos)

        assert set(found) == {"combo 7", "combo 515"}

    async def test_keys_are_isolated(self, ranking_cache):
        await ranking_cache.put(KEY, result("sleep timer"))

        for other in (
            CacheKey("org-2", KEY.subject_identifier, KEY.platform, KEY.locale),
            CacheKey(KEY.tenant_id, "999", KEY.platform, KEY.locale),
            CacheKey(KEY.tenant_id, KEY.subject_identifier, "ipad", KEY.locale),
            CacheKey(KEY.tenant_id, KEY.subject_identifier, KEY.platform, "gb"),
        ):
            assert await ranking_cache.get(other, "sleep timer") is None

    async def test_ephemeral_subject_round_trip(self, ranking_cache, session_maker):
        await ranking_cache.put(
            KEY, result("sleep timer"), subject=EphemeralSubject(KEY.subject_identifier)
        )

        assert await ranking_cache.get(KEY, "sleep timer") is not None
        assert await count_rows(session_maker, ComboRankingHistory) == 0

    async def test_empty_subject_identifier_is_cacheable(self, ranking_cache):
        key = CacheKey("org-1", "", "ios", "us")
        await ranking_cache.put(key, result("sleep timer", position=None))

        assert await ranking_cache.get(key, "sleep timer") is not None


class TestFreshness:
    """Entries are only fresh on the day they were written (UTC)."""

    async def test_entry_expires_at_utc_midnight(self, ranking_cache, fixed_clock):
        fixed_clock.set(datetime(2025, 3, 14, 23, 59, 59, tzinfo=UTC))
        await ranking_cache.put(KEY, result("sleep timer", checked_at=fixed_clock.now()))
        assert await ranking_cache.get(KEY, "sleep timer") is not None

        fixed_clock.set(datetime(2025, 3, 15, 0, 0, 1, tzinfo=UTC))

        assert await ranking_cache.get(KEY, "sleep timer") is None
        assert await ranking_cache.get(KEY, "sleep timer", day=date(2025, 3, 14)) is not None

    async def test_get_previous_returns_newest_older_entry(self, ranking_cache):
        today = TEST_NOW.date()
        await ranking_cache.put(KEY, result("sleep timer", position=12), day=today - timedelta(days=5))
        await ranking_cache.put(KEY, result("sleep timer", position=8), day=today - timedelta(days=1))
        await ranking_cache.put(KEY, result("sleep timer", position=4), day=today)

        previous = await ranking_cache.get_previous(KEY, ["sleep timer", "calm sounds"], today)

        assert set(previous) == {"sleep timer"}
        assert previous["sleep timer"].position == 8

    async def test_prune_before(self, ranking_cache, session_maker):
        today = TEST_NOW.date()
        await ranking_cache.put(KEY, result("sleep timer"), day=today - timedelta(days=40))
        await ranking_cache.put(KEY, result("sleep timer"), day=today)

        deleted = await ranking_cache.prune_before(today - timedelta(days=30))

        assert deleted == 1
        assert await count_rows(session_maker, ComboRankingCache) == 1


class TestUpsert:
    """Last write wins on checked_at."""

    async def test_newer_write_replaces(self, ranking_cache, session_maker):
        await ranking_cache.put(KEY, result("sleep timer", position=5))
        later = TEST_NOW + timedelta(minutes=10)
        await ranking_cache.put(KEY, result("sleep timer", position=2, checked_at=later))

        cached = await ranking_cache.get(KEY, "sleep timer")

        assert cached.position == 2
        assert cached.checked_at == later
        assert await count_rows(session_maker, ComboRankingCache) == 1

    async def test_older_write_does_not_replace(self, ranking_cache):
        await ranking_cache.put(KEY, result("sleep timer", position=2))
        earlier = TEST_NOW - timedelta(minutes=10)
        await ranking_cache.put(KEY, result("sleep timer", position=40, checked_at=earlier))

        cached = await ranking_cache.get(KEY, "sleep timer")

        assert cached.position == 2

    async def test_concurrent_writers_keep_newest(self, ranking_cache, session_maker):
        # Submitted newest first, so arrival order disagrees with checked_at
        writes = [
            ranking_cache.put(
                KEY,
                result("sleep timer", position=n, checked_at=TEST_NOW + timedelta(minutes=n)),
            )
            for n in range(20, 0, -1)
        ]

        outcomes = await asyncio.gather(*writes, return_exceptions=True)

        assert [o for o in outcomes if isinstance(o, Exception)] == []
        cached = await ranking_cache.get(KEY, "sleep timer")
        assert cached.position == 20
        assert cached.checked_at == TEST_NOW + timedelta(minutes=20)
        assert await count_rows(session_maker, ComboRankingCache) == 1


class TestTrackedHistory:
    """Tracked subjects additionally get history rows."""

    async def test_tracked_write_appends_history(
        self, ranking_cache, subject_resolver, session_maker
    ):
        subject = await subject_resolver.track("org-1", KEY.subject_identifier, "ios")

        await ranking_cache.put(KEY, result("sleep timer"), subject=subject)
        await ranking_cache.put(KEY, result("meditation sleep"), subject=subject)

        async with session_maker() as session:
            rows = (await session.execute(select(ComboRankingHistory))).scalars().all()
        assert {row.combo for row in rows} == {"sleep timer", "meditation sleep"}
        assert all(row.tracked_app_id == subject.tracked_id for row in rows)

    async def test_history_failure_does_not_fail_cache_write(
        self, ranking_cache, session_maker, caplog
    ):
        # No tracked_apps row exists, so the history insert violates the foreign key
        subject = TrackedSubject(identifier=KEY.subject_identifier, tracked_id=str(uuid4()))

        with caplog.at_level(logging.WARNING, logger="services.ranking_cache"):
            await ranking_cache.put(KEY, result("sleep timer"), subject=subject)

        assert await ranking_cache.get(KEY, "sleep timer") is not None
        assert await count_rows(session_maker, ComboRankingHistory) == 0
        assert "History write failed" in caplog.text


class TestUnreachableStore:
    """Driver-level connection errors surface as cache errors, not raw OSError."""

    async def test_put_wraps_refused_connection(self, fixed_clock):
        cache = RankingCache(refused_session_maker, clock=fixed_clock)

        with pytest.raises(CacheWriteError) as exc_info:
            await cache.put(KEY, result("sleep timer"))

        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)

    async def test_put_wraps_connect_timeout(self, fixed_clock):
        def timing_out_session_maker():
            raise TimeoutError("connect timed out")

        cache = RankingCache(timing_out_session_maker, clock=fixed_clock)

        with pytest.raises(CacheWriteError):
            await cache.put(KEY, result("sleep timer"))

    async def test_history_refused_connection_is_logged(
        self, session_maker, subject_resolver, fixed_clock, caplog
    ):
        subject = await subject_resolver.track("org-1", KEY.subject_identifier, "ios")
        # First session (the cache upsert) works, the history session is refused
        sessions = iter([session_maker(), refused_session_maker()])
        cache = RankingCache(lambda: next(sessions), clock=fixed_clock)

        with caplog.at_level(logging.WARNING, logger="services.ranking_cache"):
            await cache.put(KEY, result("sleep timer"), subject=subject)

        reader = RankingCache(session_maker, clock=fixed_clock)
        assert await reader.get(KEY, "sleep timer") is not None
        assert "History write failed" in caplog.text
