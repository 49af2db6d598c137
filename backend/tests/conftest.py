"""
Pytest configuration and shared fixtures for backend tests.
"""

import asyncio
import sys
from pathlib import Path

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import UTC, date, datetime
from typing import AsyncGenerator, Optional, Union

from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Import after path is set
from core.clock import FixedClock
from core.combo_model import StrengthTier
from core.domain.combos import Combo, Provenance, RankingResult, SourceKind, SubjectRef
from core.domain.errors import CacheWriteError
from core.interfaces.repositories import CacheKey, RankingCacheRepository
from core.interfaces.services import SearchResponse, SearchService
from infrastructure.database.connection import get_db
from infrastructure.database.models import Base
from services.circuit_breaker import CircuitBreaker
from services.combo_engine import ComboRankingEngine
from services.rate_limiter import TokenBucket
from services.ranking_cache import RankingCache
from services.ranking_fetcher import RankingFetcher
from services.subject_resolver import SubjectResolver


TEST_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=UTC)


# ============================================================================
# Fakes
# ============================================================================


SearchOutcome = Union[SearchResponse, Exception]


class FakeSearchService(SearchService):
    """
    Scripted search endpoint.

    ``responses`` maps a term to one outcome or to a list consumed one call at
    a time (the last entry repeats). Unknown terms return ``default``.
    Tracks concurrent calls so tests can assert the concurrency cap.
    """

    def __init__(
        self,
        responses: Optional[dict[str, Union[SearchOutcome, list[SearchOutcome]]]] = None,
        default: Optional[SearchOutcome] = None,
        delay: float = 0.0,
    ):
        self.responses = responses or {}
        self.default = default or SearchResponse(result_count=42, item_ids=("111", "222", "333"))
        self.delay = delay
        self.calls: list[tuple[str, str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def _next(self, term: str) -> SearchOutcome:
        scripted = self.responses.get(term, self.default)
        if isinstance(scripted, list):
            return scripted.pop(0) if len(scripted) > 1 else scripted[0]
        return scripted

    async def search(self, term: str, platform: str, locale: str) -> SearchResponse:
        self.calls.append((term, platform, locale))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            outcome = self._next(term)
        finally:
            self.in_flight -= 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def terms(self) -> list[str]:
        return [term for term, _, _ in self.calls]


class InMemoryRankingCache(RankingCacheRepository):
    """Dict-backed cache keyed like the SQL table."""

    def __init__(self, clock: FixedClock):
        self.clock = clock
        self.rows: dict[tuple, RankingResult] = {}
        self.puts: list[tuple[CacheKey, RankingResult, Optional[SubjectRef]]] = []
        self.fail_writes = False

    def _row_key(self, key: CacheKey, combo: str, day: date) -> tuple:
        return (key.tenant_id, key.subject_identifier, key.platform, key.locale, combo, day)

    async def get(self, key, combo, day=None):
        return self.rows.get(self._row_key(key, combo, day or self.clock.today()))

    async def get_many(self, key, combos, day=None):
        day = day or self.clock.today()
        return {
            combo: self.rows[self._row_key(key, combo, day)]
            for combo in combos
            if self._row_key(key, combo, day) in self.rows
        }

    async def get_previous(self, key, combos, before):
        found = {}
        for (tenant, subject, platform, locale, combo, day), result in sorted(
            self.rows.items(), key=lambda item: item[0][5]
        ):
            if (tenant, subject, platform, locale) != (
                key.tenant_id, key.subject_identifier, key.platform, key.locale
            ):
                continue
            if combo in combos and day < before:
                found[combo] = result
        return found

    async def put(self, key, result, day=None, subject=None):
        if self.fail_writes:
            raise CacheWriteError("simulated write failure")
        self.rows[self._row_key(key, result.combo, day or self.clock.today())] = result
        self.puts.append((key, result, subject))


class _RefusedSession:
    """Session context whose connection is refused, the way asyncpg reports it."""

    async def __aenter__(self):
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")

    async def __aexit__(self, *exc_info):
        return False


def refused_session_maker() -> _RefusedSession:
    """Session factory for a database that is down."""
    return _RefusedSession()


async def no_sleep(delay: float) -> None:
    """Stand-in for asyncio.sleep that only yields control."""
    await asyncio.sleep(0)


def make_combo(
    text: str,
    tier: StrengthTier = StrengthTier.PRIMARY_CONTIGUOUS,
    sources: frozenset = frozenset({SourceKind.TITLE}),
    contiguous: bool = True,
) -> Combo:
    return Combo(
        tokens=tuple(text.split()),
        tier=tier,
        provenance=Provenance(sources=sources, contiguous=contiguous),
    )


def make_fetcher(
    search: SearchService,
    cache: RankingCacheRepository,
    clock: FixedClock,
    **overrides,
) -> RankingFetcher:
    options = {
        "limiter": TokenBucket(capacity=10_000, refill_rate=10_000.0),
        "breaker": CircuitBreaker(window_seconds=60, min_calls=5, cooldown_seconds=60),
        "max_concurrency": 10,
        "max_retries": 3,
        "backoff_base": 0.0,
        "backoff_max": 30.0,
        "clock": clock,
        "sleep": no_sleep,
    }
    options.update(overrides)
    return RankingFetcher(search=search, cache=cache, **options)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fixed_clock() -> FixedClock:
    return FixedClock(TEST_NOW)


@pytest.fixture
def fake_search() -> FakeSearchService:
    return FakeSearchService()


@pytest.fixture
async def db_engine(tmp_path):
    """
    Test database engine.

    A file database with NullPool gives every session its own connection, so
    concurrent cache writes behave like they do against a real server.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )

    # SQLite leaves foreign keys off unless asked, per connection
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def ranking_cache(session_maker, fixed_clock) -> RankingCache:
    return RankingCache(session_maker, clock=fixed_clock)


@pytest.fixture
def subject_resolver(session_maker) -> SubjectResolver:
    return SubjectResolver(session_maker)


@pytest.fixture
def combo_engine(fake_search, ranking_cache, subject_resolver, fixed_clock) -> ComboRankingEngine:
    """Engine wired to the fake search endpoint and the SQLite cache."""
    return ComboRankingEngine(
        fetcher=make_fetcher(fake_search, ranking_cache, fixed_clock),
        subjects=subject_resolver,
        supported_platforms=["ios", "ipad"],
        supported_countries=["us", "gb", "de"],
        per_source_cap=500,
        max_per_run=1500,
        max_per_request=500,
    )


@pytest.fixture
async def async_client(
    db_session: AsyncSession, combo_engine: ComboRankingEngine
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    # Import app here to avoid circular imports
    from main import app
    from api.dependencies import get_engine

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_engine] = lambda: combo_engine

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def tenant_headers() -> dict:
    return {"X-Organization-Id": "org-test"}
