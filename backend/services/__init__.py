"""
Service layer for business logic.
"""

from functools import lru_cache

from adapters.search import create_itunes_adapter
from infrastructure.config.settings import settings
from infrastructure.database.connection import async_session_maker
from services.circuit_breaker import CircuitBreaker
from services.combo_engine import ComboRankingEngine, RankingRequest, RankingRun
from services.rate_limiter import TokenBucket
from services.ranking_cache import RankingCache
from services.ranking_fetcher import RankingFetcher
from services.subject_resolver import SubjectResolver


@lru_cache
def get_combo_engine() -> ComboRankingEngine:
    """
    Get singleton combo ranking engine.

    The limiter, breaker and fetcher built here are shared by every request
    in the process.

    Returns:
        Configured ComboRankingEngine instance
    """
    limiter = TokenBucket(
        capacity=settings.search_rate_capacity,
        refill_rate=settings.search_rate_refill_per_second,
    )
    breaker = CircuitBreaker(
        window_seconds=settings.breaker_window_seconds,
        min_calls=settings.breaker_min_calls,
        failure_threshold=settings.breaker_failure_threshold,
        cooldown_seconds=settings.breaker_cooldown_seconds,
    )
    fetcher = RankingFetcher(
        search=create_itunes_adapter(settings),
        cache=RankingCache(async_session_maker),
        limiter=limiter,
        breaker=breaker,
        max_concurrency=settings.search_max_concurrency,
        max_retries=settings.search_max_retries,
        backoff_base=settings.search_backoff_base_seconds,
        backoff_max=settings.search_backoff_max_seconds,
        result_cap=settings.search_result_limit,
    )

    return ComboRankingEngine(
        fetcher=fetcher,
        subjects=SubjectResolver(async_session_maker),
        supported_platforms=settings.supported_platforms_list,
        supported_countries=settings.supported_countries_list,
        per_source_cap=settings.combo_per_source_cap,
        max_per_run=settings.combo_max_per_run,
        max_per_request=settings.combo_max_per_request,
    )


__all__ = [
    "ComboRankingEngine",
    "RankingRequest",
    "RankingRun",
    "get_combo_engine",
]
