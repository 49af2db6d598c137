"""
Rate-limited ranking fetcher.

Resolves a batch of combos into ranking results for one subject:

1. One bulk cache read splits the batch into same-day hits and misses.
2. Each miss is searched upstream under the shared token bucket, the shared
   concurrency cap and the shared circuit breaker, with retries for
   transient failures.
3. Fresh results get a position (1-based index of the subject in the result
   list), a clamped result count and a trend against the newest earlier
   snapshot, and are written through to the cache before being returned.

Per-combo failures become explicit statuses and never abort the batch. An
unreachable cache store degrades to "all misses, no earlier snapshot" for
reads and to a logged failure for writes. The returned outcomes follow the
caller's combo order.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from core.clock import Clock, system_clock
from core.domain.combos import (
    BatchFetchResult,
    Combo,
    ComboOutcome,
    FetchStatus,
    RankingResult,
    SubjectRef,
    Trend,
)
from core.domain.errors import (
    CacheWriteError,
    CircuitOpenError,
    UpstreamPermanentError,
    UpstreamTransientError,
)
from core.interfaces.repositories import CacheKey, RankingCacheRepository
from core.interfaces.services import SearchResponse, SearchService
from services.circuit_breaker import CircuitBreaker
from services.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

DEFAULT_RESULT_CAP = 200


class _DispatchCancelled(Exception):
    """The batch that owned a shared request was cancelled before dispatch."""


@dataclass
class _BatchStats:
    fetched: int = 0
    retries: int = 0
    shared: int = 0
    cache_write_failures: int = 0
    cache_read_failures: int = 0


def compute_position(item_ids: Sequence[str], identifier: str) -> Optional[int]:
    """1-based index of *identifier* in *item_ids*, or None when absent."""
    if not identifier:
        return None
    for index, item_id in enumerate(item_ids, start=1):
        if item_id == identifier:
            return index
    return None


def compute_trend(
    position: Optional[int], previous: Optional[RankingResult]
) -> tuple[Optional[Trend], Optional[int]]:
    """
    Trend and position change against the newest earlier snapshot.

    A positive change means the app moved up (towards position 1).
    """
    previous_position = previous.position if previous else None

    if previous_position is None:
        return (Trend.NEW, None) if position is not None else (None, None)
    if position is None:
        return Trend.LOST, None

    change = previous_position - position
    if change > 0:
        return Trend.UP, change
    if change < 0:
        return Trend.DOWN, change
    return Trend.STABLE, 0


class RankingFetcher:
    """
    Fetches combo rankings for a subject.

    The limiter, breaker and the concurrency cap are shared by every batch
    this fetcher runs, so one instance per process bounds the total load on
    the upstream endpoint regardless of how many batches run at once.
    """

    def __init__(
        self,
        search: SearchService,
        cache: RankingCacheRepository,
        limiter: TokenBucket,
        breaker: CircuitBreaker,
        max_concurrency: int = 10,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        result_cap: int = DEFAULT_RESULT_CAP,
        clock: Clock = system_clock,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.search = search
        self.cache = cache
        self.limiter = limiter
        self.breaker = breaker
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.result_cap = result_cap
        self.clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight: dict[tuple[str, str, str], asyncio.Future] = {}

    def _backoff_delay(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self.backoff_max)
        delay = self.backoff_base * (2 ** attempt) + random.uniform(0, self.backoff_base)
        return min(delay, self.backoff_max)

    async def _dispatch(
        self, term: str, platform: str, locale: str, cancel: Optional[asyncio.Event]
    ) -> SearchResponse:
        """One HTTP attempt under the concurrency cap, breaker and limiter."""
        async with self._semaphore:
            if cancel is not None and cancel.is_set():
                raise _DispatchCancelled()
            if not self.breaker.allow_request():
                raise CircuitOpenError("Circuit breaker is open")

            try:
                await self.limiter.acquire()
                if cancel is not None and cancel.is_set():
                    raise _DispatchCancelled()
                response = await self.search.search(term, platform, locale)
            except UpstreamTransientError:
                self.breaker.record_failure()
                raise
            except UpstreamPermanentError:
                # The endpoint answered; the request itself was bad
                self.breaker.record_success()
                raise
            except BaseException:
                self.breaker.release()
                raise
            self.breaker.record_success()
            return response

    async def _shared_attempt(
        self,
        term: str,
        platform: str,
        locale: str,
        cancel: Optional[asyncio.Event],
        stats: _BatchStats,
    ) -> SearchResponse:
        """Join an identical in-flight query or dispatch a new one."""
        flight_key = (term, platform, locale)
        future = self._in_flight.get(flight_key)
        if future is None:
            future = asyncio.ensure_future(self._dispatch(term, platform, locale, cancel))
            self._in_flight[flight_key] = future
            future.add_done_callback(lambda _: self._in_flight.pop(flight_key, None))
        else:
            stats.shared += 1
        # Shield so one waiter being cancelled does not cancel the others
        return await asyncio.shield(future)

    async def _fetch_one(
        self,
        key: CacheKey,
        subject: SubjectRef,
        combo: Combo,
        previous: Optional[RankingResult],
        cancel: Optional[asyncio.Event],
        stats: _BatchStats,
    ) -> ComboOutcome:
        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                return ComboOutcome(combo=combo, status=FetchStatus.CANCELLED)

            try:
                response = await self._shared_attempt(
                    combo.text, key.platform, key.locale, cancel, stats
                )
            except _DispatchCancelled:
                # Either our own cancellation or another batch's; re-check ours
                continue
            except CircuitOpenError as e:
                return ComboOutcome(
                    combo=combo, status=FetchStatus.CIRCUIT_OPEN, error=str(e)
                )
            except UpstreamTransientError as e:
                if attempt >= self.max_retries:
                    logger.warning(
                        "Giving up on '%s' after %d attempts: %s", combo.text, attempt + 1, e
                    )
                    return ComboOutcome(
                        combo=combo, status=FetchStatus.UPSTREAM_TRANSIENT, error=str(e)
                    )
                delay = self._backoff_delay(attempt, e.retry_after)
                attempt += 1
                stats.retries += 1
                logger.warning(
                    "Transient search error for '%s' (attempt %d/%d), retrying in %.1fs: %s",
                    combo.text,
                    attempt,
                    self.max_retries,
                    delay,
                    e,
                )
                await self._sleep(delay)
                continue
            except UpstreamPermanentError as e:
                logger.warning("Permanent search error for '%s': %s", combo.text, e)
                return ComboOutcome(
                    combo=combo, status=FetchStatus.UPSTREAM_PERMANENT, error=str(e)
                )
            except Exception as e:
                logger.exception("Unexpected error fetching '%s'", combo.text)
                return ComboOutcome(
                    combo=combo, status=FetchStatus.UPSTREAM_PERMANENT, error=str(e)
                )

            stats.fetched += 1
            result = self._to_result(combo, response, subject, previous)
            await self._write_through(key, result, subject, stats)
            return ComboOutcome(combo=combo, status=FetchStatus.OK, result=result)

    def _to_result(
        self,
        combo: Combo,
        response: SearchResponse,
        subject: SubjectRef,
        previous: Optional[RankingResult],
    ) -> RankingResult:
        position = compute_position(response.item_ids, subject.identifier)
        trend, change = compute_trend(position, previous)
        return RankingResult(
            combo=combo.text,
            position=position,
            total_results=max(0, min(response.result_count, self.result_cap)),
            checked_at=self.clock.now(),
            trend=trend,
            position_change=change,
        )

    async def _write_through(
        self, key: CacheKey, result: RankingResult, subject: SubjectRef, stats: _BatchStats
    ) -> None:
        try:
            await self.cache.put(key, result, self.clock.today(), subject)
        except CacheWriteError as e:
            stats.cache_write_failures += 1
            logger.warning("CacheWriteFailed: %s", e)
        except Exception:
            # A fetched result is returned even when the store misbehaves
            stats.cache_write_failures += 1
            logger.exception("CacheWriteFailed: unexpected error caching '%s'", result.combo)

    async def _read_cache(
        self,
        what: str,
        read: Awaitable[dict[str, RankingResult]],
        stats: _BatchStats,
    ) -> dict[str, RankingResult]:
        """Await a cache read, treating a failed read as an empty one."""
        try:
            return await read
        except Exception as e:
            stats.cache_read_failures += 1
            logger.warning("Cache read of %s failed, fetching without it: %s", what, e)
            return {}

    async def fetch_batch(
        self,
        tenant_id: str,
        subject: SubjectRef,
        combos: Sequence[Combo],
        platform: str,
        locale: str,
        cancel: Optional[asyncio.Event] = None,
    ) -> BatchFetchResult:
        """
        Fetch rankings for *combos*, serving same-day cache hits without
        network calls.

        Args:
            tenant_id: Tenant scope of the cache
            subject: Subject resolved once for the whole batch
            combos: Combos to rank, in the order the caller wants back
            platform: Store platform (``ios`` or ``ipad``)
            locale: Storefront country code
            cancel: Set to stop dispatching new requests. In-flight requests
                finish and are still cached.

        Returns:
            BatchFetchResult with one outcome per combo, in input order
        """
        batch_id = uuid4().hex[:12]
        started = time.monotonic()
        key = CacheKey(
            tenant_id=tenant_id,
            subject_identifier=subject.identifier,
            platform=platform,
            locale=locale,
        )
        today = self.clock.today()
        texts = [combo.text for combo in combos]
        stats = _BatchStats()

        cached: dict[str, RankingResult] = {}
        if texts:
            cached = await self._read_cache(
                "cached rankings", self.cache.get_many(key, texts, today), stats
            )
        outcomes: list[Optional[ComboOutcome]] = [None] * len(combos)
        misses: list[int] = []
        for index, combo in enumerate(combos):
            hit = cached.get(combo.text)
            if hit is not None:
                outcomes[index] = ComboOutcome(
                    combo=combo, status=FetchStatus.OK, result=hit, cached=True
                )
            else:
                misses.append(index)

        if misses:
            previous = await self._read_cache(
                "previous snapshots",
                self.cache.get_previous(key, [texts[index] for index in misses], today),
                stats,
            )
            fetched = await asyncio.gather(
                *(
                    self._fetch_one(
                        key,
                        subject,
                        combos[index],
                        previous.get(texts[index]),
                        cancel,
                        stats,
                    )
                    for index in misses
                )
            )
            for index, outcome in zip(misses, fetched):
                outcomes[index] = outcome

        final = [outcome for outcome in outcomes if outcome is not None]
        statuses = [outcome.status for outcome in final]
        batch = BatchFetchResult(
            outcomes=final,
            degraded=FetchStatus.CIRCUIT_OPEN in statuses,
            cancelled=FetchStatus.CANCELLED in statuses,
        )

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Ranking batch %s: %d combos, %d cached, %d fetched, %d ranking, "
            "%d failed, %d retries, %d shared, %d cache write failures, %d cache read failures%s",
            batch_id,
            len(final),
            len(final) - len(misses),
            stats.fetched,
            sum(1 for o in final if o.result is not None and o.result.is_ranking),
            sum(1 for o in final if not o.succeeded),
            stats.retries,
            stats.shared,
            stats.cache_write_failures,
            stats.cache_read_failures,
            " (degraded)" if batch.degraded else "",
            extra={
                "batch_id": batch_id,
                "tenant_id": tenant_id,
                "subject_id": subject.identifier,
                "platform": platform,
                "locale": locale,
                "duration_ms": duration_ms,
            },
        )
        return batch
