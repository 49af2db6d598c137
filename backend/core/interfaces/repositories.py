"""Repository interfaces for data access."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ..domain.combos import RankingResult, SubjectRef


@dataclass(frozen=True)
class CacheKey:
    """Everything but the combo and day that scopes a cache entry."""

    tenant_id: str
    subject_identifier: str
    platform: str
    locale: str


class RankingCacheRepository(ABC):
    """Abstract day-scoped store of combo ranking results.

    Reads default to the current day of the repository's clock, which is the
    freshness rule: only entries whose snapshot date equals today are served.
    """

    @abstractmethod
    async def get(
        self, key: CacheKey, combo: str, day: Optional[date] = None
    ) -> Optional[RankingResult]:
        """Get the entry for one combo on one day."""
        ...

    @abstractmethod
    async def get_many(
        self, key: CacheKey, combos: list[str], day: Optional[date] = None
    ) -> dict[str, RankingResult]:
        """Get the entries for many combos on one day, keyed by combo text."""
        ...

    @abstractmethod
    async def get_previous(
        self, key: CacheKey, combos: list[str], before: date
    ) -> dict[str, RankingResult]:
        """Get the most recent entry strictly before *before* for each combo."""
        ...

    @abstractmethod
    async def put(
        self,
        key: CacheKey,
        result: RankingResult,
        day: Optional[date] = None,
        subject: Optional[SubjectRef] = None,
    ) -> None:
        """Upsert one entry (last write wins on checked_at).

        Raises:
            CacheWriteError: If the cache row could not be written
        """
        ...


class SubjectRepository(ABC):
    """Abstract lookup of durably tracked subjects."""

    @abstractmethod
    async def resolve(self, tenant_id: str, identifier: str, platform: str) -> SubjectRef:
        """Return a TrackedSubject when a row exists, else an EphemeralSubject."""
        ...
