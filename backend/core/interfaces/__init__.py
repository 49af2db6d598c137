# Interfaces (Abstract Contracts)
# Adapters implement these interfaces
from .repositories import CacheKey, RankingCacheRepository, SubjectRepository
from .services import SearchResponse, SearchService

__all__ = [
    "CacheKey",
    "RankingCacheRepository",
    "SubjectRepository",
    "SearchResponse",
    "SearchService",
]
