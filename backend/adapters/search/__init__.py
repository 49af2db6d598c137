# Search Adapters
# iTunes Search API integration

from .itunes_adapter import (
    PLATFORM_ENTITIES,
    ITunesSearchAdapter,
    create_itunes_adapter,
    parse_retry_after,
)

__all__ = [
    "ITunesSearchAdapter",
    "PLATFORM_ENTITIES",
    "create_itunes_adapter",
    "parse_retry_after",
]
