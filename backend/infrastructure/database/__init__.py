from .connection import (
    Base,
    async_session_maker,
    close_db,
    create_engine,
    engine,
    engine_options,
    get_db,
    init_db,
)

__all__ = [
    "Base",
    "engine",
    "engine_options",
    "create_engine",
    "async_session_maker",
    "get_db",
    "init_db",
    "close_db",
]
