"""Database access: async sessions, raw pool, ORM models."""

from storesync.db.client import (
    close_db,
    close_db_pool,
    get_db_pool,
    get_db_session,
    init_db,
)

__all__ = [
    "close_db",
    "close_db_pool",
    "get_db_pool",
    "get_db_session",
    "init_db",
]
