"""Postgres access for geodir: asyncpg pool, SQLAlchemy engine, table models."""

from .client import close_db, close_db_pool, get_db_pool, get_db_session, init_db
from .port import RawQueryPool

__all__ = [
    "RawQueryPool",
    "close_db",
    "close_db_pool",
    "get_db_pool",
    "get_db_session",
    "init_db",
]
