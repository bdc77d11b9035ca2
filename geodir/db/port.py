"""Port for raw SQL access.

Entry, rating, subscription, token, event and dispatch repositories take a
`RawQueryPool` rather than the asyncpg pool type, so unit tests can pass the
`mock_db_pool` fixture and the API and worker can share a single pool.
"""

from __future__ import annotations

from typing import Any, Protocol


class RawQueryPool(Protocol):
    def acquire(self) -> Any:
        """Return an async context manager yielding an asyncpg-style connection."""
        ...
