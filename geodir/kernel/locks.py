"""Per-key asyncio critical sections.

Work on one key is serialized while different keys never contend. Rating
writes use one slot per entry id.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Hashable


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class KeyedLock:
    """An arena of locks keyed by identifier.

    Slots are created on first use and dropped when the last holder/waiter
    leaves, so the arena does not grow with the number of keys ever seen.
    """

    def __init__(self) -> None:
        self._slots: dict[Hashable, _Slot] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = _Slot()
            self._slots[key] = slot
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0 and self._slots.get(key) is slot:
                del self._slots[key]

    def is_held(self, key: Hashable) -> bool:
        slot = self._slots.get(key)
        return bool(slot and slot.lock.locked())

    def __len__(self) -> int:
        return len(self._slots)
