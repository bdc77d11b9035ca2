"""Bbox Matcher: which users care about a change event."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable

from geodir.events.types import ChangeEvent
from geodir.geo.index import IndexSnapshot


@dataclass(frozen=True)
class SubscriberTarget:
    user_id: str
    subscription_ids: tuple[str, ...]


class BboxMatcher:
    """Point query against the registry's current index snapshot.

    Boxes are closed on both axes: a point on an edge or corner matches.
    """

    def __init__(self, snapshot: Callable[[], IndexSnapshot]) -> None:
        self._snapshot = snapshot

    def match(self, event: ChangeEvent) -> frozenset[SubscriberTarget]:
        hits = self._snapshot().query_point(event.lat, event.lng)
        by_user: dict[str, list[str]] = defaultdict(list)
        for box in hits:
            by_user[box.user_id].append(box.key)
        return frozenset(
            SubscriberTarget(user_id=user_id, subscription_ids=tuple(sorted(keys)))
            for user_id, keys in by_user.items()
        )
