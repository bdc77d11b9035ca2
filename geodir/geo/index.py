"""Versioned spatial index over subscription bounding boxes.

Layout: a stack of uniform grids (level k splits the globe into 2**k rows by
2**k columns). Each rectangle lives on the deepest level where it touches at
most 2x2 cells, in every cell it touches. A point query therefore looks up one
cell per level and checks exact containment only for boxes of comparable
size, which keeps lookups at O(levels + candidates).

Concurrency: writers serialize on a short `threading.Lock` and publish a new
immutable `IndexSnapshot`; only the level maps touched by a write are
copied. Readers grab the current snapshot reference and never block writers.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from geodir.geo.types import LAT_MIN, LNG_MIN, MapBbox, Rect

Cell = tuple[int, int]


@dataclass(frozen=True, slots=True)
class IndexedBox:
    key: str
    user_id: str
    rect: Rect


def _axis_cell(value: float, origin: float, span: float, cells: int) -> int:
    idx = math.floor((value - origin) / span * cells)
    return min(max(idx, 0), cells - 1)


def _cell_of(level: int, lat: float, lng: float) -> Cell:
    cells = 1 << level
    return (
        _axis_cell(lat, LAT_MIN, 180.0, cells),
        _axis_cell(lng, LNG_MIN, 360.0, cells),
    )


def _placement(rect: Rect, max_level: int) -> tuple[int, list[Cell]]:
    """Pick the deepest level where `rect` spans at most two cells per axis."""
    for level in range(max_level, -1, -1):
        row_lo, col_lo = _cell_of(level, rect.south, rect.west)
        row_hi, col_hi = _cell_of(level, rect.north, rect.east)
        if row_hi - row_lo <= 1 and col_hi - col_lo <= 1:
            return level, [
                (row, col)
                for row in range(row_lo, row_hi + 1)
                for col in range(col_lo, col_hi + 1)
            ]
    # Level 0 is a single cell, so the loop always returns.
    raise AssertionError("unreachable")


@dataclass(frozen=True)
class IndexSnapshot:
    version: int
    levels: tuple[Mapping[Cell, tuple[IndexedBox, ...]], ...]
    size: int

    def query_point(self, lat: float, lng: float) -> list[IndexedBox]:
        """Return boxes containing the point, one per key."""
        hits: dict[str, IndexedBox] = {}
        for level, cells in enumerate(self.levels):
            if not cells:
                continue
            bucket = cells.get(_cell_of(level, lat, lng))
            if not bucket:
                continue
            for box in bucket:
                if box.key not in hits and box.rect.contains(lat, lng):
                    hits[box.key] = box
        return list(hits.values())


_Placed = tuple[int, Cell, IndexedBox]


class SpatialIndex:
    """Point-in-rectangle index keyed by subscription id."""

    def __init__(self, *, max_level: int = 8) -> None:
        if max_level < 0:
            raise ValueError("max_level must be >= 0")
        self._max_level = max_level
        self._lock = threading.Lock()
        self._placements: dict[str, tuple[_Placed, ...]] = {}
        empty: Mapping[Cell, tuple[IndexedBox, ...]] = MappingProxyType({})
        self._snapshot = IndexSnapshot(
            version=0,
            levels=tuple(empty for _ in range(max_level + 1)),
            size=0,
        )

    @property
    def version(self) -> int:
        return self._snapshot.version

    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def query_point(self, lat: float, lng: float) -> list[IndexedBox]:
        return self._snapshot.query_point(lat, lng)

    def insert(self, key: str, user_id: str, bbox: MapBbox) -> None:
        """Insert or replace the box registered under `key`."""
        self.insert_many([(key, user_id, bbox)])

    def insert_many(self, items: Iterable[tuple[str, str, MapBbox]]) -> None:
        additions: dict[str, tuple[_Placed, ...]] = {}
        for key, user_id, bbox in items:
            placed: list[_Placed] = []
            for rect in bbox.parts():
                level, cells = _placement(rect, self._max_level)
                box = IndexedBox(key=key, user_id=user_id, rect=rect)
                placed.extend((level, cell, box) for cell in cells)
            additions[key] = tuple(placed)
        if additions:
            self._apply(additions=additions, removals=set(additions))

    def remove(self, key: str) -> bool:
        return self.remove_many([key]) > 0

    def remove_many(self, keys: Iterable[str]) -> int:
        wanted = set(keys)
        if not wanted:
            return 0
        return self._apply(additions={}, removals=wanted)

    def __len__(self) -> int:
        return self._snapshot.size

    def __contains__(self, key: object) -> bool:
        return key in self._placements

    def _apply(self, *, additions: dict[str, tuple[_Placed, ...]], removals: set[str]) -> int:
        with self._lock:
            current = self._snapshot
            staged: dict[int, dict[Cell, tuple[IndexedBox, ...]]] = {}

            def level_map(level: int) -> dict[Cell, tuple[IndexedBox, ...]]:
                if level not in staged:
                    staged[level] = dict(current.levels[level])
                return staged[level]

            removed = 0
            for key in removals:
                placed = self._placements.pop(key, None)
                if placed is None:
                    continue
                removed += 1
                for level, cell, _box in placed:
                    cells = level_map(level)
                    remaining = tuple(b for b in cells.get(cell, ()) if b.key != key)
                    if remaining:
                        cells[cell] = remaining
                    else:
                        cells.pop(cell, None)

            for key, placed in additions.items():
                self._placements[key] = placed
                for level, cell, box in placed:
                    cells = level_map(level)
                    cells[cell] = cells.get(cell, ()) + (box,)

            if not staged:
                return removed

            levels = list(current.levels)
            for level, cells in staged.items():
                levels[level] = MappingProxyType(cells)
            self._snapshot = IndexSnapshot(
                version=current.version + 1,
                levels=tuple(levels),
                size=len(self._placements),
            )
            return removed
