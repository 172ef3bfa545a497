"""In-process forecast cache keyed by (lat, lon, hour).

Entries expire `ttl` seconds after insertion. When the cache grows past
`max_entries` the oldest inserted entry is evicted (FIFO, reads do not refresh).
"""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from .config import CACHE_TTL_SECONDS, MAX_CACHE_ENTRIES
from .forecast import WeatherSnapshot

log = logging.getLogger('pipeline.weather.cache')

CacheKey = Tuple[float, float, int]


def hour_floor(when: datetime) -> int:
    """Unix timestamp of `when` rounded down to the hour (naive values are taken as UTC)."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    ts = int(when.timestamp() // 3600) * 3600
    return ts


def cache_key(lat: float, lon: float, when: datetime) -> CacheKey:
    return (round(float(lat), 6), round(float(lon), 6), hour_floor(when))


@dataclass(frozen=True)
class CacheEntry:
    key: CacheKey
    snapshot: WeatherSnapshot
    inserted_at: float


class ForecastCache:
    def __init__(self, ttl: float = CACHE_TTL_SECONDS, max_entries: int = MAX_CACHE_ENTRIES,
                 clock: Callable[[], float] = time.time):
        self.ttl = float(ttl)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: CacheKey) -> Optional[WeatherSnapshot]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            age = self._clock() - entry.inserted_at
            if age < self.ttl:
                return entry.snapshot
            del self._entries[key]
        log.info('[CACHE] expired key=%s age=%.0fs', key, age)
        return None

    def put(self, key: CacheKey, snapshot: WeatherSnapshot) -> None:
        evicted = None
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(key=key, snapshot=snapshot, inserted_at=self._clock())
            if len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
        log.info('[CACHE] stored key=%s', key)
        if evicted is not None:
            log.info('[CACHE] evicted oldest key=%s (limit %d)', evicted, self.max_entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
