"""Trip aggregate and an in-memory trip store."""
from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from .config import COLD_WEATHER_THRESHOLD_C, AppSettings
from .forecast import WeatherSnapshot
from .route_sampling import ResampleResult
from .timing import RoutePoint, build_timed_route

log = logging.getLogger('pipeline.trip')

STATUS_RAIN = 'rain'
STATUS_COLD = 'cold'
STATUS_GOOD = 'good'


def _now() -> datetime:
    return datetime.now()


def _as_utc(when: datetime) -> datetime:
    return when if when.tzinfo is not None else when.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Trip:
    name: str
    date: date
    start_time: datetime
    arrival_time: datetime
    distance: float  # km
    gpx_file_name: str
    route_points: Tuple[RoutePoint, ...] = ()
    weather_data: Tuple[WeatherSnapshot, ...] = ()
    rain_focus_enabled: bool = False
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def duration(self) -> timedelta:
        return self.arrival_time - self.start_time

    @property
    def average_speed(self) -> float:
        hours = self.duration.total_seconds() / 3600.0
        return self.distance / hours if hours > 0 else 0.0

    def retimed(self, start_time: datetime, arrival_time: datetime) -> "Trip":
        """New start/arrival; route points keep their order and are spread by index."""
        points = build_timed_route(self.route_points, start_time, arrival_time, self.distance)
        return dataclasses.replace(
            self,
            start_time=start_time,
            arrival_time=arrival_time,
            route_points=tuple(points),
            updated_at=_now(),
        )

    def with_route(self, result: ResampleResult) -> "Trip":
        """Swap in a freshly parsed GPX route, timed with this trip's start and arrival."""
        points = build_timed_route(result.points, self.start_time, self.arrival_time, result.distance)
        log.info('[TRIP] replacing route of %s: %d -> %d points', self.name, len(self.route_points), len(points))
        return dataclasses.replace(
            self,
            distance=result.distance,
            gpx_file_name=result.file_label or self.gpx_file_name,
            route_points=tuple(points),
            updated_at=_now(),
        )

    def weather_status(self, settings: Optional[AppSettings] = None) -> Optional[str]:
        """'rain', 'cold' or 'good' for the trip's weather; None without weather data."""
        if not self.weather_data:
            return None
        settings = settings or AppSettings()
        chance_threshold = settings.rain_chance_threshold / 100.0
        high_chance = any(s.chance_of_rain >= chance_threshold for s in self.weather_data)
        wet = any(s.rain_amount >= settings.rain_amount_threshold for s in self.weather_data)
        cold = any(s.temperature < COLD_WEATHER_THRESHOLD_C for s in self.weather_data)

        rule = settings.rain_rule
        if rule == 'CHANCE_ONLY':
            bad = high_chance
        elif rule == 'AMOUNT_ONLY':
            bad = wet
        else:
            bad = high_chance and wet

        if bad:
            return STATUS_RAIN
        if cold:
            return STATUS_COLD
        return STATUS_GOOD

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'name': self.name,
            'date': self.date.isoformat(),
            'start_time': self.start_time.isoformat(),
            'arrival_time': self.arrival_time.isoformat(),
            'distance_km': round(self.distance, 3),
            'average_speed_kmh': round(self.average_speed, 2),
            'gpx_file_name': self.gpx_file_name,
            'route_points': len(self.route_points),
            'weather_points': len(self.weather_data),
            'rain_focus_enabled': self.rain_focus_enabled,
        }


class TripStore:
    def __init__(self) -> None:
        self._trips: Dict[uuid.UUID, Trip] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._trips)

    def all(self) -> List[Trip]:
        with self._lock:
            trips = list(self._trips.values())
        return sorted(trips, key=lambda t: (t.date, t.start_time))

    def add(self, trip: Trip) -> Trip:
        with self._lock:
            self._trips[trip.id] = trip
        log.info('[TRIP] added %s (%s)', trip.name, trip.id)
        return trip

    def update(self, trip: Trip) -> bool:
        with self._lock:
            if trip.id not in self._trips:
                log.warning('[TRIP] update for unknown trip %s', trip.id)
                return False
            self._trips[trip.id] = dataclasses.replace(trip, updated_at=_now())
        return True

    def delete(self, trip_id: uuid.UUID) -> bool:
        with self._lock:
            removed = self._trips.pop(trip_id, None)
        if removed is not None:
            log.info('[TRIP] deleted %s', removed.name)
        return removed is not None

    def get(self, trip_id: uuid.UUID) -> Optional[Trip]:
        with self._lock:
            return self._trips.get(trip_id)

    def trips_on(self, day: date) -> List[Trip]:
        return [t for t in self.all() if t.date == day]

    def _replace_weather(self, trip_id: uuid.UUID, snapshots: Sequence[WeatherSnapshot]) -> bool:
        with self._lock:
            trip = self._trips.get(trip_id)
            if trip is None:
                return False
            self._trips[trip_id] = dataclasses.replace(trip, weather_data=tuple(snapshots), updated_at=_now())
        return True

    def update_weather(self, trip_id: uuid.UUID, snapshots: Sequence[WeatherSnapshot]) -> bool:
        ok = self._replace_weather(trip_id, snapshots)
        if not ok:
            log.warning('[TRIP] weather update for unknown trip %s', trip_id)
        return ok

    def clear_weather(self, trip_id: uuid.UUID) -> bool:
        return self._replace_weather(trip_id, ())

    def cleanup_old_weather(self, older_than: datetime) -> int:
        """
        Drop snapshots whose timestamp is before `older_than`; returns how many were removed.
        Naive timestamps on either side are taken as UTC.
        """
        cutoff = _as_utc(older_than)
        removed = 0
        with self._lock:
            for trip_id, trip in list(self._trips.items()):
                kept = tuple(s for s in trip.weather_data if _as_utc(s.timestamp) >= cutoff)
                if len(kept) != len(trip.weather_data):
                    removed += len(trip.weather_data) - len(kept)
                    self._trips[trip_id] = dataclasses.replace(trip, weather_data=kept)
        if removed:
            log.info('[TRIP] removed %d weather snapshots older than %s', removed, older_than)
        return removed
