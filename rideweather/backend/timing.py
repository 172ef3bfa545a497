"""Assign distances and estimated pass times to route points.

Two distance policies are kept apart on purpose:
- `build_timed_route` spreads the total distance evenly over the point indices
  (used when retiming an existing trip where only ordinal position is known).
- `build_timed_route_from_distances` uses measured per-segment distances
  (used right after resampling a freshly imported track).
Pass times are always proportional to distance; the last point is pinned to the
total distance and the arrival time.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .route_sampling import ResampleResult, haversine_km

log = logging.getLogger('pipeline.timing')


@dataclass(frozen=True)
class RoutePoint:
    latitude: float
    longitude: float
    distance_from_start: float  # km
    estimated_pass_time: datetime
    segment_index: int
    segment_distance: float  # km to the next point, 0 for the last
    id: uuid.UUID = field(default_factory=uuid.uuid4)


def pass_time(start: datetime, arrival: datetime, distance_from_start: float, total_distance: float) -> datetime:
    if total_distance <= 0:
        return start
    travel = arrival - start
    return start + travel * (distance_from_start / total_distance)


def index_distances(count: int, total_distance: float) -> List[float]:
    """Evenly split `total_distance` over `count - 1` equal segments."""
    if count <= 0:
        return []
    if count == 1:
        return [0.0]
    per_segment = total_distance / (count - 1)
    distances = [per_segment * i for i in range(count)]
    distances[-1] = total_distance
    return distances


def _assemble(points: Sequence, distances: Sequence[float], start: datetime, arrival: datetime,
              total_distance: float) -> List[RoutePoint]:
    route: List[RoutePoint] = []
    last = len(points) - 1
    for i, p in enumerate(points):
        d = distances[i]
        route.append(RoutePoint(
            latitude=p.latitude,
            longitude=p.longitude,
            distance_from_start=d,
            estimated_pass_time=pass_time(start, arrival, d, total_distance),
            segment_index=i,
            segment_distance=(distances[i + 1] - d) if i < last else 0.0,
        ))
    # Zero-length routes keep every point at the start time
    if len(route) > 1 and total_distance > 0:
        tail = route[-1]
        if tail.distance_from_start != total_distance or tail.estimated_pass_time != arrival:
            log.debug('[TIMING] pinning last point %.6f km -> %.6f km', tail.distance_from_start, total_distance)
        route[-1] = RoutePoint(
            latitude=tail.latitude,
            longitude=tail.longitude,
            distance_from_start=total_distance,
            estimated_pass_time=arrival,
            segment_index=tail.segment_index,
            segment_distance=0.0,
            id=tail.id,
        )
    return route


def build_timed_route(points: Sequence, start: datetime, arrival: datetime, total_distance: float) -> List[RoutePoint]:
    """Index-proportional distances, distance-proportional pass times."""
    if not points:
        return []
    distances = index_distances(len(points), total_distance)
    route = _assemble(points, distances, start, arrival, total_distance)
    log.info('[TIMING] %d points over %.2f km, %s -> %s', len(route), total_distance, start, arrival)
    return route


def build_timed_route_from_distances(points: Sequence, segment_distances: Sequence[float], start: datetime,
                                     arrival: datetime, total_distance: Optional[float] = None) -> List[RoutePoint]:
    """Geometry-proportional variant using measured distances between consecutive points."""
    if not points:
        return []
    if len(segment_distances) != max(0, len(points) - 1):
        raise ValueError("segment_distances must have one entry per consecutive pair of points")
    cumulative = [0.0]
    for d in segment_distances:
        cumulative.append(cumulative[-1] + d)
    if total_distance is None:
        total_distance = cumulative[-1]
    if len(cumulative) > 1:
        cumulative[-1] = total_distance
    return _assemble(points, cumulative, start, arrival, total_distance)


def build_timed_route_for_result(result: ResampleResult, start: datetime, arrival: datetime) -> List[RoutePoint]:
    return build_timed_route_from_distances(result.points, result.segment_distances, start, arrival, result.distance)


def build_timed_route_with_speed(points: Sequence, start: datetime, average_speed: float) -> List[RoutePoint]:
    """Pass times from a constant average speed (km/h) over measured distances."""
    route: List[RoutePoint] = []
    total = 0.0
    for i, p in enumerate(points):
        if i > 0:
            prev = points[i - 1]
            total += haversine_km(prev.latitude, prev.longitude, p.latitude, p.longitude)
        if i < len(points) - 1:
            nxt = points[i + 1]
            seg = haversine_km(p.latitude, p.longitude, nxt.latitude, nxt.longitude)
        else:
            seg = 0.0
        when = start + timedelta(hours=total / average_speed) if average_speed > 0 else start
        route.append(RoutePoint(
            latitude=p.latitude,
            longitude=p.longitude,
            distance_from_start=total,
            estimated_pass_time=when,
            segment_index=i,
            segment_distance=seg,
        ))
    return route
