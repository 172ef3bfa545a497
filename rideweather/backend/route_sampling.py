import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

EARTH_RADIUS_KM = 6371.0088

log = logging.getLogger('pipeline.sampling')


@dataclass(frozen=True)
class RawSample:
    latitude: float
    longitude: float
    elevation: Optional[float] = None
    timestamp: Optional[datetime] = None
    label: Optional[str] = None

    @property
    def coordinate(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class ResampleResult:
    """Kept points for one spacing, plus the raw samples they were drawn from.

    `distance` is measured over all raw samples and is the authoritative trip
    distance; `segment_distances` are between consecutive kept points.
    """
    distance: float
    point_count: int
    points: Tuple[RawSample, ...]
    segment_distances: Tuple[float, ...]
    spacing_km: float
    raw_samples: Tuple[RawSample, ...] = field(repr=False)
    file_label: str = ''


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute haversine distance between two lat/lon points in kilometers."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def cumulative_distances(samples: Sequence[RawSample]) -> List[float]:
    """Cumulative great-circle distance (km) at each sample; first entry is 0."""
    if not samples:
        return []
    acc = 0.0
    out = [0.0]
    for i in range(1, len(samples)):
        a, b = samples[i - 1], samples[i]
        acc += haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
        out.append(acc)
    return out


def segment_distances(points: Sequence[RawSample]) -> List[float]:
    """Distance (km) between each consecutive pair; empty for fewer than two points."""
    return [
        haversine_km(points[i].latitude, points[i].longitude, points[i + 1].latitude, points[i + 1].longitude)
        for i in range(len(points) - 1)
    ]


def _closest_index(cumulative: Sequence[float], target: float) -> int:
    best_idx = 0
    best_diff = abs(cumulative[0] - target)
    for j in range(1, len(cumulative)):
        diff = abs(cumulative[j] - target)
        if diff < best_diff:
            best_diff = diff
            best_idx = j
    return best_idx


def resample(samples: Sequence[RawSample], spacing_km: float, file_label: str = '') -> ResampleResult:
    """
    Reduce raw samples to representative points spaced roughly `spacing_km` apart.

    Pure function of (samples, spacing_km): the first and last samples are kept,
    intermediate points are the existing samples whose cumulative distance
    is closest to each multiple of the spacing. No coordinates are interpolated.

    Points are deduplicated by exact coordinate, so on a closed loop whose last
    sample equals the first the end point is dropped. The last kept point is then
    an intermediate sample, and timing pins that point to the total distance and
    the arrival time.
    """
    if spacing_km is None or not spacing_km > 0:
        raise ValueError("spacing_km must be a positive number")

    raw = tuple(samples)
    if len(raw) <= 1:
        return ResampleResult(
            distance=0.0,
            point_count=len(raw),
            points=raw,
            segment_distances=(),
            spacing_km=float(spacing_km),
            raw_samples=raw,
            file_label=file_label,
        )

    cumulative = cumulative_distances(raw)
    total = cumulative[-1]

    kept: List[RawSample] = [raw[0]]
    seen = {raw[0].coordinate}

    n = int(math.floor(total / spacing_km))
    for i in range(1, n + 1):
        target = i * spacing_km
        candidate = raw[_closest_index(cumulative, target)]
        if candidate.coordinate not in seen:
            kept.append(candidate)
            seen.add(candidate.coordinate)

    last = raw[-1]
    if last.coordinate not in seen:
        kept.append(last)

    log.info('[SAMPLE] total=%.3f km spacing=%.3f km raw=%d kept=%d', total, spacing_km, len(raw), len(kept))
    return ResampleResult(
        distance=total,
        point_count=len(raw),
        points=tuple(kept),
        segment_distances=tuple(segment_distances(kept)),
        spacing_km=float(spacing_km),
        raw_samples=raw,
        file_label=file_label,
    )


def reresample(existing: ResampleResult, new_spacing_km: float) -> ResampleResult:
    """Resample the retained raw samples of `existing` with a new spacing."""
    log.info('[SAMPLE] reprocessing %s: %d raw points, %d kept, new spacing %.3f km',
             existing.file_label or '<unnamed>', len(existing.raw_samples), len(existing.points), new_spacing_km)
    return resample(existing.raw_samples, new_spacing_km, file_label=existing.file_label)


def route_geojson(samples: Sequence[RawSample]) -> Dict[str, Any]:
    """GeoJSON Feature with the LineString geometry of the route."""
    line_coords = [[s.longitude, s.latitude] for s in samples]
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": line_coords},
        "properties": {},
    }
