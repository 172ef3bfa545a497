"""GPX trajectory parser.

Walks the markup as a stream of start/end events and keeps an explicit stack of
contexts (track, segment, route, point) instead of independent in-track /
in-route flags. Point priority: track points (all segments of all tracks in
document order), else standalone waypoints, else route points.

Timestamps are decoded with gpxpy's GPX time parser; exported routes are written
with gpxpy as well.
"""
from __future__ import annotations

import enum
import io
import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

import gpxpy
import gpxpy.gpx
from gpxpy.gpxfield import parse_time

from .config import DEFAULT_SPACING_KM
from .errors import AccessDeniedError, GPXParseError, MalformedInputError, NoTrajectoryDataError
from .route_sampling import RawSample, ResampleResult, resample

log = logging.getLogger('pipeline.gpx')


class _Ctx(enum.Enum):
    DOCUMENT = 'document'
    TRACK = 'trk'
    SEGMENT = 'trkseg'
    ROUTE = 'rte'
    TRACK_POINT = 'trkpt'
    ROUTE_POINT = 'rtept'
    WAYPOINT = 'wpt'
    OTHER = 'other'


_POINT_CONTEXTS = (_Ctx.TRACK_POINT, _Ctx.ROUTE_POINT, _Ctx.WAYPOINT)
_POINT_FIELDS = ('ele', 'time', 'name')


@dataclass
class _PointBuilder:
    lat: Optional[str]
    lon: Optional[str]
    fields: dict = field(default_factory=dict)

    def build(self) -> Optional[RawSample]:
        lat = _to_float(self.lat)
        lon = _to_float(self.lon)
        if lat is None or lon is None:
            return None
        name = (self.fields.get('name') or '').strip()
        return RawSample(
            latitude=lat,
            longitude=lon,
            elevation=_to_float(self.fields.get('ele')),
            timestamp=_to_time(self.fields.get('time')),
            label=name or None,
        )


@dataclass
class _ParseState:
    stack: List[_Ctx] = field(default_factory=list)
    point: Optional[_PointBuilder] = None
    track_points: List[RawSample] = field(default_factory=list)
    route_points: List[RawSample] = field(default_factory=list)
    waypoints: List[RawSample] = field(default_factory=list)

    @property
    def top(self) -> Optional[_Ctx]:
        return self.stack[-1] if self.stack else None

    def context_for(self, tag: str) -> _Ctx:
        parent = self.top
        if parent is None:
            return _Ctx.DOCUMENT
        if tag == 'trk' and parent is _Ctx.DOCUMENT:
            return _Ctx.TRACK
        if tag == 'trkseg' and parent is _Ctx.TRACK:
            return _Ctx.SEGMENT
        if tag == 'trkpt' and parent is _Ctx.SEGMENT:
            return _Ctx.TRACK_POINT
        if tag == 'rte' and parent is _Ctx.DOCUMENT:
            return _Ctx.ROUTE
        if tag == 'rtept' and parent is _Ctx.ROUTE:
            return _Ctx.ROUTE_POINT
        if tag == 'wpt' and parent is _Ctx.DOCUMENT:
            return _Ctx.WAYPOINT
        return _Ctx.OTHER

    def samples(self) -> List[RawSample]:
        if self.track_points:
            return list(self.track_points)
        if self.waypoints:
            return list(self.waypoints)
        return list(self.route_points)


def _local(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _to_float(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _to_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw or not raw.strip():
        return None
    try:
        return parse_time(raw.strip())
    except (gpxpy.gpx.GPXException, ValueError):
        return None


def _on_start(state: _ParseState, elem: ET.Element) -> None:
    ctx = state.context_for(_local(elem.tag))
    if ctx in _POINT_CONTEXTS:
        state.point = _PointBuilder(lat=elem.get('lat'), lon=elem.get('lon'))
    state.stack.append(ctx)


def _on_end(state: _ParseState, elem: ET.Element) -> None:
    ctx = state.stack.pop()
    tag = _local(elem.tag)
    if ctx in _POINT_CONTEXTS:
        sample = state.point.build() if state.point is not None else None
        state.point = None
        if sample is not None:
            if ctx is _Ctx.TRACK_POINT:
                state.track_points.append(sample)
            elif ctx is _Ctx.ROUTE_POINT:
                state.route_points.append(sample)
            else:
                state.waypoints.append(sample)
        elem.clear()
    elif ctx is _Ctx.OTHER and tag in _POINT_FIELDS and state.top in _POINT_CONTEXTS and state.point is not None:
        state.point.fields[tag] = elem.text or ''


def extract_samples(data: bytes) -> List[RawSample]:
    """Decode GPX bytes into the ordered raw samples of the preferred point group."""
    if not data:
        raise MalformedInputError("GPX document is empty")
    state = _ParseState()
    try:
        for event, elem in ET.iterparse(io.BytesIO(data), events=('start', 'end')):
            if event == 'start':
                _on_start(state, elem)
            else:
                _on_end(state, elem)
    except ET.ParseError as e:
        log.warning('[GPX] malformed document: %s', e)
        raise MalformedInputError(f"Failed to parse GPX file: {e}") from e
    log.info('[GPX] tracks=%d waypoints=%d route=%d points',
             len(state.track_points), len(state.waypoints), len(state.route_points))
    return state.samples()


def parse(data: bytes, file_label: str, spacing_km: float = DEFAULT_SPACING_KM) -> ResampleResult:
    """Parse GPX bytes and resample them at `spacing_km`."""
    samples = extract_samples(data)
    if not samples:
        raise NoTrajectoryDataError()
    result = resample(samples, spacing_km, file_label=file_label)
    log.info('[GPX] %s: %d points, %.2f km, %d route points',
             file_label, result.point_count, result.distance, len(result.points))
    return result


def parse_gpx_file(path: Union[str, Path], spacing_km: float = DEFAULT_SPACING_KM) -> ResampleResult:
    path = Path(path)
    try:
        with open(path, 'rb') as f:
            data = f.read()
    except OSError as e:
        log.warning('[GPX] cannot open %s: %s', path, e)
        raise AccessDeniedError() from e
    return parse(data, path.name, spacing_km)


def import_gpx(path: Union[str, Path], spacing_km: float = DEFAULT_SPACING_KM) -> Tuple[Optional[ResampleResult], Optional[str]]:
    """Import helper for user-facing flows: returns (result, None) or (None, message)."""
    path = Path(path)
    if path.suffix.lower() != '.gpx':
        return None, "Select a GPX file (.gpx)"
    try:
        result = parse_gpx_file(path, spacing_km)
    except GPXParseError as e:
        return None, f"{e.message}. {e.recovery_suggestion}"
    if not result.points:
        return None, NoTrajectoryDataError.message
    return result, None


def to_gpx(points: Iterable, name: str = '') -> str:
    """Render route points (RawSample or RoutePoint) as a single-track GPX document."""
    gpx = gpxpy.gpx.GPX()
    track = gpxpy.gpx.GPXTrack(name=name or None)
    gpx.tracks.append(track)
    segment = gpxpy.gpx.GPXTrackSegment()
    track.segments.append(segment)
    for p in points:
        when = getattr(p, 'timestamp', None) or getattr(p, 'estimated_pass_time', None)
        segment.points.append(gpxpy.gpx.GPXTrackPoint(
            latitude=p.latitude,
            longitude=p.longitude,
            elevation=getattr(p, 'elevation', None),
            time=when,
            name=getattr(p, 'label', None),
        ))
    return gpx.to_xml()
