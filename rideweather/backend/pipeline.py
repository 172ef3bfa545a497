"""Public surface of the route ingestion and weather annotation pipeline.

    bytes -> parse_and_resample -> ResampleResult
          -> build_timed_route -> [RoutePoint]
          -> fetch_weather_for_route -> [WeatherSnapshot]
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import List, Optional, Sequence

from . import route_sampling, timing
from .config import DEFAULT_SPACING_KM
from .forecast import WeatherSnapshot
from .gpx_parser import parse
from .route_sampling import ResampleResult
from .timing import RoutePoint
from .weather_service import WeatherService

log = logging.getLogger('pipeline')


def parse_and_resample(data: bytes, spacing_km: float = DEFAULT_SPACING_KM, file_label: str = '') -> ResampleResult:
    return parse(data, file_label, spacing_km)


def reresample(existing: ResampleResult, new_spacing_km: float) -> ResampleResult:
    return route_sampling.reresample(existing, new_spacing_km)


def build_timed_route(points: Sequence, start: datetime, arrival: datetime, total_distance: float) -> List[RoutePoint]:
    """Index-proportional timing, the path used when retiming an existing trip."""
    return timing.build_timed_route(points, start, arrival, total_distance)


def build_timed_route_for_result(result: ResampleResult, start: datetime, arrival: datetime) -> List[RoutePoint]:
    """Geometry-proportional timing from the measured segment distances of a fresh import."""
    return timing.build_timed_route_for_result(result, start, arrival)


def fetch_weather_for_route(route_points: Sequence[RoutePoint], service: Optional[WeatherService] = None,
                            cancel: Optional[threading.Event] = None) -> List[WeatherSnapshot]:
    """One snapshot per route point; failures degrade to fallback or placeholder snapshots."""
    service = service or WeatherService()
    return service.fetch_for_trip(route_points, cancel)
