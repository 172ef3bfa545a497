from datetime import datetime

import pytest

from rideweather.backend.route_sampling import RawSample, resample
from rideweather.backend.timing import (
    build_timed_route,
    build_timed_route_for_result,
    build_timed_route_from_distances,
    build_timed_route_with_speed,
    pass_time,
)

from .helpers import DEG_PER_10KM, meridian_track

START = datetime(2030, 6, 1, 10, 0)
ARRIVAL = datetime(2030, 6, 1, 11, 0)


def _points(n):
    return [RawSample(lat, lon) for lat, lon in meridian_track(n)]


def test_quarter_distance_passes_at_quarter_time():
    route = build_timed_route(_points(5), START, ARRIVAL, 40.0)
    assert route[1].distance_from_start == pytest.approx(10.0)
    assert route[1].estimated_pass_time == datetime(2030, 6, 1, 10, 15)


def test_endpoints_are_exact():
    route = build_timed_route(_points(7), START, ARRIVAL, 33.333333)
    assert route[0].distance_from_start == 0
    assert route[0].estimated_pass_time == START
    assert route[-1].distance_from_start == 33.333333
    assert route[-1].estimated_pass_time == ARRIVAL
    assert route[-1].segment_distance == 0.0


def test_segment_indices_and_distances_monotonic():
    route = build_timed_route(_points(6), START, ARRIVAL, 50.0)
    assert [p.segment_index for p in route] == list(range(6))
    distances = [p.distance_from_start for p in route]
    assert distances == sorted(distances)
    assert all(p.segment_distance == pytest.approx(10.0) for p in route[:-1])


def test_zero_distance_keeps_start_time():
    route = build_timed_route(_points(3), START, ARRIVAL, 0.0)
    assert all(p.estimated_pass_time == START for p in route)
    assert pass_time(START, ARRIVAL, 5.0, 0.0) == START


def test_empty_and_single_point_routes():
    assert build_timed_route([], START, ARRIVAL, 10.0) == []
    (only,) = build_timed_route(_points(1), START, ARRIVAL, 10.0)
    assert only.distance_from_start == 0.0
    assert only.estimated_pass_time == START


def test_geometry_proportional_uses_measured_segments():
    pts = _points(3)
    route = build_timed_route_from_distances(pts, [10.0, 30.0], START, ARRIVAL)
    assert [p.distance_from_start for p in route] == [0.0, 10.0, 40.0]
    assert route[1].estimated_pass_time == datetime(2030, 6, 1, 10, 15)
    assert route[-1].estimated_pass_time == ARRIVAL


def test_geometry_proportional_rejects_mismatched_segments():
    with pytest.raises(ValueError):
        build_timed_route_from_distances(_points(3), [10.0], START, ARRIVAL)


def test_timed_route_for_result_pins_raw_total():
    coords = [(45.0 + i * DEG_PER_10KM / 4, 5.0 + (0.01 if i % 2 else 0.0)) for i in range(9)]
    result = resample([RawSample(lat, lon) for lat, lon in coords], 10.0)
    route = build_timed_route_for_result(result, START, ARRIVAL)
    assert route[-1].distance_from_start == result.distance
    assert route[-1].estimated_pass_time == ARRIVAL
    assert len(route) == len(result.points)


def test_speed_based_timing():
    route = build_timed_route_with_speed(_points(3), START, 20.0)
    assert (route[1].estimated_pass_time - START).total_seconds() == pytest.approx(1800, abs=2)
    assert route[2].distance_from_start == pytest.approx(20.0, abs=1e-3)


def test_speed_based_timing_without_speed():
    route = build_timed_route_with_speed(_points(3), START, 0.0)
    assert all(p.estimated_pass_time == START for p in route)


def test_closed_loop_pins_last_kept_point_to_arrival():
    corner = (45.0 + DEG_PER_10KM, 5.0)
    far = (45.0 + DEG_PER_10KM, 5.127)
    result = resample([RawSample(*c) for c in [(45.0, 5.0), corner, far, (45.0, 5.0)]], 10.0)
    assert [p.coordinate for p in result.points] == [(45.0, 5.0), corner, far]

    route = build_timed_route_for_result(result, START, ARRIVAL)
    assert route[-1].latitude == far[0]
    assert route[-1].distance_from_start == result.distance
    assert route[-1].estimated_pass_time == ARRIVAL
