import pytest

from rideweather.backend.route_sampling import (
    RawSample,
    cumulative_distances,
    haversine_km,
    reresample,
    resample,
    route_geojson,
)

from .helpers import DEG_PER_10KM, meridian_track


def _samples(coords):
    return [RawSample(lat, lon) for lat, lon in coords]


def test_haversine_ten_km_along_meridian():
    assert haversine_km(45.0, 5.0, 45.0 + DEG_PER_10KM, 5.0) == pytest.approx(10.0, abs=1e-3)
    assert haversine_km(45.0, 5.0, 45.0, 5.0) == 0.0


def test_four_samples_over_thirty_km_keep_all_points():
    result = resample(_samples(meridian_track(4)), 10.0)
    assert len(result.points) == 4
    assert result.distance == pytest.approx(30.0, abs=0.01)
    assert [round(d) for d in result.segment_distances] == [10, 10, 10]


def test_dense_track_keeps_closest_samples():
    # 1 km steps over 30 km
    coords = [(45.0 + i * DEG_PER_10KM / 10, 5.0) for i in range(31)]
    result = resample(_samples(coords), 10.0)
    assert [s.latitude for s in result.points] == [coords[i][0] for i in (0, 10, 20, 30)]
    assert result.point_count == 31


def test_spacing_beyond_total_keeps_first_and_last():
    samples = _samples(meridian_track(6))
    result = resample(samples, 500.0)
    assert result.points == (samples[0], samples[-1])
    assert len(result.segment_distances) == 1


def test_single_and_empty_input_returned_unchanged():
    one = _samples([(45.0, 5.0)])
    result = resample(one, 10.0)
    assert result.points == tuple(one)
    assert result.distance == 0.0
    assert resample([], 10.0).points == ()


def test_non_positive_spacing_rejected():
    with pytest.raises(ValueError):
        resample(_samples(meridian_track(3)), 0)


def test_duplicate_coordinates_are_kept_once():
    coords = [(45.0, 5.0), (45.0, 5.0), (45.0 + DEG_PER_10KM, 5.0), (45.0 + DEG_PER_10KM, 5.0)]
    result = resample(_samples(coords), 5.0)
    assert [s.coordinate for s in result.points] == [coords[0], coords[2]]


def test_total_distance_independent_of_spacing():
    samples = _samples([(45.0 + i * 0.013, 5.0 + (i % 3) * 0.01) for i in range(80)])
    totals = {resample(samples, spacing).distance for spacing in (1.0, 2.5, 7.0, 40.0)}
    assert len(totals) == 1
    assert totals.pop() == pytest.approx(cumulative_distances(samples)[-1])


def test_resample_is_deterministic():
    samples = _samples([(45.0 + i * 0.011, 5.0 + i * 0.004) for i in range(120)])
    assert resample(samples, 3.0) == resample(samples, 3.0)


def test_reresample_back_to_original_spacing():
    samples = _samples([(45.0 + i * 0.011, 5.0 + i * 0.004) for i in range(120)])
    original = resample(samples, 5.0, file_label='ride.gpx')
    coarse = reresample(original, 20.0)
    assert len(coarse.points) < len(original.points)
    assert coarse.file_label == 'ride.gpx'
    restored = reresample(coarse, 5.0)
    assert restored.points == original.points
    assert restored.distance == original.distance


def test_route_geojson_uses_lon_lat_order():
    feature = route_geojson(_samples([(45.0, 5.0), (45.1, 5.2)]))
    assert feature['geometry']['coordinates'] == [[5.0, 45.0], [5.2, 45.1]]
