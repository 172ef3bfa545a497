from datetime import timedelta

from rideweather import debug_pipeline
from rideweather.backend.config import OPENWEATHERMAP_ONECALL_URL
from rideweather.backend.pipeline import (
    build_timed_route,
    fetch_weather_for_route,
    parse_and_resample,
    reresample,
)

from .helpers import gpx_document, meridian_track, onecall_payload


def test_end_to_end(requests_mock, service, ride_start):
    result = parse_and_resample(gpx_document(track=meridian_track(4)), 10.0, 'ride.gpx')
    assert len(result.points) == 4

    route = build_timed_route(result.points, ride_start, ride_start + timedelta(hours=3), result.distance)
    assert route[-1].estimated_pass_time == ride_start + timedelta(hours=3)
    assert route[-1].distance_from_start == result.distance

    requests_mock.get(OPENWEATHERMAP_ONECALL_URL, json=onecall_payload(ride_start, hours=6))
    snapshots = fetch_weather_for_route(route, service)
    assert len(snapshots) == len(route)
    assert not any(s.is_placeholder for s in snapshots)


def test_reresample_keeps_total_distance():
    result = parse_and_resample(gpx_document(track=meridian_track(11)), 10.0)
    coarse = reresample(result, 35.0)
    assert len(coarse.points) < len(result.points)
    assert coarse.distance == result.distance


def test_debug_cli_dry_run(tmp_path, capsys):
    gpx = tmp_path / 'ride.gpx'
    gpx.write_bytes(gpx_document(track=meridian_track(4)))
    code = debug_pipeline.main(['--gpx', str(gpx), '--spacing', '10',
                                '--start', '2030-06-01T08:00', '--arrival', '2030-06-01T11:00', '--dry-run'])
    assert code == 0
    out = capsys.readouterr().out
    assert '4 route points' in out
    assert '2030-06-01 11:00' in out


def test_debug_cli_rejects_reversed_times(tmp_path):
    gpx = tmp_path / 'ride.gpx'
    gpx.write_bytes(gpx_document(track=meridian_track(4)))
    argv = ['--gpx', str(gpx), '--start', '2030-06-01T11:00', '--arrival', '2030-06-01T08:00', '--dry-run']
    assert debug_pipeline.main(argv) == 2


def test_debug_cli_missing_file(tmp_path):
    assert debug_pipeline.main(['--gpx', str(tmp_path / 'none.gpx'), '--dry-run']) == 1
