import sys
import json
import logging
import argparse
from datetime import datetime, timedelta
from pathlib import Path

from rideweather.backend.config import RouteSettings, WeatherServiceConfig
from rideweather.backend.errors import GPXParseError
from rideweather.backend.gpx_parser import parse_gpx_file, to_gpx
from rideweather.backend.pipeline import build_timed_route_for_result, fetch_weather_for_route
from rideweather.backend.weather_service import WeatherService

BASE = Path(__file__).resolve().parent
DEBUG_DIR = BASE / 'debug_output'


def _print_route(points) -> None:
    print(f"{'#':>3}  {'lat':>10} {'lon':>10} {'km':>8}  pass time")
    for p in points:
        print(f"{p.segment_index + 1:>3}  {p.latitude:>10.5f} {p.longitude:>10.5f} "
              f"{p.distance_from_start:>8.2f}  {p.estimated_pass_time:%Y-%m-%d %H:%M}")


def _print_weather(snapshots) -> None:
    for i, s in enumerate(snapshots, start=1):
        if s.is_placeholder:
            print(f"POINT {i}: {s.description}")
            continue
        print(f"POINT {i}: {s.place_name}")
        print(f"  {s.description}, {s.temperature:.1f}°, rain {s.chance_of_rain * 100:.0f}% "
              f"{s.rain_amount:.1f} mm, wind {s.wind_speed:.1f} @ {s.wind_direction:.0f}°")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Run the route and weather pipeline on a GPX file')
    parser.add_argument('--gpx', required=True, help='Path to a .gpx file')
    parser.add_argument('--spacing', type=float, default=RouteSettings.default_from_env().spacing_km,
                        help='Distance between route points in km')
    parser.add_argument('--start', help='Start time, ISO 8601 (default: next full hour)')
    parser.add_argument('--arrival', help='Arrival time, ISO 8601 (default: start + 4h)')
    parser.add_argument('--dry-run', action='store_true', help='Skip the weather fetch')
    parser.add_argument('--export', action='store_true', help='Write timed route as GPX into debug_output/')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')

    if args.start:
        start = datetime.fromisoformat(args.start)
    else:
        start = datetime.now().replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    arrival = datetime.fromisoformat(args.arrival) if args.arrival else start + timedelta(hours=4)
    if arrival < start:
        print('[ERROR] Arrival is before start')
        return 2

    print('[STEP] Loading GPX track')
    try:
        result = parse_gpx_file(args.gpx, args.spacing)
    except GPXParseError as e:
        print(f"[ERROR] {e.message}. {e.recovery_suggestion}")
        return 1
    print(f"[STEP] {result.point_count} raw points, {result.distance:.2f} km, "
          f"{len(result.points)} route points at {result.spacing_km:g} km")

    points = build_timed_route_for_result(result, start, arrival)
    _print_route(points)

    if args.export:
        DEBUG_DIR.mkdir(exist_ok=True)
        out = DEBUG_DIR / f"{Path(args.gpx).stem}_timed.gpx"
        out.write_text(to_gpx(points, result.file_label), encoding='utf-8')
        print(f"[STEP] Wrote {out}")

    if args.dry_run:
        return 0

    service = WeatherService(config=WeatherServiceConfig.default_from_env())
    if not service.credentials.get_api_key():
        print('[ERROR] OPENWEATHERMAP_API_KEY is not set; use --dry-run to skip weather')
        return 1
    print('[STEP] Fetching weather')
    snapshots = fetch_weather_for_route(points, service)
    _print_weather(snapshots)
    DEBUG_DIR.mkdir(exist_ok=True)
    with open(DEBUG_DIR / "weather.json", "w", encoding="utf-8") as f:
        json.dump([s.to_dict() for s in snapshots], f, ensure_ascii=False, indent=2)
    return 0


if __name__ == '__main__':
    sys.exit(main())
