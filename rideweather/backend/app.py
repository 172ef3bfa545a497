from flask import Flask, jsonify, request, Response
from typing import Dict, Any, Optional
from datetime import datetime, date, timezone
import os
import threading
import uuid
import logging

from .config import (
    GeocodingConfig,
    RouteSettings,
    WeatherServiceConfig,
    AppSettings,
)
from .errors import CredentialInvalidated, GPXParseError, NoAPIKeyError, FetchCancelledError
from .geocoding import ReverseGeocoder
from .gpx_parser import to_gpx
from .pipeline import (
    build_timed_route_for_result,
    fetch_weather_for_route,
    parse_and_resample,
    reresample,
)
from .route_sampling import ResampleResult, route_geojson
from .trip import Trip, TripStore
from .weather_service import WeatherService

app = Flask(__name__)

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
log = logging.getLogger('pipeline')

ROUTE_SETTINGS = RouteSettings.default_from_env()
APP_SETTINGS = AppSettings()
SERVICE = WeatherService(
    config=WeatherServiceConfig.default_from_env(),
    geocoder=ReverseGeocoder(GeocodingConfig.default_from_env()),
)
STORE = TripStore()

# Uploaded, not yet scheduled routes keyed by route id
ROUTES: Dict[str, ResampleResult] = {}
ROUTES_LOCK = threading.Lock()

STATUS: Dict[str, Any] = {"credential_invalid": False, "credential_invalid_at": None}


def _on_credential_invalidated(event: CredentialInvalidated) -> None:
    log.warning('[STATUS] API key rejected (HTTP %d)', event.status_code)
    STATUS["credential_invalid"] = True
    STATUS["credential_invalid_at"] = event.occurred_at.isoformat()


SERVICE.subscribe(_on_credential_invalidated)


# -------------------- Helpers --------------------
def _error(message: str, status: int, suggestion: Optional[str] = None):
    body: Dict[str, Any] = {"error": message}
    if suggestion:
        body["recovery_suggestion"] = suggestion
    return jsonify(body), status


def _parse_time(raw: Any) -> datetime:
    if not isinstance(raw, str) or not raw:
        raise ValueError('missing timestamp')
    when = datetime.fromisoformat(raw)
    # naive values are UTC so mixed inputs stay comparable
    return when if when.tzinfo is not None else when.replace(tzinfo=timezone.utc)


def _route_summary(route_id: str, result: ResampleResult) -> Dict[str, Any]:
    return {
        "route_id": route_id,
        "name": result.file_label,
        "distance_km": round(result.distance, 3),
        "raw_point_count": result.point_count,
        "spacing_km": result.spacing_km,
        "points": [{"lat": p.latitude, "lon": p.longitude} for p in result.points],
        "segment_distances_km": [round(d, 3) for d in result.segment_distances],
        "route": route_geojson(result.points),
    }


def _point_dict(p) -> Dict[str, Any]:
    return {
        "id": str(p.id),
        "lat": p.latitude,
        "lon": p.longitude,
        "distance_km": round(p.distance_from_start, 3),
        "segment_index": p.segment_index,
        "segment_distance_km": round(p.segment_distance, 3),
        "pass_time": p.estimated_pass_time.isoformat(),
    }


def _get_route(route_id: Any) -> Optional[ResampleResult]:
    with ROUTES_LOCK:
        return ROUTES.get(str(route_id)) if route_id else None


def _get_trip(trip_id: Any) -> Optional[Trip]:
    try:
        return STORE.get(uuid.UUID(str(trip_id)))
    except ValueError:
        return None


# -------------------- Routes --------------------
@app.route('/api/upload_gpx', methods=['POST'])
def upload_gpx():
    f = request.files.get('file')
    if not f:
        return _error("No file uploaded", 400)
    name = f.filename or 'route.gpx'
    if not name.lower().endswith('.gpx'):
        return _error("Only .gpx files allowed", 400)
    try:
        spacing = float(request.form.get('spacing_km') or ROUTE_SETTINGS.spacing_km)
    except ValueError:
        return _error("spacing_km must be a number", 400)
    if spacing <= 0:
        return _error("spacing_km must be positive", 400)
    try:
        result = parse_and_resample(f.read(), spacing, name)
    except GPXParseError as e:
        log.warning('[UPLOAD] %s rejected: %s', name, e.message)
        return _error(e.message, 400, e.recovery_suggestion)
    route_id = uuid.uuid4().hex
    with ROUTES_LOCK:
        ROUTES[route_id] = result
    log.info('[UPLOAD] %s -> %d points over %.2f km', name, len(result.points), result.distance)
    return jsonify(_route_summary(route_id, result))


@app.route('/api/reresample', methods=['POST'])
def api_reresample():
    body = request.get_json(silent=True) or {}
    route_id = body.get('route_id')
    existing = _get_route(route_id)
    if existing is None:
        return _error("Unknown route", 404)
    try:
        spacing = float(body.get('spacing_km'))
    except (TypeError, ValueError):
        return _error("spacing_km must be a number", 400)
    if spacing <= 0:
        return _error("spacing_km must be positive", 400)
    result = reresample(existing, spacing)
    with ROUTES_LOCK:
        ROUTES[str(route_id)] = result
    return jsonify(_route_summary(str(route_id), result))


@app.route('/api/route', methods=['POST'])
def api_route():
    """Schedule an uploaded route: timed route points and a stored trip."""
    body = request.get_json(silent=True) or {}
    result = _get_route(body.get('route_id'))
    if result is None:
        return _error("Unknown route", 404)
    try:
        start = _parse_time(body.get('start'))
        arrival = _parse_time(body.get('arrival'))
    except ValueError as e:
        return _error(f"Invalid start/arrival: {e}", 400)
    if arrival < start:
        return _error("Arrival must not be before start", 400)
    points = build_timed_route_for_result(result, start, arrival)
    trip = Trip(
        name=body.get('name') or result.file_label or 'Trip',
        date=start.date(),
        start_time=start,
        arrival_time=arrival,
        distance=result.distance,
        gpx_file_name=result.file_label,
        route_points=tuple(points),
        rain_focus_enabled=bool(body.get('rain_focus', False)),
    )
    STORE.add(trip)
    return jsonify({"trip": trip.to_dict(), "points": [_point_dict(p) for p in points]})


@app.route('/api/weather', methods=['POST'])
def api_weather():
    body = request.get_json(silent=True) or {}
    trip = _get_trip(body.get('trip_id'))
    if trip is None:
        return _error("Unknown trip", 404)
    if not SERVICE.credentials.get_api_key():
        e = NoAPIKeyError()
        return _error(str(e), 400, e.recovery_suggestion)
    try:
        snapshots = fetch_weather_for_route(trip.route_points, SERVICE)
    except FetchCancelledError as e:
        log.info('[WEATHER] fetch cancelled after %d points', len(e.completed))
        return _error("Weather fetch cancelled", 409)
    STORE.update_weather(trip.id, snapshots)
    updated = STORE.get(trip.id) or trip
    return jsonify({
        "trip": updated.to_dict(),
        "status": updated.weather_status(APP_SETTINGS),
        "weather": [s.to_dict() for s in snapshots],
    })


@app.route('/api/trips', methods=['GET'])
def api_trips():
    raw_day = request.args.get('date')
    if raw_day:
        try:
            trips = STORE.trips_on(date.fromisoformat(raw_day))
        except ValueError:
            return _error("date must be YYYY-MM-DD", 400)
    else:
        trips = STORE.all()
    return jsonify({"trips": [dict(t.to_dict(), status=t.weather_status(APP_SETTINGS)) for t in trips]})


@app.route('/api/trips/<trip_id>/gpx', methods=['GET'])
def api_trip_gpx(trip_id: str):
    trip = _get_trip(trip_id)
    if trip is None:
        return _error("Unknown trip", 404)
    xml = to_gpx(trip.route_points, trip.name)
    return Response(xml, mimetype='application/gpx+xml')


@app.route('/api/status', methods=['GET'])
def api_status():
    return jsonify({**STATUS, "cache_size": SERVICE.cache_size, "reachable": SERVICE.monitor.reachable})


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=True, use_reloader=False)
