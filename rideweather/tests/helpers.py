"""Builders for GPX documents and One Call payloads used across the tests."""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

# Latitude step of 10 km along a meridian for the haversine radius in route_sampling
DEG_PER_10KM = 0.0899322

API_KEY = 'a' * 32


def gpx_document(track: Iterable[Tuple[float, float]] = (), waypoints: Iterable[Tuple[float, float]] = (),
                 route: Iterable[Tuple[float, float]] = (), extra: str = '') -> bytes:
    def pts(tag, coords):
        return ''.join(f'<{tag} lat="{lat}" lon="{lon}"></{tag}>' for lat, lon in coords)

    track = list(track)
    route = list(route)
    body = pts('wpt', waypoints)
    if track:
        body += f'<trk><name>Track</name><trkseg>{pts("trkpt", track)}</trkseg></trk>'
    if route:
        body += f'<rte><name>Route</name>{pts("rtept", route)}</rte>'
    doc = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">'
        f'{body}{extra}</gpx>'
    )
    return doc.encode('utf-8')


def meridian_track(count: int, start_lat: float = 45.0, lon: float = 5.0) -> List[Tuple[float, float]]:
    return [(start_lat + i * DEG_PER_10KM, lon) for i in range(count)]


def bucket(dt: datetime, temp: float = 15.0, pop: float = 0.1, rain: Optional[float] = None,
           description: str = 'light clouds', icon: str = '02d') -> dict:
    b = {
        'dt': int(dt.timestamp()),
        'temp': temp,
        'humidity': 60,
        'wind_speed': 3.5,
        'wind_deg': 220,
        'pop': pop,
        'weather': [{'id': 801, 'main': 'Clouds', 'description': description, 'icon': icon}],
    }
    if rain is not None:
        b['rain'] = {'1h': rain}
    return b


def onecall_payload(start: datetime, hours: int = 48, temp: float = 15.0) -> dict:
    base = int(start.timestamp()) // 3600 * 3600
    hourly = [bucket(datetime.fromtimestamp(base + h * 3600, tz=timezone.utc), temp=temp + h * 0.1)
              for h in range(hours)]
    return {
        'lat': 45.0,
        'lon': 5.0,
        'timezone': 'Europe/Paris',
        'current': bucket(start, temp=temp),
        'hourly': hourly,
    }
