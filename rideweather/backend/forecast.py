"""OpenWeatherMap One Call response models and forecast bucket selection."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .errors import NoWeatherDataError, WeatherDecodeError

log = logging.getLogger('pipeline.weather.forecast')

UNKNOWN_ICON = 'questionmark.circle'
UNKNOWN_DESCRIPTION = 'Unknown'
NO_DATA_DESCRIPTION = 'No weather data available'
UNKNOWN_LOCATION = 'Unknown location'


@dataclass(frozen=True)
class WeatherCondition:
    description: str
    icon: str
    main: str = ''
    id: Optional[int] = None


@dataclass(frozen=True)
class ForecastBucket:
    dt: float  # unix seconds
    temp: float
    humidity: int  # percent 0..100
    wind_speed: float
    wind_deg: float
    weather: List[WeatherCondition]
    pop: float = 0.0
    rain_1h: Optional[float] = None

    @property
    def time(self) -> datetime:
        return datetime.fromtimestamp(self.dt, tz=timezone.utc)


@dataclass(frozen=True)
class OneCallResponse:
    lat: Optional[float] = None
    lon: Optional[float] = None
    timezone: Optional[str] = None
    current: Optional[ForecastBucket] = None
    hourly: List[ForecastBucket] = field(default_factory=list)


@dataclass(frozen=True)
class WeatherDataPoint:
    temperature: float
    chance_of_rain: float
    rain_amount: float
    description: str
    humidity: float  # 0..1
    wind_speed: float
    wind_direction: float
    icon: str

    @staticmethod
    def from_bucket(bucket: ForecastBucket) -> "WeatherDataPoint":
        first = bucket.weather[0] if bucket.weather else None
        return WeatherDataPoint(
            temperature=bucket.temp,
            chance_of_rain=bucket.pop,
            rain_amount=bucket.rain_1h or 0.0,
            description=first.description if first else UNKNOWN_DESCRIPTION,
            humidity=bucket.humidity / 100.0,
            wind_speed=bucket.wind_speed,
            wind_direction=float(bucket.wind_deg),
            icon=first.icon if first else UNKNOWN_ICON,
        )


@dataclass(frozen=True)
class WeatherSnapshot:
    latitude: float
    longitude: float
    temperature: float
    humidity: float
    wind_speed: float
    wind_direction: float
    chance_of_rain: float
    rain_amount: float
    description: str
    icon: str
    timestamp: datetime
    place_name: str
    is_placeholder: bool = False
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @staticmethod
    def from_data_point(data: WeatherDataPoint, latitude: float, longitude: float,
                        timestamp: datetime, place_name: str) -> "WeatherSnapshot":
        return WeatherSnapshot(
            latitude=latitude,
            longitude=longitude,
            temperature=data.temperature,
            humidity=data.humidity,
            wind_speed=data.wind_speed,
            wind_direction=data.wind_direction,
            chance_of_rain=data.chance_of_rain,
            rain_amount=data.rain_amount,
            description=data.description,
            icon=data.icon,
            timestamp=timestamp,
            place_name=place_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "wind_speed": self.wind_speed,
            "wind_direction": self.wind_direction,
            "chance_of_rain": self.chance_of_rain,
            "rain_amount": self.rain_amount,
            "description": self.description,
            "icon": self.icon,
            "timestamp": self.timestamp.isoformat(),
            "place_name": self.place_name,
            "is_placeholder": self.is_placeholder,
        }


def placeholder_snapshot(latitude: float, longitude: float, timestamp: datetime,
                         place_name: str = UNKNOWN_LOCATION) -> WeatherSnapshot:
    return WeatherSnapshot(
        latitude=latitude,
        longitude=longitude,
        temperature=0.0,
        humidity=0.0,
        wind_speed=0.0,
        wind_direction=0.0,
        chance_of_rain=0.0,
        rain_amount=0.0,
        description=NO_DATA_DESCRIPTION,
        icon=UNKNOWN_ICON,
        timestamp=timestamp,
        place_name=place_name,
        is_placeholder=True,
    )


# -------------------- Decoding --------------------
def _decode_bucket(raw: Any, where: str) -> ForecastBucket:
    if not isinstance(raw, dict):
        raise WeatherDecodeError(f"{where} is not an object")
    try:
        conditions = [
            WeatherCondition(
                description=str(c.get('description', UNKNOWN_DESCRIPTION)),
                icon=str(c.get('icon', UNKNOWN_ICON)),
                main=str(c.get('main', '')),
                id=c.get('id'),
            )
            for c in (raw.get('weather') or [])
            if isinstance(c, dict)
        ]
        rain = raw.get('rain')
        rain_1h = float(rain['1h']) if isinstance(rain, dict) and rain.get('1h') is not None else None
        dt = float(raw['dt'])
        datetime.fromtimestamp(dt, tz=timezone.utc)  # rejects dt outside the platform time_t range
        return ForecastBucket(
            dt=dt,
            temp=float(raw['temp']),
            humidity=int(raw['humidity']),
            wind_speed=float(raw['wind_speed']),
            wind_deg=float(raw['wind_deg']),
            weather=conditions,
            pop=float(raw.get('pop') or 0.0),
            rain_1h=rain_1h,
        )
    except KeyError as e:
        raise WeatherDecodeError(f"{where} missing field {e}") from e
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise WeatherDecodeError(f"{where} has an invalid value: {e}") from e


def decode_onecall(payload: Union[Dict[str, Any], Any]) -> OneCallResponse:
    """Decode a One Call JSON payload; `current` and `hourly` are both optional."""
    if not isinstance(payload, dict):
        raise WeatherDecodeError("response body is not a JSON object")
    current_raw = payload.get('current')
    hourly_raw = payload.get('hourly') or []
    if not isinstance(hourly_raw, list):
        raise WeatherDecodeError("'hourly' is not a list")
    current = _decode_bucket(current_raw, 'current') if current_raw is not None else None
    hourly = [_decode_bucket(h, f'hourly[{i}]') for i, h in enumerate(hourly_raw)]
    return OneCallResponse(
        lat=payload.get('lat'),
        lon=payload.get('lon'),
        timezone=payload.get('timezone'),
        current=current,
        hourly=hourly,
    )


# -------------------- Selection --------------------
def _epoch(when: datetime) -> float:
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when.timestamp()


def select_bucket(target_time: datetime, response: OneCallResponse) -> ForecastBucket:
    """
    Pick the forecast bucket for `target_time`:
    earliest hourly bucket at or after the target, else the last hourly bucket,
    else the current conditions. Raises NoWeatherDataError when none exist.
    """
    target = _epoch(target_time)
    if response.hourly:
        upcoming = [b for b in response.hourly if b.dt >= target]
        if upcoming:
            bucket = min(upcoming, key=lambda b: b.dt)
            log.debug('[FORECAST] hourly bucket dt=%d for target %s (+%.0f min)',
                      bucket.dt, target_time, (bucket.dt - target) / 60.0)
            return bucket
        last = max(response.hourly, key=lambda b: b.dt)
        log.info('[FORECAST] no hourly bucket after %s; using last available dt=%d', target_time, last.dt)
        return last
    if response.current is not None:
        log.info('[FORECAST] no hourly forecast; using current conditions')
        return response.current
    log.warning('[FORECAST] response has neither hourly nor current data')
    raise NoWeatherDataError()


def select_forecast(target_time: datetime, response: OneCallResponse) -> WeatherDataPoint:
    return WeatherDataPoint.from_bucket(select_bucket(target_time, response))
