"""Runtime configuration read from environment variables.

Each config is a frozen dataclass with a `default_from_env()` constructor; the
module-level constants are the defaults used when a variable is unset.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

log = logging.getLogger('pipeline.config')

ONE_HOUR = 3600.0

OPENWEATHERMAP_ONECALL_URL = "https://api.openweathermap.org/data/3.0/onecall"
NOMINATIM_REVERSE_URL = "https://nominatim.openstreetmap.org/reverse"

MAX_RETRIES = 3
RETRY_DELAY_SECONDS = 2.0
REQUEST_TIMEOUT_SECONDS = 30.0
RESOURCE_TIMEOUT_SECONDS = REQUEST_TIMEOUT_SECONDS * 2
CACHE_TTL_SECONDS = 1800.0
MAX_CACHE_ENTRIES = 100
INTER_POINT_DELAY_SECONDS = 0.5
DEFAULT_SPACING_KM = 10.0
API_KEY_LENGTH = 32

# Degrees; roughly 1-2 km around the original coordinate
FALLBACK_OFFSETS: Tuple[Tuple[float, float], ...] = (
    (0.01, 0.01),
    (-0.01, -0.01),
    (0.02, 0.02),
    (-0.02, -0.02),
)

RAIN_RULES = ('BOTH', 'CHANCE_ONLY', 'AMOUNT_ONLY')
COLD_WEATHER_THRESHOLD_C = 5.0


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning('[CONFIG] ignoring non-numeric %s=%r', name, raw)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class WeatherServiceConfig:
    base_url: str = OPENWEATHERMAP_ONECALL_URL
    max_retries: int = MAX_RETRIES
    retry_delay: float = RETRY_DELAY_SECONDS
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    resource_timeout: float = RESOURCE_TIMEOUT_SECONDS
    cache_ttl: float = CACHE_TTL_SECONDS
    max_cache_entries: int = MAX_CACHE_ENTRIES
    inter_point_delay: float = INTER_POINT_DELAY_SECONDS
    units: str = 'metric'
    language: str = 'en'
    fallback_offsets: Tuple[Tuple[float, float], ...] = FALLBACK_OFFSETS

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError('max_retries must be at least 1')
        if self.units not in ('metric', 'imperial'):
            raise ValueError(f"Unsupported units: {self.units}")

    @staticmethod
    def default_from_env() -> "WeatherServiceConfig":
        units = os.environ.get('RIDEWEATHER_UNITS', 'metric').strip().lower() or 'metric'
        if units not in ('metric', 'imperial'):
            log.warning('[CONFIG] unknown units %r; using metric', units)
            units = 'metric'
        lang = os.environ.get('RIDEWEATHER_LANG', 'en').strip().lower()
        return WeatherServiceConfig(
            base_url=os.environ.get('RIDEWEATHER_WEATHER_URL', OPENWEATHERMAP_ONECALL_URL),
            cache_ttl=_env_float('RIDEWEATHER_CACHE_TTL', CACHE_TTL_SECONDS),
            units=units,
            language='nl' if lang == 'nl' else 'en',
        )


@dataclass(frozen=True)
class GeocodingConfig:
    base_url: str = NOMINATIM_REVERSE_URL
    user_agent: str = 'rideweather/0.1'
    timeout: float = 10.0
    precision: int = 4
    enabled: bool = True
    language: str = 'en'

    @staticmethod
    def default_from_env() -> "GeocodingConfig":
        return GeocodingConfig(
            base_url=os.environ.get('RIDEWEATHER_GEOCODING_URL', NOMINATIM_REVERSE_URL),
            enabled=_env_bool('RIDEWEATHER_GEOCODING', True),
            language='nl' if os.environ.get('RIDEWEATHER_LANG', '').strip().lower() == 'nl' else 'en',
        )


@dataclass(frozen=True)
class RouteSettings:
    spacing_km: float = DEFAULT_SPACING_KM

    @staticmethod
    def default_from_env() -> "RouteSettings":
        spacing = _env_float('RIDEWEATHER_SPACING_KM', DEFAULT_SPACING_KM)
        if spacing <= 0:
            log.warning('[CONFIG] spacing must be positive; using %.1f km', DEFAULT_SPACING_KM)
            spacing = DEFAULT_SPACING_KM
        return RouteSettings(spacing_km=spacing)


@dataclass(frozen=True)
class AppSettings:
    use_metric_units: bool = True
    weather_cache_ttl: float = ONE_HOUR
    rain_rule_type: str = 'BOTH'
    rain_chance_threshold: float = 50.0  # percent
    rain_amount_threshold: float = 0.3  # mm

    @property
    def rain_rule(self) -> str:
        return self.rain_rule_type if self.rain_rule_type in RAIN_RULES else 'BOTH'


# -------------------- Credentials --------------------
class CredentialStore:
    """Key-value credential source; returns None when no key is stored."""

    def get_api_key(self) -> Optional[str]:
        raise NotImplementedError


class EnvCredentialStore(CredentialStore):
    def __init__(self, variable: str = 'OPENWEATHERMAP_API_KEY'):
        self.variable = variable

    def get_api_key(self) -> Optional[str]:
        value = os.environ.get(self.variable, '').strip()
        return value or None


class StaticCredentialStore(CredentialStore):
    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key

    def get_api_key(self) -> Optional[str]:
        return self.api_key or None


def validate_api_key(api_key: Optional[str]) -> bool:
    """An unset key is a valid (unconfigured) state; a set key must look like an OpenWeatherMap key."""
    if not api_key:
        return True
    return len(api_key) == API_KEY_LENGTH
