from datetime import datetime, timezone
from typing import List

import pytest

from rideweather.backend.config import GeocodingConfig, StaticCredentialStore, WeatherServiceConfig
from rideweather.backend.geocoding import ReverseGeocoder
from rideweather.backend.weather_service import WeatherService

from .helpers import API_KEY


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def ride_start() -> datetime:
    return datetime(2030, 6, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def service(sleeps) -> WeatherService:
    return WeatherService(
        credentials=StaticCredentialStore(API_KEY),
        config=WeatherServiceConfig(),
        geocoder=ReverseGeocoder(GeocodingConfig(enabled=False)),
        sleep=sleeps,
    )
