from datetime import datetime, timedelta, timezone

import pytest

from rideweather.backend.errors import NoWeatherDataError, WeatherDecodeError
from rideweather.backend.forecast import (
    NO_DATA_DESCRIPTION,
    UNKNOWN_ICON,
    decode_onecall,
    placeholder_snapshot,
    select_bucket,
    select_forecast,
)

from .helpers import bucket, onecall_payload

T0 = datetime(2030, 6, 1, 8, 0, tzinfo=timezone.utc)


def _response(hours, current=True):
    payload = {
        'hourly': [bucket(T0 + timedelta(hours=h), temp=float(h)) for h in hours],
    }
    if current:
        payload['current'] = bucket(T0, temp=-1.0)
    return decode_onecall(payload)


def test_earliest_bucket_at_or_after_target():
    response = _response([0, 1, 2, 3])
    assert select_bucket(T0 + timedelta(minutes=20), response).temp == 1.0
    assert select_bucket(T0 + timedelta(hours=2), response).temp == 2.0


def test_bucket_order_in_payload_does_not_matter():
    response = _response([3, 1, 2, 0])
    assert select_bucket(T0 + timedelta(minutes=30), response).temp == 1.0


def test_target_after_all_buckets_uses_last():
    response = _response([0, 1, 2])
    assert select_bucket(T0 + timedelta(hours=10), response).temp == 2.0


def test_no_hourly_falls_back_to_current():
    response = _response([])
    assert select_bucket(T0 + timedelta(hours=5), response).temp == -1.0


def test_no_hourly_and_no_current_raises():
    with pytest.raises(NoWeatherDataError):
        select_forecast(T0, _response([], current=False))


def test_naive_target_treated_as_utc():
    response = _response([0, 1, 2])
    assert select_bucket(datetime(2030, 6, 1, 8, 30), response).temp == 1.0


def test_data_point_normalizes_humidity_and_rain():
    payload = onecall_payload(T0, hours=2)
    payload['hourly'][1]['rain'] = {'1h': 1.4}
    data = select_forecast(T0 + timedelta(minutes=10), decode_onecall(payload))
    assert data.humidity == pytest.approx(0.6)
    assert data.rain_amount == pytest.approx(1.4)
    assert data.chance_of_rain == pytest.approx(0.1)
    assert data.description == 'light clouds'
    assert data.icon == '02d'


def test_missing_conditions_use_unknown_icon():
    b = bucket(T0)
    b['weather'] = []
    data = select_forecast(T0, decode_onecall({'hourly': [b]}))
    assert data.icon == UNKNOWN_ICON
    assert data.rain_amount == 0.0


@pytest.mark.parametrize('payload', [
    [],
    {'hourly': {'dt': 1}},
    {'hourly': [{'dt': 1, 'temp': 2}]},
    {'current': {'dt': 'soon', 'temp': 1, 'humidity': 1, 'wind_speed': 1, 'wind_deg': 1}},
    {'current': {'dt': 1, 'temp': 1, 'humidity': float('inf'), 'wind_speed': 1, 'wind_deg': 1}},
    {'hourly': [{'dt': 10 ** 20, 'temp': 1, 'humidity': 1, 'wind_speed': 1, 'wind_deg': 1}]},
])
def test_decode_rejects_bad_payloads(payload):
    with pytest.raises(WeatherDecodeError):
        decode_onecall(payload)


def test_placeholder_snapshot():
    snap = placeholder_snapshot(45.0, 5.0, T0)
    assert snap.is_placeholder
    assert snap.description == NO_DATA_DESCRIPTION
    assert snap.icon == 'questionmark.circle'
    assert snap.place_name == 'Unknown location'
    assert (snap.temperature, snap.humidity, snap.chance_of_rain, snap.rain_amount) == (0.0, 0.0, 0.0, 0.0)
    assert snap.to_dict()['is_placeholder'] is True
