"""WeatherService: sequential, cache-first forecast retrieval for route points.
- Memory cache keyed by (lat, lon, hour), TTL + FIFO size limit
- Bounded retry with a fixed delay; 401 and 429 fail fast
- Reachability breaker that rejects calls while the network looks down
- Batch fetch with perturbed-coordinate fallback and placeholder snapshots
"""
from __future__ import annotations

import dataclasses
import logging
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional, Sequence, TypeVar

import requests

from .config import CredentialStore, EnvCredentialStore, WeatherServiceConfig
from .errors import (
    CredentialInvalidated,
    FetchCancelledError,
    InvalidAPIKeyError,
    NetworkError,
    NoAPIKeyError,
    RateLimitExceededError,
    WeatherAPIError,
    WeatherDecodeError,
    WeatherError,
    WeatherTimeoutError,
    is_retryable,
)
from .forecast import WeatherSnapshot, decode_onecall, placeholder_snapshot, select_forecast
from .geocoding import ReverseGeocoder
from .weather_cache import ForecastCache, cache_key

log = logging.getLogger('pipeline.weather.service')

T = TypeVar('T')
EventCallback = Callable[[CredentialInvalidated], None]

_DNS_MARKERS = ('name or service not known', 'temporary failure in name resolution',
                'nodename nor servname', 'getaddrinfo failed', 'name resolution')
_OFFLINE_MARKERS = ('network is unreachable', '[errno 101]', '[errno 51]')
_DROPPED_MARKERS = ('connection aborted', 'connection reset', 'remotedisconnected')


class ReachabilityMonitor:
    """Network reachability flag; an unreachable state clears itself after `recheck_after` seconds."""

    def __init__(self, recheck_after: float = 30.0, clock: Callable[[], float] = time.time):
        self.recheck_after = float(recheck_after)
        self._clock = clock
        self._unreachable_until = 0.0
        self._lock = threading.Lock()

    @property
    def reachable(self) -> bool:
        with self._lock:
            return self._clock() >= self._unreachable_until

    def mark_unreachable(self) -> None:
        with self._lock:
            self._unreachable_until = self._clock() + self.recheck_after
        log.warning('[NET] network marked unreachable for %.0fs', self.recheck_after)

    def mark_reachable(self) -> None:
        with self._lock:
            was_down = self._unreachable_until > self._clock()
            self._unreachable_until = 0.0
        if was_down:
            log.info('[NET] network reachable again')


def translate_request_error(exc: requests.RequestException) -> WeatherError:
    if isinstance(exc, requests.Timeout):
        return WeatherTimeoutError(str(exc))
    if isinstance(exc, requests.exceptions.SSLError):
        return NetworkError('ssl_error', str(exc))
    if isinstance(exc, requests.ConnectionError):
        text = str(exc).lower()
        if any(m in text for m in _DNS_MARKERS):
            return NetworkError('dns_failure', str(exc))
        if any(m in text for m in _OFFLINE_MARKERS):
            return NetworkError('no_connection', str(exc))
        if any(m in text for m in _DROPPED_MARKERS):
            return NetworkError('connection_lost', str(exc))
        return NetworkError('server_unreachable', str(exc))
    return NetworkError('unknown', str(exc))


class WeatherService:
    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        config: Optional[WeatherServiceConfig] = None,
        geocoder: Optional[ReverseGeocoder] = None,
        session: Optional[requests.Session] = None,
        monitor: Optional[ReachabilityMonitor] = None,
        cache: Optional[ForecastCache] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.credentials = credentials or EnvCredentialStore()
        self.config = config or WeatherServiceConfig()
        self.session = session or requests.Session()
        self.geocoder = geocoder or ReverseGeocoder(session=self.session)
        self.monitor = monitor or ReachabilityMonitor(clock=clock)
        self.cache = cache or ForecastCache(self.config.cache_ttl, self.config.max_cache_entries, clock=clock)
        self._sleep = sleep
        self._clock = clock
        self._subscribers: List[EventCallback] = []

    # -------------------- Events --------------------
    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for credential events; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return _unsubscribe

    def _emit(self, event: CredentialInvalidated) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                log.exception('[EVENT] subscriber failed for %s', type(event).__name__)

    # -------------------- Request --------------------
    def build_params(self, lat: float, lon: float, api_key: str) -> dict:
        return {
            'lat': f"{lat:.6f}",
            'lon': f"{lon:.6f}",
            'appid': api_key,
            'units': self.config.units,
            'lang': self.config.language,
            'exclude': 'daily,alerts,minutely',
            'mode': 'json',
        }

    def _perform_fetch(self, lat: float, lon: float, target_time: datetime, api_key: str) -> WeatherSnapshot:
        params = self.build_params(lat, lon, api_key)
        log.info('[API] GET %s lat=%s lon=%s units=%s lang=%s',
                 self.config.base_url, params['lat'], params['lon'], params['units'], params['lang'])
        started = self._clock()
        try:
            resp = self.session.get(self.config.base_url, params=params, timeout=self.config.request_timeout)
        except requests.RequestException as e:
            raise translate_request_error(e) from e
        if self._clock() - started > self.config.resource_timeout:
            raise WeatherTimeoutError(f"exceeded {self.config.resource_timeout:.0f}s")
        self.monitor.mark_reachable()

        status = resp.status_code
        if status == 401:
            log.error('[API] 401 unauthorized; API key rejected')
            self._emit(CredentialInvalidated(status_code=401))
            raise InvalidAPIKeyError()
        if status == 429:
            log.warning('[API] 429 rate limited')
            raise RateLimitExceededError()
        if 500 <= status <= 599:
            raise WeatherAPIError(status, "Server error")
        if status != 200:
            raise WeatherAPIError(status, resp.text or None)

        try:
            payload = resp.json()
        except ValueError as e:
            log.error('[API] undecodable body: %.200s', resp.text)
            raise WeatherDecodeError(str(e)) from e
        response = decode_onecall(payload)
        log.info('[API] response current=%s hourly=%d', response.current is not None, len(response.hourly))

        data = select_forecast(target_time, response)
        place = self.geocoder.place_name(lat, lon)
        return WeatherSnapshot.from_data_point(data, lat, lon, target_time, place)

    def _with_retry(self, operation: Callable[[], T], cancel: Optional[threading.Event] = None) -> T:
        attempts = self.config.max_retries
        last_error: Optional[WeatherError] = None
        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise FetchCancelledError()
            try:
                return operation()
            except WeatherError as e:
                last_error = e
                if not is_retryable(e):
                    raise
                if attempt < attempts:
                    log.warning('[RETRY] attempt %d/%d failed: %s; retrying in %.1fs',
                                attempt, attempts, e, self.config.retry_delay)
                    self._sleep(self.config.retry_delay)
        assert last_error is not None
        if isinstance(last_error, NetworkError) and last_error.kind in ('no_connection', 'dns_failure'):
            self.monitor.mark_unreachable()
        raise last_error

    # -------------------- Single point --------------------
    def fetch_at(self, lat: float, lon: float, target_time: datetime,
                 cancel: Optional[threading.Event] = None) -> WeatherSnapshot:
        """Forecast for one coordinate at `target_time` (cache, retry, no fallback)."""
        api_key = self.credentials.get_api_key()
        if not api_key:
            raise NoAPIKeyError()
        if not self.monitor.reachable:
            raise NetworkError('no_connection')

        key = cache_key(lat, lon, target_time)
        cached = self.cache.get(key)
        if cached is not None:
            log.info('[CACHE] memory hit key=%s', key)
            return cached

        snapshot = self._with_retry(lambda: self._perform_fetch(lat, lon, target_time, api_key), cancel)
        self.cache.put(key, snapshot)
        return snapshot

    def fetch_for_point(self, point, target_time: Optional[datetime] = None,
                        cancel: Optional[threading.Event] = None) -> WeatherSnapshot:
        when = target_time or point.estimated_pass_time
        return self.fetch_at(point.latitude, point.longitude, when, cancel)

    # -------------------- Batch --------------------
    def _try_fallback(self, point, target_time: datetime,
                      cancel: Optional[threading.Event]) -> Optional[WeatherSnapshot]:
        for i, (dlat, dlon) in enumerate(self.config.fallback_offsets, start=1):
            lat, lon = point.latitude + dlat, point.longitude + dlon
            log.info('[FALLBACK] probe %d/%d at %.5f,%.5f', i, len(self.config.fallback_offsets), lat, lon)
            try:
                snapshot = self.fetch_at(lat, lon, target_time, cancel)
            except FetchCancelledError:
                raise
            except WeatherError as e:
                log.warning('[FALLBACK] probe %d failed: %s', i, e)
                continue
            # Report the forecast at the route point's own coordinates
            return dataclasses.replace(snapshot, latitude=point.latitude, longitude=point.longitude)
        return None

    def fetch_for_trip(self, points: Sequence, cancel: Optional[threading.Event] = None) -> List[WeatherSnapshot]:
        """
        One snapshot per route point, in input order. Points are fetched one at a
        time with a pause between successful calls. A failing point is retried at
        perturbed coordinates and finally replaced by a placeholder snapshot.
        Raises FetchCancelledError (with the completed snapshots) when `cancel` is set.
        """
        snapshots: List[WeatherSnapshot] = []
        total = len(points)
        log.info('[BATCH] fetching weather for %d route points', total)
        for index, point in enumerate(points):
            if cancel is not None and cancel.is_set():
                log.info('[BATCH] cancelled before point %d/%d', index + 1, total)
                raise FetchCancelledError(snapshots)
            target = point.estimated_pass_time
            try:
                snapshot = self.fetch_for_point(point, target, cancel)
            except FetchCancelledError as e:
                raise FetchCancelledError(snapshots) from e
            except WeatherError as e:
                log.warning('[BATCH] point %d/%d failed: %s', index + 1, total, e)
                try:
                    fallback = self._try_fallback(point, target, cancel)
                except FetchCancelledError as cancelled:
                    raise FetchCancelledError(snapshots) from cancelled
                if fallback is None:
                    log.warning('[BATCH] no fallback data for point %d; using placeholder', index + 1)
                    fallback = placeholder_snapshot(point.latitude, point.longitude, target)
                snapshots.append(fallback)
                continue
            snapshots.append(snapshot)
            if index < total - 1 and self.config.inter_point_delay > 0:
                self._sleep(self.config.inter_point_delay)
        log.info('[BATCH] completed %d snapshots (%d placeholders)',
                 len(snapshots), sum(1 for s in snapshots if s.is_placeholder))
        return snapshots

    # -------------------- Cache --------------------
    @property
    def cache_size(self) -> int:
        return len(self.cache)

    def clear_cache(self) -> None:
        self.cache.clear()
        log.info('[CACHE] cleared')
