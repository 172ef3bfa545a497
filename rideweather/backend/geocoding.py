"""Reverse geocoding of route points to a short place name.

Backed by a Nominatim-compatible reverse endpoint. Results, including the
coordinate fallback used when the lookup fails, are cached by a rounded
coordinate string.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

import requests

from .config import GeocodingConfig
from .forecast import UNKNOWN_LOCATION

log = logging.getLogger('pipeline.geocoding')

_LOCALITY_KEYS = ('city', 'town', 'village', 'hamlet', 'municipality')


def format_coordinates(lat: float, lon: float) -> str:
    return f"{lat:.2f}°, {lon:.2f}°"


def format_place_name(address: Dict[str, Any]) -> str:
    """locality, administrative area, country; else sub-locality; else road."""
    components: List[str] = []
    locality = next((address[k] for k in _LOCALITY_KEYS if address.get(k)), None)
    if locality:
        components.append(locality)
    if address.get('state'):
        components.append(address['state'])
    if address.get('country'):
        components.append(address['country'])
    if not components and address.get('suburb'):
        components.append(address['suburb'])
    if not components and address.get('road'):
        components.append(address['road'])
    return ', '.join(components) if components else UNKNOWN_LOCATION


class ReverseGeocoder:
    def __init__(self, config: Optional[GeocodingConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or GeocodingConfig()
        self.session = session or requests.Session()
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _key(self, lat: float, lon: float) -> str:
        p = self.config.precision
        return f"{lat:.{p}f},{lon:.{p}f}"

    def place_name(self, lat: float, lon: float) -> str:
        key = self._key(lat, lon)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        name = self._lookup(lat, lon) if self.config.enabled else None
        if name is None:
            name = format_coordinates(lat, lon)
        with self._lock:
            self._cache[key] = name
        return name

    def _lookup(self, lat: float, lon: float) -> Optional[str]:
        params = {
            'lat': f"{lat:.6f}",
            'lon': f"{lon:.6f}",
            'format': 'jsonv2',
            'accept-language': self.config.language,
        }
        try:
            resp = self.session.get(
                self.config.base_url,
                params=params,
                headers={'User-Agent': self.config.user_agent},
                timeout=self.config.timeout,
            )
            if resp.status_code != 200:
                log.warning('[GEO] HTTP %d for %.4f,%.4f', resp.status_code, lat, lon)
                return None
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            log.warning('[GEO] reverse geocoding failed for %.4f,%.4f: %s', lat, lon, e)
            return None
        address = data.get('address') if isinstance(data, dict) else None
        if not isinstance(address, dict):
            return None
        return format_place_name(address)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
