"""Error and event types shared by the route and weather pipeline.

Parse errors abort a single import. Weather errors are raised per point and are
absorbed by the batch fetch in `weather_service.WeatherService.fetch_for_trip`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


# -------------------- GPX import --------------------
class GPXParseError(Exception):
    message = "Failed to parse GPX file"
    recovery_suggestion = "Try importing the file again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class MalformedInputError(GPXParseError):
    message = "Failed to parse GPX file"
    recovery_suggestion = "Could not read the GPX file. Check that the file is not damaged."


class NoTrajectoryDataError(GPXParseError):
    message = "No route data found in GPX file"
    recovery_suggestion = "The file contains no track, route or waypoint data. Export the route again."


class AccessDeniedError(GPXParseError):
    message = "Access to file denied"
    recovery_suggestion = "Select the file again or check that it is accessible."


# -------------------- Weather --------------------
class WeatherError(Exception):
    recovery_suggestion = "Try again"


class NoAPIKeyError(WeatherError):
    recovery_suggestion = "Configure an OpenWeatherMap API key in the settings"

    def __init__(self):
        super().__init__("No API key configured")


class InvalidAPIKeyError(WeatherError):
    recovery_suggestion = "Contact the developer"

    def __init__(self):
        super().__init__("Invalid API key")


class RateLimitExceededError(WeatherError):
    recovery_suggestion = "Wait a few minutes before trying again"

    def __init__(self):
        super().__init__("Too many API calls, try again later")


class WeatherAPIError(WeatherError):
    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = int(status_code)
        self.detail = message
        if message:
            text = f"Weather service error {status_code}: {message}"
        else:
            text = f"Weather service error: {status_code}"
        super().__init__(text)

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code <= 599

    @property
    def recovery_suggestion(self) -> str:  # type: ignore[override]
        if self.is_server_error:
            return "Server problem, try again later"
        return "Try again later"


class NoWeatherDataError(WeatherError):
    def __init__(self):
        super().__init__("No weather data available")


class WeatherDecodeError(WeatherError):
    def __init__(self, reason: str):
        super().__init__(f"Error decoding weather data: {reason}")


class WeatherTimeoutError(WeatherError):
    recovery_suggestion = "The server is responding slowly, try again later"

    def __init__(self, detail: str = ""):
        super().__init__("Timeout while fetching weather data" + (f": {detail}" if detail else ""))


NETWORK_ERROR_KINDS = (
    'no_connection',
    'connection_lost',
    'server_unreachable',
    'dns_failure',
    'ssl_error',
    'unknown',
)

_NETWORK_DESCRIPTIONS = {
    'no_connection': 'No internet connection',
    'connection_lost': 'Connection lost',
    'server_unreachable': 'Server unreachable',
    'dns_failure': 'DNS lookup failed',
    'ssl_error': 'SSL/TLS error',
    'unknown': 'Unknown network error',
}


class NetworkError(WeatherError):
    recovery_suggestion = "Check your internet connection and try again"

    def __init__(self, kind: str, detail: str = ""):
        if kind not in NETWORK_ERROR_KINDS:
            raise ValueError(f"Unknown network error kind: {kind}")
        self.kind = kind
        text = f"Network error: {_NETWORK_DESCRIPTIONS[kind]}"
        if detail:
            text += f" ({detail})"
        super().__init__(text)


class FetchCancelledError(WeatherError):
    """The caller abandoned a batch; `completed` holds the snapshots fetched so far."""

    def __init__(self, completed: Optional[list] = None):
        self.completed: list = list(completed or [])
        super().__init__(f"Weather fetch cancelled after {len(self.completed)} point(s)")


_NOT_RETRYABLE = (NoAPIKeyError, InvalidAPIKeyError, RateLimitExceededError, FetchCancelledError)


def is_retryable(exc: BaseException) -> bool:
    return not isinstance(exc, _NOT_RETRYABLE)


# -------------------- Events --------------------
@dataclass(frozen=True)
class CredentialInvalidated:
    """Emitted when the provider rejects the configured API key (HTTP 401)."""
    status_code: int = 401
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


__all__: List[str] = [
    'GPXParseError', 'MalformedInputError', 'NoTrajectoryDataError', 'AccessDeniedError',
    'WeatherError', 'NoAPIKeyError', 'InvalidAPIKeyError', 'RateLimitExceededError',
    'WeatherAPIError', 'NoWeatherDataError', 'WeatherDecodeError', 'WeatherTimeoutError',
    'NetworkError', 'FetchCancelledError', 'is_retryable', 'CredentialInvalidated',
]
