"""Nominatim reverse-geocoding client behind a process-wide rate limiter.

Nominatim's usage policy allows at most one request per second and requires
a descriptive User-Agent.  Every reverse_geocode() call in the process goes
through one shared RateLimiter, which admits a single in-flight request and
keeps a minimum spacing between request starts.  Calls queue; they never run
in parallel.

API docs: https://nominatim.org/release-docs/develop/api/Reverse/
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger(__name__)

T = TypeVar("T")

NOMINATIM_URL = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org")
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT", "sanction-engine/1.0 (compliance@example.com)")
NOMINATIM_ZOOM = int(os.getenv("NOMINATIM_ZOOM", "6"))
NOMINATIM_LANGUAGE = os.getenv("NOMINATIM_LANGUAGE", "en")
GEOCODER_MIN_INTERVAL_MS = int(os.getenv("GEOCODER_MIN_INTERVAL_MS", "1000"))
GEOCODER_MAX_RETRIES = int(os.getenv("GEOCODER_MAX_RETRIES", "2"))
GEOCODER_TIMEOUT = float(os.getenv("GEOCODER_TIMEOUT", "15"))


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class GeocodeError(Exception):
    """Base class for reverse-geocode failures."""

    retryable = False


class GeocodeNetworkError(GeocodeError):
    """The request never produced a response (DNS, connect, timeout...)."""

    retryable = True


class GeocodeHTTPError(GeocodeError):
    """Non-2xx response from the geocoder."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Geocoder HTTP {status_code}: {message}")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500


class GeocodeProviderError(GeocodeError):
    """2xx response carrying an error field or no usable place name."""

    def __init__(self, message: str, response: dict | None = None):
        self.message = message
        self.response = response or {}
        super().__init__(f"Geocoder error: {message}")


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


class RateLimiter:
    """Serializes calls with a minimum spacing between their start times."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_start: float | None = None

    async def run(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Wait for our turn, then await fn(*args, **kwargs)."""
        async with self._lock:
            if self._last_start is not None:
                wait = self._last_start + self.min_interval - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_start = self._clock()
            return await fn(*args, **kwargs)


_shared_limiter: RateLimiter | None = None


def get_shared_limiter() -> RateLimiter:
    """The one limiter every geocoder client in the process shares."""
    global _shared_limiter
    if _shared_limiter is None:
        _shared_limiter = RateLimiter(GEOCODER_MIN_INTERVAL_MS / 1000.0)
    return _shared_limiter


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class NominatimClient:
    """Async Nominatim reverse-geocoding client."""

    def __init__(
        self,
        base_url: str | None = None,
        user_agent: str | None = None,
        zoom: int | None = None,
        language: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url or NOMINATIM_URL
        self._user_agent = user_agent or NOMINATIM_USER_AGENT
        self._zoom = NOMINATIM_ZOOM if zoom is None else zoom
        self._language = language or NOMINATIM_LANGUAGE
        self._timeout = GEOCODER_TIMEOUT if timeout is None else timeout
        self._max_retries = GEOCODER_MAX_RETRIES if max_retries is None else max_retries
        self._limiter = limiter or get_shared_limiter()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- lifecycle -----------------------------------------------------------

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": self._user_agent, "Accept": "application/json"},
            timeout=self._timeout,
            transport=self._transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # -- lookups -------------------------------------------------------------

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        """Translate coordinates to a display name.

        Retries network errors, 429 and 5xx up to max_retries times; every
        attempt waits its turn at the shared limiter.

        Raises:
            GeocodeNetworkError, GeocodeHTTPError, GeocodeProviderError
        """
        attempt = 0
        while True:
            try:
                return await self._limiter.run(self._request, latitude, longitude)
            except GeocodeError as e:
                if not e.retryable or attempt >= self._max_retries:
                    raise
                attempt += 1
                log.warning(
                    "Reverse geocode [%s, %s] failed (%s); retry %d/%d",
                    latitude, longitude, e, attempt, self._max_retries,
                )

    async def _request(self, latitude: float, longitude: float) -> str:
        params = {
            "lat": latitude,
            "lon": longitude,
            "zoom": self._zoom,
            "format": "jsonv2",
            "accept-language": self._language,
        }
        try:
            resp = await self.client.get("/reverse", params=params)
        except httpx.RequestError as exc:
            raise GeocodeNetworkError(f"{type(exc).__name__}: {exc}") from exc

        if not resp.is_success:
            raise GeocodeHTTPError(resp.status_code, resp.text[:200])

        try:
            data = resp.json()
        except ValueError as exc:
            raise GeocodeProviderError("Response was not JSON") from exc

        if not isinstance(data, dict):
            raise GeocodeProviderError("Unexpected response shape")
        if data.get("error"):
            raise GeocodeProviderError(str(data["error"]), data)

        name = data.get("display_name")
        if not name:
            raise GeocodeProviderError("Response has no display_name", data)

        log.debug("Reverse geocode [%s, %s] -> %s", latitude, longitude, name)
        return name


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def is_configured() -> bool:
    """Return True if a descriptive User-Agent has been configured."""
    return bool(os.getenv("NOMINATIM_USER_AGENT"))
