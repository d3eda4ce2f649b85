"""
Geocoding client.

Resolves a node address to (longitude, latitude) through the AMap geocode
REST API. Used only to stamp coordinates on collection traces, so every
failure degrades to (0.0, 0.0), which callers read as "unknown location".
"""

import logging
from typing import Optional, Tuple

import httpx

from backend.app.core.config import settings
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError, geocoding_circuit_breaker

logger = logging.getLogger("parcel_tracking.geocoding")

UNKNOWN_LOCATION: Tuple[float, float] = (0.0, 0.0)


class GeocodingError(Exception):
    pass


class GeocodingClient:

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.amap_key
        self.base_url = base_url or settings.geocode_url
        self.timeout = timeout or settings.geocode_timeout_seconds
        self.breaker = breaker or geocoding_circuit_breaker
        self._transport = transport

    async def coordinates_for(self, address: str) -> Tuple[float, float]:
        """Return (lng, lat) for `address`, or (0.0, 0.0) when it cannot be resolved."""
        if not address:
            return UNKNOWN_LOCATION
        try:
            return await self.breaker.call(self._lookup, address)
        except CircuitOpenError:
            logger.warning("Geocoding circuit open, skipping lookup for %r", address)
        except (httpx.HTTPError, GeocodingError, ValueError) as e:
            logger.warning("Geocoding failed for %r: %s", address, e)
        return UNKNOWN_LOCATION

    async def _lookup(self, address: str) -> Tuple[float, float]:
        params = {"address": address, "key": self.api_key, "output": "json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            body = response.json()

        if not isinstance(body, dict):
            raise GeocodingError(f"unexpected response body: {type(body).__name__}")
        geocodes = body.get("geocodes")
        if body.get("status") != "1" or not geocodes or not isinstance(geocodes, list):
            raise GeocodingError(f"address not resolved: {body.get('info')}")

        # AMap sends [] for empty fields, otherwise "lng,lat"
        first = geocodes[0]
        location = first.get("location") if isinstance(first, dict) else None
        if not isinstance(location, str) or location.count(",") != 1:
            raise GeocodingError(f"malformed location: {location!r}")

        lng, lat = location.split(",")
        return float(lng), float(lat)
