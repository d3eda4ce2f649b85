"""
Failure injection tests for the circuit breaker and the geocoding fallback.
"""

import httpx
import pytest

from backend.app.core.reliability import CircuitBreaker, CircuitOpenError, CircuitState
from backend.app.services.geocoding import GeocodingClient, UNKNOWN_LOCATION

HANGZHOU = {"status": "1", "info": "OK", "geocodes": [{"location": "120.155070,30.274085"}]}


def amap_transport(body=HANGZHOU, status_code=200) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status_code, json=body))


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Circuit opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=60)

    async def failing_func():
        raise ValueError("Boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await cb.call(failing_func)

    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)
    assert cb.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_circuit_half_opens_after_timeout():
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=0)

    async def failing_func():
        raise ValueError("Boom")

    async def ok():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)

    assert await cb.call(ok) == "ok"
    assert cb.state == CircuitState.CLOSED
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_geocoder_parses_amap_location():
    client = GeocodingClient(
        api_key="k", base_url="https://geo.test", breaker=CircuitBreaker(), transport=amap_transport()
    )

    assert await client.coordinates_for("1 Wensan Road, Hangzhou") == (120.15507, 30.274085)


@pytest.mark.asyncio
async def test_geocoder_falls_back_on_unresolved_address():
    body = {"status": "0", "info": "INVALID_USER_KEY", "geocodes": []}
    client = GeocodingClient(
        api_key="k", base_url="https://geo.test", breaker=CircuitBreaker(), transport=amap_transport(body)
    )

    assert await client.coordinates_for("nowhere") == UNKNOWN_LOCATION


@pytest.mark.asyncio
async def test_geocoder_short_circuits_after_repeated_failures():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    breaker = CircuitBreaker(failure_threshold=2, reset_timeout=60)
    client = GeocodingClient(
        api_key="k", base_url="https://geo.test", breaker=breaker, transport=httpx.MockTransport(handler)
    )

    for _ in range(4):
        assert await client.coordinates_for("somewhere") == UNKNOWN_LOCATION

    assert len(calls) == 2
    assert breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    {"status": "1", "info": "OK", "geocodes": [{"location": []}]},
    {"status": "1", "info": "OK", "geocodes": [{"formatted_address": "x"}]},
    {"status": "1", "info": "OK", "geocodes": ["120.1,30.2"]},
    {"status": "1", "info": "OK", "geocodes": [{"location": "not-a-pair"}]},
    {"status": "1", "info": "OK", "geocodes": [{"location": "east,north"}]},
    ["not", "an", "object"],
])
async def test_geocoder_falls_back_on_malformed_body(body):
    client = GeocodingClient(
        api_key="k", base_url="https://geo.test", breaker=CircuitBreaker(), transport=amap_transport(body)
    )

    assert await client.coordinates_for("somewhere") == UNKNOWN_LOCATION
