"""
Failure Injection Tests.

Validates resilience against routing service failures.
"""

import httpx
import pytest

from movematch.app.core.reliability import CircuitBreaker, CircuitOpenError
from movematch.app.models.match_enums import DistanceMethod
from movematch.app.services.cache import MemoryDistanceCache
from movematch.app.services.distance import DistanceEstimator
from movematch.app.services.geo import Coordinates
from movematch.app.services.match_generator import MatchGenerator
from movematch.app.services.routing_client import Address, HttpRoutingClient, RoutingServiceError

PARIS = Coordinates(48.8606, 2.3376)
LYON = Coordinates(45.7675, 4.8345)


def make_http_client(handler, failure_threshold=5):
    return HttpRoutingClient(
        routing_base_url="http://osrm.test",
        geocoding_base_url="http://nominatim.test/",
        circuit_breaker=CircuitBreaker(name="routing-test", failure_threshold=failure_threshold, reset_timeout=60),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_circuit_breaker_activates():
    """Test that circuit breaker opens after threshold failures."""
    cb = CircuitBreaker(failure_threshold=2, reset_timeout=1)

    async def failing_func():
        raise ValueError("Boom")

    # Fail 1
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Fail 2 (Threshold reached)
    with pytest.raises(ValueError):
        await cb.call(failing_func)

    # Call 3 (Should be CircuitOpenError)
    assert cb.is_open
    with pytest.raises(CircuitOpenError):
        await cb.call(failing_func)


@pytest.mark.asyncio
async def test_circuit_breaker_half_open_recovers():
    cb = CircuitBreaker(failure_threshold=1, reset_timeout=10)

    async def failing_func():
        raise ValueError("Boom")

    async def ok_func():
        return "ok"

    with pytest.raises(ValueError):
        await cb.call(failing_func)
    assert cb.is_open

    # Pretend the reset timeout has elapsed
    cb.last_failure_time -= 11
    assert not cb.is_open
    assert await cb.call(ok_func) == "ok"
    assert cb.state == "CLOSED"
    assert cb.failures == 0


@pytest.mark.asyncio
async def test_http_client_geocode_and_route():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "nominatim.test":
            assert request.url.path == "/search"
            assert request.url.params["postalcode"] == "75001"
            assert request.url.params["city"] == "Paris"
            return httpx.Response(200, json=[{"lat": "48.8606", "lon": "2.3376"}])
        assert request.url.path.startswith("/route/v1/driving/2.3376,48.8606;")
        return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 465123.4}]})

    client = make_http_client(handler)

    point = await client.geocode(Address("75001", "Paris", "France"))
    assert point == PARIS
    assert await client.route(point, LYON) == pytest.approx(465123.4)
    await client.close()


@pytest.mark.asyncio
async def test_http_client_no_route_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "NoRoute", "routes": []})

    client = make_http_client(handler)
    with pytest.raises(RoutingServiceError):
        await client.route(PARIS, LYON)


@pytest.mark.asyncio
async def test_http_client_empty_geocode_raises():
    client = make_http_client(lambda request: httpx.Response(200, json=[]))
    with pytest.raises(RoutingServiceError):
        await client.geocode(Address("75001", "Paris", "France"))


@pytest.mark.asyncio
async def test_repeated_server_errors_open_circuit():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    client = make_http_client(handler, failure_threshold=2)

    for _ in range(2):
        with pytest.raises(RoutingServiceError):
            await client.route(PARIS, LYON)
    assert not client.available

    # Open circuit: no further HTTP traffic
    with pytest.raises(RoutingServiceError):
        await client.route(PARIS, LYON)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_estimator_degrades_when_service_is_down(request_builder, move_builder):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_http_client(handler, failure_threshold=1)
    estimator = DistanceEstimator(routing_client=client, cache=MemoryDistanceCache(ttl_seconds=60))

    estimate = await estimator.estimate_detour(request_builder(), move_builder())

    assert estimate.method == DistanceMethod.GEOMETRIC
    assert estimate.km >= 0
    assert not estimator.routing_available


GEOCODES = {
    "75001": ("48.8606", "2.3376"),
    "75002": ("48.8680", "2.3430"),
    "69001": ("45.7675", "4.8345"),
    "69002": ("45.7500", "4.8270"),
}


@pytest.mark.asyncio
async def test_malformed_route_reply_raises_routing_error():
    client = make_http_client(lambda request: httpx.Response(200, json=[{"unexpected": True}]))
    with pytest.raises(RoutingServiceError):
        await client.route(PARIS, LYON)


@pytest.mark.asyncio
async def test_malformed_geocode_reply_raises_routing_error():
    client = make_http_client(lambda request: httpx.Response(200, json={"lat": "48.86", "lon": "2.33"}))
    with pytest.raises(RoutingServiceError):
        await client.geocode(Address("75001", "Paris", "France"))


@pytest.mark.asyncio
async def test_generation_survives_malformed_route_replies(session_factory, make_request, make_move):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "nominatim.test":
            lat, lon = GEOCODES[request.url.params["postalcode"]]
            return httpx.Response(200, json=[{"lat": lat, "lon": lon}])
        return httpx.Response(200, json=[{"unexpected": True}])

    await make_request()
    await make_move()
    estimator = DistanceEstimator(routing_client=make_http_client(handler), cache=MemoryDistanceCache(ttl_seconds=60))

    async with session_factory() as session:
        report = await MatchGenerator(session, estimator).generate()

    assert report.failed_pairs == 0
    assert report.matches_created == 1
    assert report.degraded_distances == 1
