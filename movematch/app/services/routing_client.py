"""
Routing and geocoding service client.

The engine consumes two operations: ``geocode(address) -> Coordinates`` and
``route(origin, destination) -> distance in metres``. ``HttpRoutingClient``
speaks to a Nominatim-compatible geocoder and an OSRM-compatible router.
Every failure is raised as ``RoutingServiceError`` so callers can fall back.
"""

import logging
import math
from typing import NamedTuple, Optional

import httpx

from movematch.app.core.config import settings
from movematch.app.core.reliability import CircuitBreaker, CircuitOpenError
from movematch.app.services.geo import Coordinates

logger = logging.getLogger(__name__)


class RoutingServiceError(Exception):
    """Geocoding or routing could not produce a result."""


class Address(NamedTuple):
    postal_code: Optional[str]
    city: Optional[str]
    country: Optional[str] = "France"

    @property
    def is_complete(self) -> bool:
        return bool((self.postal_code or "").strip() and (self.city or "").strip())

    def as_query(self) -> str:
        parts = [self.postal_code, self.city, self.country]
        return ", ".join(p.strip() for p in parts if p and p.strip())

    def cache_key(self) -> str:
        return self.as_query().casefold()


class RoutingClient:
    """Interface of the external routing/geocoding collaborator."""

    async def geocode(self, address: Address) -> Coordinates:
        raise NotImplementedError

    async def route(self, origin: Coordinates, destination: Coordinates) -> float:
        """Driving distance in metres."""
        raise NotImplementedError

    @property
    def available(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class HttpRoutingClient(RoutingClient):
    """HTTP client for Nominatim (geocoding) and OSRM (routing) APIs."""

    def __init__(
        self,
        routing_base_url: str,
        geocoding_base_url: str,
        timeout: float = 10.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.routing_base_url = routing_base_url.rstrip("/")
        self.geocoding_base_url = geocoding_base_url.rstrip("/")
        self.client = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": settings.routing_user_agent},
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            name="routing",
            failure_threshold=settings.routing_failure_threshold,
            reset_timeout=settings.routing_reset_timeout_seconds,
        )

    @property
    def available(self) -> bool:
        return not self.circuit_breaker.is_open

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def _get_json(self, url: str, params: Optional[dict] = None):
        try:
            return await self.circuit_breaker.call(self._fetch, url, params)
        except CircuitOpenError as exc:
            raise RoutingServiceError(str(exc)) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Routing service request failed: %s - %s", url, exc)
            raise RoutingServiceError(f"Request to {url} failed: {exc}") from exc

    async def _fetch(self, url: str, params: Optional[dict]):
        response = await self.client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    async def geocode(self, address: Address) -> Coordinates:
        if not address.is_complete:
            raise RoutingServiceError(f"Incomplete address: {address.as_query()!r}")

        params = {
            "postalcode": address.postal_code.strip(),
            "city": address.city.strip(),
            "format": "json",
            "limit": 1,
        }
        if address.country:
            params["country"] = address.country.strip()

        payload = await self._get_json(f"{self.geocoding_base_url}/search", params)
        if not isinstance(payload, list):
            raise RoutingServiceError(f"Malformed geocoding reply for {address.as_query()!r}")
        if not payload:
            raise RoutingServiceError(f"No geocoding result for {address.as_query()!r}")

        try:
            point = Coordinates(lat=float(payload[0]["lat"]), lng=float(payload[0]["lon"]))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise RoutingServiceError(f"Malformed geocoding result for {address.as_query()!r}") from exc
        return point

    async def route(self, origin: Coordinates, destination: Coordinates) -> float:
        coords = f"{origin.lng},{origin.lat};{destination.lng},{destination.lat}"
        payload = await self._get_json(
            f"{self.routing_base_url}/route/v1/driving/{coords}",
            {"overview": "false"},
        )
        if not isinstance(payload, dict):
            raise RoutingServiceError(f"Malformed routing reply between {origin} and {destination}")

        if payload.get("code") != "Ok" or not payload.get("routes"):
            raise RoutingServiceError(f"No route between {origin} and {destination}: {payload.get('code')}")

        try:
            distance_m = float(payload["routes"][0]["distance"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise RoutingServiceError("Malformed routing result") from exc
        if not math.isfinite(distance_m) or distance_m < 0:
            raise RoutingServiceError(f"Invalid route distance: {distance_m}")
        return distance_m


def build_routing_client() -> Optional[RoutingClient]:
    """Routing client from settings, or None to run in degraded mode only."""
    if not settings.routing_base_url or not settings.geocoding_base_url:
        logger.info("Routing service not configured, distances use the geometric fallback")
        return None
    return HttpRoutingClient(
        routing_base_url=settings.routing_base_url,
        geocoding_base_url=settings.geocoding_base_url,
        timeout=settings.routing_timeout_seconds,
    )
