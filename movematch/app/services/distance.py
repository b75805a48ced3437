"""
Distance estimation between client requests and moves.

Primary path: driving distances from the routing service. Degraded path:
closed-form great-circle geometry over coordinates from the geocoder or,
failing that, the offline postal locator. The estimator never raises for
address or service problems; when nothing can be located it returns a
conservative default that fails the validity threshold.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Optional

from movematch.app.core.config import settings
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match_enums import DistanceMethod
from movematch.app.models.move import Move
from movematch.app.services.cache import DistanceCache, MemoryDistanceCache
from movematch.app.services.geo import (
    Coordinates, is_finite_point, point_distance, point_to_segment_distance
)
from movematch.app.services.postal_locator import locate_postal_code
from movematch.app.services.routing_client import Address, RoutingClient, RoutingServiceError

logger = logging.getLogger(__name__)

DEFAULT_MOVE_COUNTRY = "France"


def round_km(km: float) -> int:
    """Round half up to whole kilometres for storage."""
    return int(math.floor(km + 0.5))


@dataclass(frozen=True)
class DistanceEstimate:
    """Unrounded distance plus how it was obtained."""
    km: float
    method: DistanceMethod

    @property
    def rounded_km(self) -> int:
        return round_km(self.km)

    @property
    def degraded(self) -> bool:
        return self.method != DistanceMethod.ROUTE


def request_addresses(request: ClientRequest) -> tuple[Address, Address]:
    return (
        Address(request.departure_postal_code, request.departure_city, request.departure_country),
        Address(request.arrival_postal_code, request.arrival_city, request.arrival_country),
    )


def move_addresses(move: Move) -> tuple[Address, Address]:
    return (
        Address(move.departure_postal_code, move.departure_city, DEFAULT_MOVE_COUNTRY),
        Address(move.arrival_postal_code, move.arrival_city, DEFAULT_MOVE_COUNTRY),
    )


class DistanceEstimator:
    """
    Estimates detour distances for (request, move) pairs.

    Args:
        routing_client: external routing/geocoding collaborator, or None to
            always use the geometric fallback
        cache: geocode/route cache shared for the lifetime of a run
        default_distance_km: returned when addresses cannot be located
    """

    def __init__(
        self,
        routing_client: Optional[RoutingClient] = None,
        cache: Optional[DistanceCache] = None,
        default_distance_km: float = None,
    ):
        self.routing_client = routing_client
        self.cache = cache or MemoryDistanceCache(ttl_seconds=settings.distance_cache_ttl_seconds)
        self.default_distance_km = float(
            default_distance_km if default_distance_km is not None else settings.default_distance_km
        )

    @property
    def routing_available(self) -> bool:
        return self.routing_client is not None and self.routing_client.available

    async def locate(self, address: Address) -> Optional[Coordinates]:
        """Coordinates of an address: cache, then geocoder, then postal locator."""
        key = self.cache.make_key("geo", address.cache_key())
        cached = await self.cache.get(key)
        if cached is not None:
            return Coordinates(*cached)

        if self.routing_available and address.is_complete:
            try:
                point = await self.routing_client.geocode(address)
            except RoutingServiceError as exc:
                logger.warning("Geocoding failed for %r, using postal fallback: %s", address.as_query(), exc)
            else:
                await self.cache.set(key, list(point))
                return point

        # Fallback coordinates are not cached so a recovered geocoder wins next time
        return locate_postal_code(address.postal_code, address.country)

    async def routed_km(self, origin: Coordinates, destination: Coordinates) -> Optional[float]:
        """Driving distance in km, or None when the routing service cannot answer."""
        if not self.routing_available:
            return None

        key = self.cache.make_key(
            "route",
            f"{origin.lat:.5f},{origin.lng:.5f}",
            f"{destination.lat:.5f},{destination.lng:.5f}",
        )
        cached = await self.cache.get(key)
        if cached is not None:
            return float(cached)

        try:
            metres = await self.routing_client.route(origin, destination)
        except RoutingServiceError as exc:
            logger.warning("Routing failed between %s and %s: %s", origin, destination, exc)
            return None

        km = metres / 1000.0
        await self.cache.set(key, km)
        return km

    async def estimate(
        self,
        origin_postal: Optional[str],
        origin_city: Optional[str],
        dest_postal: Optional[str],
        dest_city: Optional[str],
        origin_country: Optional[str] = "France",
        dest_country: Optional[str] = "France",
    ) -> int:
        """Point-to-point driving distance in whole kilometres."""
        origin, destination = await asyncio.gather(
            self.locate(Address(origin_postal, origin_city, origin_country)),
            self.locate(Address(dest_postal, dest_city, dest_country)),
        )
        if not (is_finite_point(origin) and is_finite_point(destination)):
            return round_km(self.default_distance_km)

        km = await self.routed_km(origin, destination)
        if km is None:
            km = point_distance(origin, destination)
        return round_km(km)

    async def estimate_detour(self, request: ClientRequest, move: Move) -> DistanceEstimate:
        """
        Detour distance between a request and a move.

        Routed: the shorter of request-departure -> move-departure and
        request-arrival -> move-arrival. Degraded: the shorter great-circle
        distance from either request endpoint to the move's route segment.
        """
        req_departure, req_arrival = request_addresses(request)
        move_departure, move_arrival = move_addresses(move)

        points = await asyncio.gather(
            self.locate(req_departure),
            self.locate(req_arrival),
            self.locate(move_departure),
            self.locate(move_arrival),
        )
        if not all(is_finite_point(p) for p in points):
            logger.warning(
                "Could not locate addresses for request %s / move %s, using default distance",
                request.id, move.id,
            )
            return DistanceEstimate(self.default_distance_km, DistanceMethod.DEFAULT)

        req_dep_pt, req_arr_pt, move_dep_pt, move_arr_pt = points

        if self.routing_available:
            departure_km, arrival_km = await asyncio.gather(
                self.routed_km(req_dep_pt, move_dep_pt),
                self.routed_km(req_arr_pt, move_arr_pt),
            )
            if departure_km is not None and arrival_km is not None:
                return DistanceEstimate(min(departure_km, arrival_km), DistanceMethod.ROUTE)

        km = min(
            point_to_segment_distance(req_dep_pt, move_dep_pt, move_arr_pt),
            point_to_segment_distance(req_arr_pt, move_dep_pt, move_arr_pt),
        )
        if not math.isfinite(km):
            return DistanceEstimate(self.default_distance_km, DistanceMethod.DEFAULT)
        return DistanceEstimate(km, DistanceMethod.GEOMETRIC)
