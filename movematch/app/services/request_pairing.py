"""
Request-to-request pairing.

Finds pairs of active client requests that could share one transport,
either grouped on the same truck from the same area (same departure) or
chained so that one load travels back on the other's route (return trip).
Pairings are computed on demand and not persisted.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from itertools import combinations
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.core.config import settings
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match_enums import RequestPairType
from movematch.app.services.compatibility import effective_window
from movematch.app.services.distance import DistanceEstimator
from movematch.app.services.match_generator import partition_requests
from movematch.app.services.match_store import MatchStore

logger = logging.getLogger(__name__)

PAIR_REFERENCE_PREFIXES = {
    RequestPairType.SAME_DEPARTURE: "C2C-DEP",
    RequestPairType.RETURN_TRIP: "C2C-RET",
}

# Score penalties, lower scores rank first
SAME_DEPARTURE_DAY_WEIGHT = 5
RETURN_TRIP_DAY_WEIGHT = 3
OVER_CAPACITY_PENALTY = 1000


@dataclass(frozen=True)
class RequestPairing:
    primary: ClientRequest
    secondary: ClientRequest
    pair_type: RequestPairType
    distance_km: int
    date_diff_days: int
    combined_volume: float
    volume_ok: bool
    score: float
    is_valid: bool
    cost_reduction_percent: int
    shared_transport_cost: int

    @property
    def reference(self) -> str:
        return f"{PAIR_REFERENCE_PREFIXES[self.pair_type]}-{self.primary.id}-{self.secondary.id}"


def date_span(request: ClientRequest) -> Optional[tuple[date, date]]:
    """Days the request can travel: its flexible window, else its desired date."""
    window = effective_window(request)
    if window is not None:
        return window
    if request.desired_date is None:
        return None
    return request.desired_date, request.desired_date


def date_gap_days(first: ClientRequest, second: ClientRequest) -> Optional[int]:
    """Days between the two requests' spans, 0 when they overlap."""
    span_a, span_b = date_span(first), date_span(second)
    if span_a is None or span_b is None:
        return None
    if span_a[1] < span_b[0]:
        return (span_b[0] - span_a[1]).days
    if span_b[1] < span_a[0]:
        return (span_a[0] - span_b[1]).days
    return 0


class RequestPairingService:
    """Evaluates every pair of complete active requests."""

    def __init__(self, db: AsyncSession, estimator: DistanceEstimator, max_concurrency: Optional[int] = None):
        self.store = MatchStore(db)
        self.estimator = estimator
        self.max_concurrency = max(1, max_concurrency or settings.matching_max_concurrency)

    async def _km(self, origin_postal, origin_city, origin_country, dest_postal, dest_city, dest_country) -> int:
        return await self.estimator.estimate(
            origin_postal, origin_city, dest_postal, dest_city,
            origin_country=origin_country, dest_country=dest_country,
        )

    async def _direct_km(self, request: ClientRequest) -> int:
        return await self._km(
            request.departure_postal_code, request.departure_city, request.departure_country,
            request.arrival_postal_code, request.arrival_city, request.arrival_country,
        )

    async def _departures_km(self, a: ClientRequest, b: ClientRequest) -> int:
        return await self._km(
            a.departure_postal_code, a.departure_city, a.departure_country,
            b.departure_postal_code, b.departure_city, b.departure_country,
        )

    async def _arrivals_km(self, a: ClientRequest, b: ClientRequest) -> int:
        return await self._km(
            a.arrival_postal_code, a.arrival_city, a.arrival_country,
            b.arrival_postal_code, b.arrival_city, b.arrival_country,
        )

    async def _arrival_to_departure_km(self, a: ClientRequest, b: ClientRequest) -> int:
        return await self._km(
            a.arrival_postal_code, a.arrival_city, a.arrival_country,
            b.departure_postal_code, b.departure_city, b.departure_country,
        )

    async def same_departure(self, a: ClientRequest, b: ClientRequest, gap: int) -> Optional[RequestPairing]:
        """
        Both loads on one truck: departures close together and the grouped
        trip (departure A, departure B, arrival A, arrival B) no more than the
        distance threshold longer than the longer direct trip.
        """
        max_km = settings.max_match_distance_km
        departure_km = await self._departures_km(a, b)
        if departure_km > max_km:
            return None

        arrival_km, link_km, direct_a, direct_b = await asyncio.gather(
            self._arrivals_km(a, b),
            self._arrival_to_departure_km(a, b),
            self._direct_km(a),
            self._direct_km(b),
        )
        grouped_km = departure_km + link_km + arrival_km
        detour_km = grouped_km - max(direct_a, direct_b)
        if detour_km > max_km:
            return None

        combined = (a.estimated_volume or 0.0) + (b.estimated_volume or 0.0)
        volume_ok = combined <= settings.truck_capacity_m3
        return RequestPairing(
            primary=a,
            secondary=b,
            pair_type=RequestPairType.SAME_DEPARTURE,
            distance_km=departure_km,
            date_diff_days=gap,
            combined_volume=combined,
            volume_ok=volume_ok,
            score=departure_km + arrival_km + gap * SAME_DEPARTURE_DAY_WEIGHT
            + (0 if volume_ok else OVER_CAPACITY_PENALTY),
            is_valid=volume_ok,
            cost_reduction_percent=20 if detour_km > 50 else 40,
            shared_transport_cost=round((direct_a + direct_b) * settings.shared_cost_per_km),
        )

    async def return_trip(self, a: ClientRequest, b: ClientRequest, gap: int) -> Optional[RequestPairing]:
        """One truck runs A's trip and comes back with B's load, or the other way round."""
        max_km = settings.max_match_distance_km
        a_to_b, b_to_a = await asyncio.gather(
            self._arrival_to_departure_km(a, b),
            self._arrival_to_departure_km(b, a),
        )
        if max(a_to_b, b_to_a) > max_km:
            return None

        capacity = settings.truck_capacity_m3
        volume_a, volume_b = a.estimated_volume or 0.0, b.estimated_volume or 0.0
        volume_ok = volume_a <= capacity and volume_b <= capacity
        best_km = min(a_to_b, b_to_a)
        return RequestPairing(
            primary=a,
            secondary=b,
            pair_type=RequestPairType.RETURN_TRIP,
            distance_km=best_km,
            date_diff_days=gap,
            # The loads never share the truck
            combined_volume=max(volume_a, volume_b),
            volume_ok=volume_ok,
            score=a_to_b + b_to_a + gap * RETURN_TRIP_DAY_WEIGHT
            + (0 if volume_ok else OVER_CAPACITY_PENALTY),
            is_valid=volume_ok,
            cost_reduction_percent=55 if best_km < 50 else 40,
            shared_transport_cost=round((a_to_b + b_to_a) * settings.shared_cost_per_km),
        )

    async def evaluate_pair(self, a: ClientRequest, b: ClientRequest) -> Optional[RequestPairing]:
        """Same departure is preferred; a return trip is tried only when it fails."""
        gap = date_gap_days(a, b)
        if gap is None or gap > settings.max_date_diff_days:
            return None
        return await self.same_departure(a, b, gap) or await self.return_trip(a, b, gap)

    async def find_pairings(self, valid_only: bool = False) -> list[RequestPairing]:
        """All pairings between complete active requests, best score first."""
        complete, _ = partition_requests(await self.store.active_requests())
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(a: ClientRequest, b: ClientRequest) -> Optional[RequestPairing]:
            async with semaphore:
                return await self.evaluate_pair(a, b)

        results = await asyncio.gather(*(bounded(a, b) for a, b in combinations(complete, 2)))
        pairings = [p for p in results if p is not None and (p.is_valid or not valid_only)]
        pairings.sort(key=lambda p: (p.score, p.primary.id, p.secondary.id))
        logger.info("Request pairing: %d requests, %d pairings found", len(complete), len(pairings))
        return pairings
