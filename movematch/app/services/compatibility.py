"""
Compatibility evaluation for (client request, move) pairs.

Dates are checked first and are the cheap gate: a date-incompatible pair is
rejected without any distance lookup. Volume and distance only decide
validity, never whether the pair is considered at all.
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

from movematch.app.core.config import settings
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match_enums import MatchType
from movematch.app.models.move import Move
from movematch.app.services.classifier import classify
from movematch.app.services.distance import DistanceEstimate, DistanceEstimator


@dataclass(frozen=True)
class DateCheck:
    compatible: bool
    date_diff_days: int
    flexible: bool
    max_allowed_days: int


@dataclass(frozen=True)
class PairEvaluation:
    """Everything needed to persist a match for one pair."""
    client_request_id: int
    move_id: int
    distance: DistanceEstimate
    date_diff_days: int
    flexible: bool
    combined_volume: float
    volume_ok: bool
    is_valid: bool
    match_type: MatchType

    @property
    def distance_km(self) -> int:
        return self.distance.rounded_km


def effective_window(request: ClientRequest) -> Optional[tuple[date, date]]:
    """The flexible window, or None when the request must be treated as fixed-date."""
    if not request.flexible_dates:
        return None
    start, end = request.date_range_start, request.date_range_end
    if start is None or end is None or start > end:
        return None
    return start, end


def check_dates(request: ClientRequest, move: Move) -> DateCheck:
    """
    Date compatibility of a pair.

    Flexible requests accept any departure inside their window (difference 0).
    Fixed-date requests accept departures within the configured tolerance of
    the desired date.
    """
    departure = move.departure_date
    window = effective_window(request)

    if window is not None:
        start, end = window
        if departure is None:
            return DateCheck(False, 0, True, 0)
        if start <= departure <= end:
            return DateCheck(True, 0, True, 0)
        diff = (start - departure).days if departure < start else (departure - end).days
        return DateCheck(False, diff, True, 0)

    tolerance = settings.max_date_diff_days
    if request.desired_date is None or departure is None:
        return DateCheck(False, 0, False, tolerance)

    diff = abs((request.desired_date - departure).days)
    return DateCheck(diff <= tolerance, diff, False, tolerance)


def check_volume(request: ClientRequest, move: Move) -> tuple[bool, float]:
    """Returns (volume_ok, combined_volume)."""
    estimated = request.estimated_volume or 0.0
    used = move.used_volume or 0.0
    available = move.available_volume
    volume_ok = available >= 0 and estimated <= available
    return volume_ok, used + estimated


def is_valid_match(distance_km: float, date_diff_days: int, max_allowed_days: int, volume_ok: bool) -> bool:
    if not math.isfinite(distance_km):
        return False
    return (
        distance_km <= settings.max_match_distance_km
        and date_diff_days <= max_allowed_days
        and volume_ok
    )


async def evaluate(
    request: ClientRequest,
    move: Move,
    estimator: DistanceEstimator,
) -> Optional[PairEvaluation]:
    """
    Evaluate one pair, or return None when the dates are incompatible.

    The estimator is not called for date-incompatible pairs.
    """
    dates = check_dates(request, move)
    if not dates.compatible:
        return None

    distance = await estimator.estimate_detour(request, move)
    volume_ok, combined_volume = check_volume(request, move)

    return PairEvaluation(
        client_request_id=request.id,
        move_id=move.id,
        distance=distance,
        date_diff_days=dates.date_diff_days,
        flexible=dates.flexible,
        combined_volume=combined_volume,
        volume_ok=volume_ok,
        is_valid=is_valid_match(distance.km, dates.date_diff_days, dates.max_allowed_days, volume_ok),
        match_type=classify(request, move, distance.km, dates.date_diff_days, dates.flexible),
    )
