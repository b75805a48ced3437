"""
Match classification.

Rules are evaluated in order and the first one that holds wins:

1. ``perfect``: same departure and arrival cities and a tight date fit
   (flexible inside the window, or at most 3 days off).
2. ``good``: a reasonable date fit (flexible inside the window, or at most
   7 days off) and either the same cities or a detour of at most 50 km.
3. ``partial``: everything else.
"""

from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match_enums import MatchType
from movematch.app.models.move import Move
from movematch.app.services.postal_locator import normalize_text

PERFECT_MAX_DATE_DIFF = 3
GOOD_MAX_DATE_DIFF = 7
GOOD_MAX_DISTANCE_KM = 50


def cities_match(a, b) -> bool:
    """Accent- and case-insensitive; one name contained in the other counts."""
    left, right = normalize_text(a), normalize_text(b)
    if not left or not right:
        return False
    return left == right or left in right or right in left


def same_route(request: ClientRequest, move: Move) -> bool:
    return (
        cities_match(request.departure_city, move.departure_city)
        and cities_match(request.arrival_city, move.arrival_city)
    )


def classify(
    request: ClientRequest,
    move: Move,
    distance_km: float,
    date_diff_days: int,
    flexible: bool,
) -> MatchType:
    same_cities = same_route(request, move)
    in_window = flexible and date_diff_days == 0

    if same_cities and (in_window or (not flexible and date_diff_days <= PERFECT_MAX_DATE_DIFF)):
        return MatchType.PERFECT

    if (in_window or date_diff_days <= GOOD_MAX_DATE_DIFF) and (same_cities or distance_km <= GOOD_MAX_DISTANCE_KM):
        return MatchType.GOOD

    return MatchType.PARTIAL
