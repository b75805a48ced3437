"""
Matching-related enumerations.
"""

import enum


class ClientRequestStatus(str, enum.Enum):
    """Business status of a client relocation request."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    REJECTED = "rejected"


class RequestMatchStatus(str, enum.Enum):
    """
    Match bookkeeping on a client request.

    PENDING: request has candidate matches awaiting a decision
    ACCEPTED: one match was accepted for the request
    REJECTED: the last decision on the request was a rejection
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class MoveStatus(str, enum.Enum):
    """Operational status of a carrier move."""
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MoveCustomStatus(str, enum.Enum):
    """Free-form trip progress used to exclude finished trips from matching."""
    EN_COURS = "en_cours"
    TERMINE = "termine"


class MatchType(str, enum.Enum):
    """Qualitative ranking of a match, independent of validity."""
    PERFECT = "perfect"
    GOOD = "good"
    PARTIAL = "partial"


class MatchActionType(str, enum.Enum):
    """Decision recorded against a match."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DistanceMethod(str, enum.Enum):
    """
    How a match distance was obtained.

    ROUTE: driving distance from the routing service
    GEOMETRIC: point-to-segment great-circle fallback
    DEFAULT: addresses could not be located, conservative default used
    """
    ROUTE = "route"
    GEOMETRIC = "geometric"
    DEFAULT = "default"


class MatchDecisionState(str, enum.Enum):
    """Lifecycle state of a match, derived from its latest MatchAction."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RequestPairType(str, enum.Enum):
    """
    How two client requests can share transport.

    SAME_DEPARTURE: both loads leave from the same area on one truck
    RETURN_TRIP: one request's arrival is near the other's departure
    """
    SAME_DEPARTURE = "same_departure"
    RETURN_TRIP = "return_trip"
