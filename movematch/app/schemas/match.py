"""
Match schemas.

Response models for generated matches, decisions and generation runs.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from movematch.app.models.match_enums import (
    ClientRequestStatus, DistanceMethod, MatchDecisionState, MatchType, RequestMatchStatus, RequestPairType
)


class ClientRequestSummary(BaseModel):
    """Request fields shown next to a match."""
    id: int
    reference: str
    name: Optional[str] = None
    departure_postal_code: Optional[str] = None
    departure_city: Optional[str] = None
    arrival_postal_code: Optional[str] = None
    arrival_city: Optional[str] = None
    desired_date: Optional[date] = None
    flexible_dates: bool
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    estimated_volume: float
    status: ClientRequestStatus
    is_matched: bool
    match_status: Optional[RequestMatchStatus] = None
    matched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MoveSummary(BaseModel):
    """Move fields shown next to a match."""
    id: int
    reference: str = Field(validation_alias="display_reference")
    company_name: str
    departure_postal_code: str
    departure_city: str
    arrival_postal_code: str
    arrival_city: str
    departure_date: date
    max_volume: float
    used_volume: float
    available_volume: float
    number_of_clients: int

    class Config:
        from_attributes = True
        populate_by_name = True


class MatchResponse(BaseModel):
    """A match with its metrics, decision state and both sides."""
    id: int
    reference: str
    client_request_id: int
    move_id: int
    distance_km: int
    date_diff_days: int
    combined_volume: float
    volume_ok: bool
    match_type: MatchType
    is_valid: bool
    distance_method: DistanceMethod
    decision: MatchDecisionState
    created_at: Optional[datetime] = None
    client_request: ClientRequestSummary
    move: MoveSummary


class MatchListResponse(BaseModel):
    matches: List[MatchResponse]
    total: int
    page: int
    page_size: int


class MatchDecisionRequest(BaseModel):
    """Body for accept / reject."""
    actor: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=2000)


class MatchDecisionResponse(BaseModel):
    match_id: int
    match_reference: str
    client_request_id: int
    move_id: int
    decision: MatchDecisionState
    actor: Optional[str] = None
    notes: Optional[str] = None
    decided_at: datetime
    removed_competing: int = 0


class GenerationReportResponse(BaseModel):
    """Outcome of one generation run."""
    requests_considered: int
    moves_considered: int
    pairs_evaluated: int
    skipped_existing: int
    date_incompatible: int
    matches_created: int
    valid_matches: int
    conflicts: int
    failed_pairs: int
    degraded_distances: int
    pruned_matches: int
    incomplete_requests: int
    validation_messages: List[str]
    cancelled: bool
    duration_seconds: float


class ValidationIssueResponse(BaseModel):
    client_request_id: int
    reference: str
    missing_fields: List[str]
    message: str


class ValidationResponse(BaseModel):
    """Requests that a generation run would exclude."""
    issues: List[ValidationIssueResponse]
    total: int


class PruneResponse(BaseModel):
    pruned_matches: int


class RequestPairingResponse(BaseModel):
    """Two client requests that could share transport."""
    reference: str
    pair_type: RequestPairType
    primary_client: ClientRequestSummary
    secondary_client: ClientRequestSummary
    distance_km: int
    date_diff_days: int
    combined_volume: float
    volume_ok: bool
    score: float
    is_valid: bool
    cost_reduction_percent: int
    shared_transport_cost: int


class RequestPairingListResponse(BaseModel):
    pairings: List[RequestPairingResponse]
    total: int
