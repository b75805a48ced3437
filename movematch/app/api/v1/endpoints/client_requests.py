"""
Client Request API Endpoints.

Per-request match listing, completion and request-to-request pairings.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.api.v1.endpoints.matches import build_match_list
from movematch.app.core.dependencies import get_lifecycle_manager, get_request_pairing_service
from movematch.app.core.exceptions import ResourceNotFoundError
from movematch.app.db.session import get_db
from movematch.app.schemas.match import (
    ClientRequestSummary,
    MatchListResponse,
    RequestPairingListResponse,
    RequestPairingResponse,
)
from movematch.app.services.match_lifecycle import MatchLifecycleManager
from movematch.app.services.match_store import MatchStore
from movematch.app.services.request_pairing import RequestPairing, RequestPairingService

router = APIRouter(prefix="/client-requests", tags=["Client Requests"])


def build_pairing_response(pairing: RequestPairing) -> RequestPairingResponse:
    return RequestPairingResponse(
        reference=pairing.reference,
        pair_type=pairing.pair_type,
        primary_client=ClientRequestSummary.model_validate(pairing.primary),
        secondary_client=ClientRequestSummary.model_validate(pairing.secondary),
        distance_km=pairing.distance_km,
        date_diff_days=pairing.date_diff_days,
        combined_volume=pairing.combined_volume,
        volume_ok=pairing.volume_ok,
        score=pairing.score,
        is_valid=pairing.is_valid,
        cost_reduction_percent=pairing.cost_reduction_percent,
        shared_transport_cost=pairing.shared_transport_cost,
    )


@router.get("/pairings", response_model=RequestPairingListResponse)
async def list_request_pairings(
    valid_only: bool = Query(False, description="Only pairings whose loads fit"),
    service: RequestPairingService = Depends(get_request_pairing_service)
):
    """
    Active client requests that could share transport with each other.

    Computed on each call, best score first.
    """
    pairings = await service.find_pairings(valid_only=valid_only)
    return RequestPairingListResponse(
        pairings=[build_pairing_response(pairing) for pairing in pairings],
        total=len(pairings),
    )


@router.get("/{request_id}/matches", response_model=MatchListResponse)
async def list_request_matches(
    request_id: int = Path(..., description="Client Request ID"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    """
    Matches proposed for one client request.

    Rejected matches are not listed; they no longer exist as matches.
    """
    store = MatchStore(db)
    if await store.get_request(request_id) is None:
        raise ResourceNotFoundError("Client request", request_id)

    total, rows = await store.list_matches(
        client_request_id=request_id,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return MatchListResponse(
        matches=await build_match_list(store, rows),
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/{request_id}/complete", response_model=ClientRequestSummary)
async def complete_request(
    request_id: int = Path(..., description="Client Request ID"),
    actor: Optional[str] = Query(None, max_length=100),
    manager: MatchLifecycleManager = Depends(get_lifecycle_manager)
):
    """Mark the relocation as done. The move and its capacity are untouched."""
    request = await manager.complete_request(request_id, actor=actor)
    return ClientRequestSummary.model_validate(request)
