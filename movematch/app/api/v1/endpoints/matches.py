"""
Match API Endpoints.

Generation runs, match listing and the accept / reject decisions.
"""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.core.dependencies import get_lifecycle_manager, get_match_generator
from movematch.app.core.exceptions import ResourceNotFoundError
from movematch.app.db.session import get_db
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match import Match
from movematch.app.models.match_action import MatchAction
from movematch.app.models.match_enums import MatchType
from movematch.app.models.move import Move
from movematch.app.models.references import MATCH_PREFIX, format_reference, parse_reference
from movematch.app.schemas.analytics import MatchAnalytics
from movematch.app.schemas.match import (
    ClientRequestSummary,
    GenerationReportResponse,
    MatchDecisionRequest,
    MatchDecisionResponse,
    MatchListResponse,
    MatchResponse,
    MoveSummary,
    PruneResponse,
    ValidationIssueResponse,
    ValidationResponse,
)
from movematch.app.services.analytics import MatchAnalyticsService
from movematch.app.services.audit import AuditAction, log_event
from movematch.app.services.match_generator import MatchGenerator
from movematch.app.services.match_lifecycle import DecisionResult, MatchLifecycleManager, decision_from_action
from movematch.app.services.match_store import MatchStore

router = APIRouter(prefix="/matches", tags=["Matches"])


def build_match_response(
    match: Match,
    request: ClientRequest,
    move: Move,
    action: Optional[MatchAction],
) -> MatchResponse:
    return MatchResponse(
        id=match.id,
        reference=match.reference,
        client_request_id=match.client_request_id,
        move_id=match.move_id,
        distance_km=match.distance_km,
        date_diff_days=match.date_diff_days,
        combined_volume=match.combined_volume,
        volume_ok=match.volume_ok,
        match_type=match.match_type,
        is_valid=match.is_valid,
        distance_method=match.distance_method,
        decision=decision_from_action(action),
        created_at=match.created_at,
        client_request=ClientRequestSummary.model_validate(request),
        move=MoveSummary.model_validate(move),
    )


async def build_match_list(
    store: MatchStore,
    rows: list[tuple[Match, ClientRequest, Move]],
) -> list[MatchResponse]:
    actions = await store.actions_for_matches(match.id for match, _, _ in rows)
    return [
        build_match_response(match, request, move, actions.get(match.id))
        for match, request, move in rows
    ]


def build_decision_response(result: DecisionResult) -> MatchDecisionResponse:
    return MatchDecisionResponse(
        match_id=result.match_id,
        match_reference=format_reference(MATCH_PREFIX, result.match_id),
        client_request_id=result.client_request_id,
        move_id=result.move_id,
        decision=result.decision,
        actor=result.actor,
        notes=result.notes,
        decided_at=result.decided_at,
        removed_competing=result.removed_competing,
    )


async def load_match_response(db: AsyncSession, match_id: int) -> MatchResponse:
    store = MatchStore(db)
    detail = await store.get_match_detail(match_id)
    if detail is None:
        raise ResourceNotFoundError("Match", match_id)
    match, request, move = detail
    return build_match_response(match, request, move, await store.latest_action(match_id))


@router.post("/generate", response_model=GenerationReportResponse, status_code=status.HTTP_200_OK)
async def generate_matches(
    actor: Optional[str] = Query(None, max_length=100),
    generator: MatchGenerator = Depends(get_match_generator),
    db: AsyncSession = Depends(get_db)
):
    """
    Run match generation over all active requests and moves.

    Undecided matches are pruned first; decided pairs are never regenerated.
    """
    report = await generator.generate()

    await log_event(
        db=db,
        action=AuditAction.MATCHES_GENERATED,
        actor=actor,
        entity_type="match",
        metadata={key: value for key, value in asdict(report).items() if key != "validation_messages"}
    )

    return GenerationReportResponse(**asdict(report))


@router.get("/validation", response_model=ValidationResponse)
async def validate_requests(generator: MatchGenerator = Depends(get_match_generator)):
    """List active requests that generation would exclude for missing data."""
    issues = await generator.validate_requests()
    return ValidationResponse(
        issues=[
            ValidationIssueResponse(
                client_request_id=issue.client_request_id,
                reference=issue.reference,
                missing_fields=issue.missing_fields,
                message=issue.message,
            )
            for issue in issues
        ],
        total=len(issues),
    )


@router.get("/analytics", response_model=MatchAnalytics)
async def get_match_analytics(db: AsyncSession = Depends(get_db)):
    return await MatchAnalyticsService.get_match_analytics(db)


@router.delete("/stale", response_model=PruneResponse)
async def prune_stale_matches(
    actor: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete every match without a decision.

    Accepted matches are kept so move capacity stays consistent.
    """
    pruned = await MatchStore(db).prune_undecided()

    await log_event(
        db=db,
        action=AuditAction.STALE_MATCHES_PRUNED,
        actor=actor,
        entity_type="match",
        metadata={"pruned_matches": pruned}
    )

    return PruneResponse(pruned_matches=pruned)


@router.get("", response_model=MatchListResponse)
async def list_matches(
    valid_only: bool = Query(False),
    match_type: Optional[MatchType] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db)
):
    """List matches newest first, with request and move summaries."""
    store = MatchStore(db)
    total, rows = await store.list_matches(
        valid_only=valid_only,
        match_type=match_type,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return MatchListResponse(
        matches=await build_match_list(store, rows),
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/by-reference/{reference}", response_model=MatchResponse)
async def get_match_by_reference(
    reference: str = Path(..., description="Match reference, e.g. MTH-000042"),
    db: AsyncSession = Depends(get_db)
):
    match_id = parse_reference(reference, MATCH_PREFIX)
    return await load_match_response(db, match_id)


@router.get("/{match_id}", response_model=MatchResponse)
async def get_match(
    match_id: int = Path(..., description="Match ID"),
    db: AsyncSession = Depends(get_db)
):
    return await load_match_response(db, match_id)


@router.post("/{match_id}/accept", response_model=MatchDecisionResponse)
async def accept_match(
    match_id: int = Path(..., description="Match ID"),
    decision: Optional[MatchDecisionRequest] = None,
    manager: MatchLifecycleManager = Depends(get_lifecycle_manager)
):
    """
    Accept a match.

    Decisions are terminal. Fails with 409 when the match is already decided,
    the request already has an accepted match or the move lacks capacity.
    """
    decision = decision or MatchDecisionRequest()
    result = await manager.accept(match_id, actor=decision.actor, notes=decision.notes)
    return build_decision_response(result)


@router.post("/{match_id}/reject", response_model=MatchDecisionResponse)
async def reject_match(
    match_id: int = Path(..., description="Match ID"),
    decision: Optional[MatchDecisionRequest] = None,
    manager: MatchLifecycleManager = Depends(get_lifecycle_manager)
):
    """
    Reject a match.

    The match is removed and the pair is never proposed again.
    """
    decision = decision or MatchDecisionRequest()
    result = await manager.reject(match_id, actor=decision.actor, notes=decision.notes)
    return build_decision_response(result)
