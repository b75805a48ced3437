"""
Match decisions: accept, reject and request completion.

A match is pending until it has an action; accepted and rejected are both
terminal. Each decision is one transaction. Capacity and request claims use
conditional UPDATEs so two concurrent accepts can never oversubscribe a move
or match one request twice. Nothing is assumed applied when an error is
raised: the transaction is rolled back first.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.core.exceptions import (
    AppException,
    InsufficientCapacityError,
    InvalidStateTransitionError,
    MatchAlreadyDecidedError,
    PersistenceConflictError,
    RequestAlreadyMatchedError,
    ResourceNotFoundError,
)
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match import Match
from movematch.app.models.match_action import MatchAction
from movematch.app.models.match_enums import ClientRequestStatus, MatchActionType, MatchDecisionState
from movematch.app.services.audit import AuditAction, log_event
from movematch.app.services.match_store import ACTIVE_REQUEST_STATUSES, MatchStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionResult:
    match_id: int
    client_request_id: int
    move_id: int
    decision: MatchDecisionState
    actor: Optional[str]
    notes: Optional[str]
    decided_at: datetime
    removed_competing: int = 0


def decision_from_action(action: Optional[MatchAction]) -> MatchDecisionState:
    if action is None:
        return MatchDecisionState.PENDING
    if action.action_type == MatchActionType.ACCEPTED:
        return MatchDecisionState.ACCEPTED
    return MatchDecisionState.REJECTED


class MatchLifecycleManager:
    """Applies decisions to matches through a MatchStore."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = MatchStore(db)

    async def decision_state(self, match_id: int) -> MatchDecisionState:
        action = await self.store.latest_action(match_id)
        if action is None and await self.store.get_match(match_id) is None:
            raise ResourceNotFoundError("Match", match_id)
        return decision_from_action(action)

    async def _load_pending_match(self, match_id: int) -> Match:
        action = await self.store.latest_action(match_id)
        if action is not None:
            raise MatchAlreadyDecidedError(match_id, decision_from_action(action).value)

        match = await self.store.get_match(match_id)
        if match is None:
            raise ResourceNotFoundError("Match", match_id)
        return match

    async def _rollback_and_raise(self, exc: Exception, operation: str, details: dict):
        """Roll back, then re-raise AppExceptions as-is and wrap store errors."""
        await self.db.rollback()
        if isinstance(exc, AppException):
            raise exc
        logger.warning("%s rolled back: %s", operation, exc)
        raise PersistenceConflictError(
            f"{operation} could not be stored",
            details={**details, "reason": type(exc).__name__},
        ) from exc

    async def _claim_failure(self, request: ClientRequest) -> AppException:
        """Why the conditional claim on ``request`` matched no row."""
        await self.db.refresh(request)
        if request.status not in ACTIVE_REQUEST_STATUSES:
            return InvalidStateTransitionError(
                f"Client request {request.id} is {request.status.value} and cannot be matched",
                details={"client_request_id": request.id, "status": request.status.value},
            )
        return RequestAlreadyMatchedError(request.id)

    async def accept(self, match_id: int, actor: Optional[str] = None, notes: Optional[str] = None) -> DecisionResult:
        """
        Accept a match.

        Marks the request matched, reserves the request's volume on the move,
        records the action and removes the request's other undecided matches.

        Raises:
            ResourceNotFoundError: unknown match
            MatchAlreadyDecidedError: the match already has a decision
            RequestAlreadyMatchedError: the request accepted another match
            InvalidStateTransitionError: the request is completed or rejected
            InsufficientCapacityError: the move cannot take the volume
            PersistenceConflictError: any other store failure
        """
        match = await self._load_pending_match(match_id)
        request = await self.store.get_request(match.client_request_id)
        move = await self.store.get_move(match.move_id)
        if request is None or move is None:
            raise ResourceNotFoundError("Match", match_id)

        volume = request.estimated_volume or 0.0
        now = datetime.now(timezone.utc)

        try:
            if not await self.store.claim_request(request.id, now):
                raise await self._claim_failure(request)

            if not await self.store.reserve_capacity(move.id, volume):
                await self.db.refresh(move)
                raise InsufficientCapacityError(move.id, volume, move.available_volume)

            await self.store.add_action(match, MatchActionType.ACCEPTED, actor, notes)
            removed = await self.store.delete_undecided_matches(request.id, keep_match_id=match.id)
            await self.db.commit()
        except (AppException, SQLAlchemyError) as exc:
            await self._rollback_and_raise(exc, f"Decision on match {match_id}", {"match_id": match_id})

        logger.info(
            "Match %s accepted: request %s on move %s (%.1f m3), %d competing matches removed",
            match.id, request.id, move.id, volume, removed,
        )
        await log_event(
            db=self.db,
            action=AuditAction.MATCH_ACCEPTED,
            actor=actor,
            entity_type="match",
            entity_id=match.id,
            metadata={
                "client_request_id": request.id,
                "move_id": move.id,
                "volume": volume,
                "removed_competing": removed,
            },
        )

        return DecisionResult(
            match_id=match.id,
            client_request_id=request.id,
            move_id=move.id,
            decision=MatchDecisionState.ACCEPTED,
            actor=actor,
            notes=notes,
            decided_at=now,
            removed_competing=removed,
        )

    async def reject(self, match_id: int, actor: Optional[str] = None, notes: Optional[str] = None) -> DecisionResult:
        """
        Reject a match.

        The action is kept and the match row deleted in the same transaction;
        the action alone stops the pair from being generated again.
        """
        match = await self._load_pending_match(match_id)
        request_id, move_id = match.client_request_id, match.move_id
        now = datetime.now(timezone.utc)

        try:
            await self.store.add_action(match, MatchActionType.REJECTED, actor, notes)
            self.db.expunge(match)
            await self.store.delete_match(match_id)
            await self.store.mark_request_rejected(request_id)
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self._rollback_and_raise(exc, f"Decision on match {match_id}", {"match_id": match_id})

        logger.info("Match %s rejected: request %s / move %s", match_id, request_id, move_id)
        await log_event(
            db=self.db,
            action=AuditAction.MATCH_REJECTED,
            actor=actor,
            entity_type="match",
            entity_id=match_id,
            metadata={"client_request_id": request_id, "move_id": move_id, "notes": notes},
        )

        return DecisionResult(
            match_id=match_id,
            client_request_id=request_id,
            move_id=move_id,
            decision=MatchDecisionState.REJECTED,
            actor=actor,
            notes=notes,
            decided_at=now,
        )

    async def complete_request(self, request_id: int, actor: Optional[str] = None) -> ClientRequest:
        """
        Mark a client request as completed.

        Its undecided matches are removed so they can no longer be accepted.
        Moves are not touched: capacity reserved by an accepted match stays.
        """
        request = await self.store.get_request(request_id)
        if request is None:
            raise ResourceNotFoundError("Client request", request_id)
        if request.status == ClientRequestStatus.COMPLETED:
            raise InvalidStateTransitionError(
                f"Client request {request_id} is already completed",
                details={"client_request_id": request_id, "status": request.status.value},
            )

        now = datetime.now(timezone.utc)
        try:
            if not await self.store.mark_request_completed(request_id, now):
                raise InvalidStateTransitionError(
                    f"Client request {request_id} is already completed",
                    details={"client_request_id": request_id, "status": ClientRequestStatus.COMPLETED.value},
                )
            removed = await self.store.delete_undecided_matches(request_id)
            await self.db.commit()
        except (AppException, SQLAlchemyError) as exc:
            await self._rollback_and_raise(
                exc, f"Completion of client request {request_id}", {"client_request_id": request_id}
            )

        logger.info("Client request %s completed, %d undecided matches removed", request_id, removed)
        await self.db.refresh(request)
        await log_event(
            db=self.db,
            action=AuditAction.CLIENT_REQUEST_COMPLETED,
            actor=actor,
            entity_type="client_request",
            entity_id=request_id,
            metadata={"removed_matches": removed},
        )
        return request

