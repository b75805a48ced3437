"""
Persistence operations for the matching engine.

All reads and writes of requests, moves, matches and match actions go
through ``MatchStore``. Methods never commit unless their docstring says
so; transaction boundaries belong to the generator and lifecycle manager.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.models.client_request import ClientRequest
from movematch.app.models.match import Match
from movematch.app.models.match_action import MatchAction
from movematch.app.models.match_enums import (
    ClientRequestStatus, MatchActionType, MatchType, MoveCustomStatus, MoveStatus, RequestMatchStatus
)
from movematch.app.models.move import Move
from movematch.app.services.compatibility import PairEvaluation

logger = logging.getLogger(__name__)

ACTIVE_REQUEST_STATUSES = (ClientRequestStatus.PENDING, ClientRequestStatus.CONFIRMED)


class MatchStore:
    """Query and mutation helpers bound to one AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Reads

    async def active_requests(self) -> list[ClientRequest]:
        result = await self.db.execute(
            select(ClientRequest)
            .where(
                ClientRequest.status.in_(ACTIVE_REQUEST_STATUSES),
                ClientRequest.is_matched.is_(False),
            )
            .order_by(ClientRequest.id)
        )
        return list(result.scalars().all())

    async def active_moves(self) -> list[Move]:
        result = await self.db.execute(
            select(Move)
            .where(
                Move.status == MoveStatus.CONFIRMED,
                (Move.status_custom.is_(None)) | (Move.status_custom != MoveCustomStatus.TERMINE),
            )
            .order_by(Move.id)
        )
        return list(result.scalars().all())

    async def existing_pair_keys(self) -> set[tuple[int, int]]:
        """Pairs that must not be generated again: live matches and decided pairs."""
        matches = await self.db.execute(select(Match.client_request_id, Match.move_id))
        actions = await self.db.execute(select(MatchAction.client_request_id, MatchAction.move_id))
        keys = {(row[0], row[1]) for row in matches.all()}
        keys.update((row[0], row[1]) for row in actions.all())
        return keys

    async def get_match(self, match_id: int) -> Optional[Match]:
        result = await self.db.execute(select(Match).where(Match.id == match_id))
        return result.scalar_one_or_none()

    async def get_request(self, request_id: int) -> Optional[ClientRequest]:
        result = await self.db.execute(select(ClientRequest).where(ClientRequest.id == request_id))
        return result.scalar_one_or_none()

    async def get_move(self, move_id: int) -> Optional[Move]:
        result = await self.db.execute(select(Move).where(Move.id == move_id))
        return result.scalar_one_or_none()

    async def get_match_detail(self, match_id: int) -> Optional[tuple[Match, ClientRequest, Move]]:
        result = await self.db.execute(
            select(Match, ClientRequest, Move)
            .join(ClientRequest, Match.client_request_id == ClientRequest.id)
            .join(Move, Match.move_id == Move.id)
            .where(Match.id == match_id)
        )
        row = result.first()
        return tuple(row) if row is not None else None

    async def latest_action(self, match_id: int) -> Optional[MatchAction]:
        result = await self.db.execute(
            select(MatchAction)
            .where(MatchAction.match_id == match_id)
            .order_by(MatchAction.action_date.desc(), MatchAction.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def actions_for_matches(self, match_ids: Iterable[int]) -> dict[int, MatchAction]:
        ids = list(match_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(MatchAction).where(MatchAction.match_id.in_(ids)).order_by(MatchAction.id)
        )
        # Later rows overwrite earlier ones, leaving the latest action per match
        return {action.match_id: action for action in result.scalars().all()}

    async def list_matches(
        self,
        valid_only: bool = False,
        match_type: Optional[MatchType] = None,
        client_request_id: Optional[int] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> tuple[int, list[tuple[Match, ClientRequest, Move]]]:
        """Matches joined with their request and move, newest first, plus the total count."""
        filters = []
        if valid_only:
            filters.append(Match.is_valid.is_(True))
        if match_type is not None:
            filters.append(Match.match_type == match_type)
        if client_request_id is not None:
            filters.append(Match.client_request_id == client_request_id)

        total = await self.db.scalar(select(func.count(Match.id)).where(*filters))

        query = (
            select(Match, ClientRequest, Move)
            .join(ClientRequest, Match.client_request_id == ClientRequest.id)
            .join(Move, Match.move_id == Move.id)
            .where(*filters)
            .order_by(Match.created_at.desc(), Match.id.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return total or 0, [tuple(row) for row in result.all()]

    # Generation writes

    async def prune_undecided(self) -> int:
        """Delete every match without an action and commit. Returns the count."""
        decided = select(MatchAction.match_id)
        result = await self.db.execute(
            delete(Match)
            .where(Match.id.not_in(decided))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def insert_match(self, evaluation: PairEvaluation) -> Optional[Match]:
        """
        Insert and commit one match.

        Returns None when the pair already exists (another run won the race).
        """
        match = Match(
            client_request_id=evaluation.client_request_id,
            move_id=evaluation.move_id,
            distance_km=evaluation.distance_km,
            date_diff_days=evaluation.date_diff_days,
            combined_volume=evaluation.combined_volume,
            volume_ok=evaluation.volume_ok,
            match_type=evaluation.match_type,
            is_valid=evaluation.is_valid,
            distance_method=evaluation.distance.method,
        )
        self.db.add(match)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "Match for request %s / move %s already exists, skipping",
                evaluation.client_request_id, evaluation.move_id,
            )
            return None
        await self.db.refresh(match)
        return match

    # Decision writes (caller commits)

    async def claim_request(self, request_id: int, matched_at: datetime) -> bool:
        """Mark the request matched unless it is retired or another accept got there first."""
        result = await self.db.execute(
            update(ClientRequest)
            .where(
                ClientRequest.id == request_id,
                ClientRequest.status.in_(ACTIVE_REQUEST_STATUSES),
                ClientRequest.is_matched.is_(False),
            )
            .values(
                status=ClientRequestStatus.CONFIRMED,
                is_matched=True,
                match_status=RequestMatchStatus.ACCEPTED,
                matched_at=matched_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reserve_capacity(self, move_id: int, volume: float) -> bool:
        """Add ``volume`` to the move's used volume only if it still fits."""
        result = await self.db.execute(
            update(Move)
            .where(Move.id == move_id, Move.used_volume + volume <= Move.max_volume)
            .values(
                used_volume=Move.used_volume + volume,
                number_of_clients=Move.number_of_clients + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def add_action(
        self,
        match: Match,
        action_type: MatchActionType,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MatchAction:
        action = MatchAction(
            match_id=match.id,
            client_request_id=match.client_request_id,
            move_id=match.move_id,
            action_type=action_type,
            actor=actor,
            notes=notes,
        )
        self.db.add(action)
        await self.db.flush()
        return action

    async def delete_match(self, match_id: int) -> None:
        await self.db.execute(
            delete(Match).where(Match.id == match_id).execution_options(synchronize_session=False)
        )

    async def delete_undecided_matches(self, request_id: int, keep_match_id: Optional[int] = None) -> int:
        """Delete the request's undecided matches, except ``keep_match_id``. Returns the count."""
        decided = select(MatchAction.match_id)
        filters = [Match.client_request_id == request_id, Match.id.not_in(decided)]
        if keep_match_id is not None:
            filters.append(Match.id != keep_match_id)
        result = await self.db.execute(
            delete(Match)
            .where(*filters)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def mark_request_rejected(self, request_id: int) -> None:
        await self.db.execute(
            update(ClientRequest)
            .where(ClientRequest.id == request_id, ClientRequest.is_matched.is_(False))
            .values(match_status=RequestMatchStatus.REJECTED)
            .execution_options(synchronize_session=False)
        )

    async def mark_request_completed(self, request_id: int, completed_at: datetime) -> bool:
        """Complete the request unless it already is. Returns False when nothing changed."""
        result = await self.db.execute(
            update(ClientRequest)
            .where(ClientRequest.id == request_id, ClientRequest.status != ClientRequestStatus.COMPLETED)
            .values(status=ClientRequestStatus.COMPLETED, completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
