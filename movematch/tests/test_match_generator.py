"""
Match generation tests.
"""

import asyncio
from datetime import date

import pytest
from sqlalchemy import func, select

from movematch.app.models.match import Match
from movematch.app.models.match_action import MatchAction
from movematch.app.models.match_enums import (
    ClientRequestStatus, DistanceMethod, MatchActionType, MatchDecisionState, MatchType, MoveCustomStatus, MoveStatus
)
from movematch.app.services.compatibility import evaluate
from movematch.app.services.match_generator import MatchGenerator
from movematch.app.services.match_lifecycle import MatchLifecycleManager
from movematch.app.services.match_store import MatchStore


async def count_matches(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count(Match.id)))


async def run_generation(session_factory, estimator, **kwargs):
    async with session_factory() as session:
        return await MatchGenerator(session, estimator, **kwargs).generate()


@pytest.mark.asyncio
async def test_generates_paris_lyon_match(session_factory, estimator, make_request, make_move):
    request = await make_request()
    move = await make_move()

    report = await run_generation(session_factory, estimator)

    assert report.requests_considered == 1
    assert report.moves_considered == 1
    assert report.pairs_evaluated == 1
    assert report.matches_created == 1
    assert report.valid_matches == 1
    assert report.degraded_distances == 1
    assert not report.cancelled

    async with session_factory() as session:
        match = (await session.execute(select(Match))).scalar_one()
    assert match.client_request_id == request.id
    assert match.move_id == move.id
    assert match.date_diff_days == 1
    assert match.combined_volume == 20.0
    assert match.volume_ok
    assert match.is_valid
    assert match.match_type == MatchType.PERFECT
    assert match.distance_km < 50
    assert match.distance_method == DistanceMethod.GEOMETRIC


@pytest.mark.asyncio
async def test_generation_is_idempotent(session_factory, estimator, make_request, make_move):
    await make_request()
    await make_move()

    await run_generation(session_factory, estimator, prune=False)
    second = await run_generation(session_factory, estimator, prune=False)

    assert second.matches_created == 0
    assert second.skipped_existing == 1
    assert await count_matches(session_factory) == 1


@pytest.mark.asyncio
async def test_pruning_replaces_undecided_matches(session_factory, estimator, make_request, make_move):
    await make_request()
    await make_move()

    await run_generation(session_factory, estimator)
    second = await run_generation(session_factory, estimator)

    assert second.pruned_matches == 1
    assert second.matches_created == 1
    assert await count_matches(session_factory) == 1


@pytest.mark.asyncio
async def test_pruning_keeps_decided_matches(session_factory, estimator, db_session, make_request, make_move, make_match):
    request = await make_request()
    move = await make_move()
    match = await make_match(request, move)
    db_session.add(MatchAction(
        match_id=match.id, client_request_id=request.id, move_id=move.id,
        action_type=MatchActionType.ACCEPTED,
    ))
    await db_session.commit()

    async with session_factory() as session:
        pruned = await MatchStore(session).prune_undecided()

    assert pruned == 0
    assert await count_matches(session_factory) == 1


@pytest.mark.asyncio
async def test_date_incompatible_pair_is_not_stored(session_factory, make_request, make_move):
    await make_request(
        flexible_dates=True,
        date_range_start=date(2025, 6, 1),
        date_range_end=date(2025, 6, 20),
    )
    await make_move(departure_date=date(2025, 6, 25))

    class FailingEstimator:
        async def estimate_detour(self, request, move):
            raise AssertionError("distance must not be computed for incompatible dates")

    report = await run_generation(session_factory, FailingEstimator())

    assert report.pairs_evaluated == 1
    assert report.date_incompatible == 1
    assert report.matches_created == 0
    assert await count_matches(session_factory) == 0


@pytest.mark.asyncio
async def test_invalid_pairs_are_stored(session_factory, estimator, make_request, make_move):
    await make_request(estimated_volume=50.0)
    await make_move()

    report = await run_generation(session_factory, estimator)

    assert report.matches_created == 1
    assert report.valid_matches == 0
    async with session_factory() as session:
        match = (await session.execute(select(Match))).scalar_one()
    assert not match.volume_ok
    assert not match.is_valid


@pytest.mark.asyncio
async def test_incomplete_requests_are_reported(session_factory, estimator, make_request, make_move):
    incomplete = await make_request(departure_postal_code=None, arrival_city="  ")
    await make_request(desired_date=None)
    await make_move()

    async with session_factory() as session:
        generator = MatchGenerator(session, estimator)
        issues = await generator.validate_requests()
        report = await generator.generate()

    assert len(issues) == 2
    first = next(issue for issue in issues if issue.client_request_id == incomplete.id)
    assert first.missing_fields == ["departure postal code", "arrival city"]
    assert incomplete.reference in first.message

    assert report.incomplete_requests == 2
    assert report.requests_considered == 0
    assert report.matches_created == 0
    assert len(report.validation_messages) == 2


@pytest.mark.asyncio
async def test_flexible_window_replaces_desired_date(session_factory, estimator, make_request, make_move):
    await make_request(
        desired_date=None,
        flexible_dates=True,
        date_range_start=date(2025, 6, 1),
        date_range_end=date(2025, 6, 20),
    )
    await make_move()

    report = await run_generation(session_factory, estimator)

    assert report.incomplete_requests == 0
    assert report.matches_created == 1


@pytest.mark.asyncio
async def test_inactive_records_are_ignored(session_factory, estimator, make_request, make_move):
    await make_request(status=ClientRequestStatus.COMPLETED)
    await make_request(is_matched=True)
    await make_move(status_custom=MoveCustomStatus.TERMINE)
    await make_move(status=MoveStatus.CANCELLED)

    report = await run_generation(session_factory, estimator)

    assert report.requests_considered == 0
    assert report.moves_considered == 0
    assert report.matches_created == 0


@pytest.mark.asyncio
async def test_in_progress_move_is_active(session_factory, estimator, make_request, make_move):
    await make_request()
    await make_move(status_custom=MoveCustomStatus.EN_COURS)

    report = await run_generation(session_factory, estimator)

    assert report.moves_considered == 1
    assert report.matches_created == 1


@pytest.mark.asyncio
async def test_rejected_pair_is_not_regenerated(session_factory, estimator, db_session, make_request, make_move):
    request = await make_request()
    move = await make_move()
    # Rejected match rows are deleted, only the action remains
    db_session.add(MatchAction(
        match_id=999, client_request_id=request.id, move_id=move.id,
        action_type=MatchActionType.REJECTED,
    ))
    await db_session.commit()

    report = await run_generation(session_factory, estimator)

    assert report.skipped_existing == 1
    assert report.matches_created == 0


@pytest.mark.asyncio
async def test_cancelled_run_creates_nothing(session_factory, estimator, make_request, make_move):
    await make_request()
    await make_move()
    cancel_event = asyncio.Event()
    cancel_event.set()

    async with session_factory() as session:
        report = await MatchGenerator(session, estimator).generate(cancel_event=cancel_event)

    assert report.cancelled
    assert report.pairs_evaluated == 0
    assert await count_matches(session_factory) == 0


@pytest.mark.asyncio
async def test_many_pairs_with_bounded_concurrency(session_factory, estimator, make_request, make_move):
    for _ in range(3):
        await make_request()
    for day in (9, 11, 30):
        await make_move(departure_date=date(2025, 6, day))

    report = await run_generation(session_factory, estimator, max_concurrency=2)

    # June 30 is 20 days after the desired date
    assert report.pairs_evaluated == 9
    assert report.date_incompatible == 3
    assert report.matches_created == 6
    assert await count_matches(session_factory) == 6


@pytest.mark.asyncio
async def test_duplicate_insert_is_a_conflict(session_factory, estimator, make_request, make_move):
    request = await make_request()
    move = await make_move()
    evaluation = await evaluate(request, move, estimator)

    async with session_factory() as session:
        store = MatchStore(session)
        assert await store.insert_match(evaluation) is not None
        assert await store.insert_match(evaluation) is None

    assert await count_matches(session_factory) == 1


@pytest.mark.asyncio
async def test_new_match_never_inherits_a_rejection(session_factory, estimator, make_request, make_move):
    await make_request()
    await make_request()
    await make_move()
    await run_generation(session_factory, estimator)

    async with session_factory() as session:
        newest = (await session.execute(select(Match).order_by(Match.id.desc()).limit(1))).scalar_one()
        await MatchLifecycleManager(session).reject(newest.id)

    late_request = await make_request()
    report = await run_generation(session_factory, estimator)
    assert report.skipped_existing == 1

    async with session_factory() as session:
        late_match = (await session.execute(
            select(Match).where(Match.client_request_id == late_request.id)
        )).scalar_one()
        assert late_match.id > newest.id
        manager = MatchLifecycleManager(session)
        assert await manager.decision_state(late_match.id) == MatchDecisionState.PENDING
        assert await manager.decision_state(newest.id) == MatchDecisionState.REJECTED

    async with session_factory() as session:
        result = await MatchLifecycleManager(session).accept(late_match.id)
    assert result.client_request_id == late_request.id


@pytest.mark.asyncio
async def test_failing_pair_does_not_stop_the_run(session_factory, estimator, make_request, make_move):
    await make_request()
    broken = await make_request()
    await make_move()

    class PartlyBrokenEstimator:
        async def estimate_detour(self, request, move):
            if request.id == broken.id:
                raise RuntimeError("unexpected reply")
            return await estimator.estimate_detour(request, move)

    report = await run_generation(session_factory, PartlyBrokenEstimator())

    assert report.failed_pairs == 1
    assert report.pairs_evaluated == 1
    assert report.matches_created == 1
    async with session_factory() as session:
        match = (await session.execute(select(Match))).scalar_one()
    assert match.client_request_id != broken.id
