"""
Batch match generation.

Evaluates every (active request, active move) pair that does not already
have a match or a decision, persisting one Match per date-compatible pair.
A pair is never stored twice: pairs with a live match or a recorded decision
are skipped. With pruning on, undecided matches are deleted first and
re-evaluated, so a run always reflects the current requests and moves.
A pair whose evaluation fails is counted and logged without stopping the run.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.core.config import settings
from movematch.app.models.client_request import ClientRequest
from movematch.app.models.move import Move
from movematch.app.services.compatibility import effective_window, evaluate
from movematch.app.services.distance import DistanceEstimator
from movematch.app.services.match_store import MatchStore

logger = logging.getLogger(__name__)

REQUIRED_REQUEST_FIELDS = {
    "departure_postal_code": "departure postal code",
    "departure_city": "departure city",
    "arrival_postal_code": "arrival postal code",
    "arrival_city": "arrival city",
}


@dataclass(frozen=True)
class ValidationIssue:
    client_request_id: int
    reference: str
    missing_fields: list[str]

    @property
    def message(self) -> str:
        labels = ", ".join(self.missing_fields)
        return f"Client request {self.reference} is excluded from matching, missing: {labels}"


@dataclass
class GenerationReport:
    requests_considered: int = 0
    moves_considered: int = 0
    pairs_evaluated: int = 0
    skipped_existing: int = 0
    date_incompatible: int = 0
    matches_created: int = 0
    valid_matches: int = 0
    conflicts: int = 0
    failed_pairs: int = 0
    degraded_distances: int = 0
    pruned_matches: int = 0
    incomplete_requests: int = 0
    validation_messages: list[str] = field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0


def find_missing_fields(request: ClientRequest) -> list[str]:
    """Human-readable names of the fields that keep a request out of matching."""
    missing = [
        label for attr, label in REQUIRED_REQUEST_FIELDS.items()
        if not (getattr(request, attr) or "").strip()
    ]
    # A usable flexible window replaces the desired date
    if request.desired_date is None and effective_window(request) is None:
        missing.append("desired date")
    return missing


def partition_requests(requests: list[ClientRequest]) -> tuple[list[ClientRequest], list[ValidationIssue]]:
    complete, issues = [], []
    for request in requests:
        missing = find_missing_fields(request)
        if missing:
            issues.append(ValidationIssue(request.id, request.reference, missing))
        else:
            complete.append(request)
    return complete, issues


class MatchGenerator:
    """
    Generates matches for all active requests and moves.

    Pair evaluations run concurrently up to ``max_concurrency``; inserts go
    through a single lock because they share one database session.
    """

    def __init__(
        self,
        db: AsyncSession,
        estimator: DistanceEstimator,
        max_concurrency: Optional[int] = None,
        prune: bool = True,
    ):
        self.db = db
        self.store = MatchStore(db)
        self.estimator = estimator
        self.max_concurrency = max(1, max_concurrency or settings.matching_max_concurrency)
        self.prune = prune

    async def validate_requests(self) -> list[ValidationIssue]:
        """Incomplete active requests, without running generation."""
        _, issues = partition_requests(await self.store.active_requests())
        return issues

    async def generate(self, cancel_event: Optional[asyncio.Event] = None) -> GenerationReport:
        started = time.perf_counter()
        report = GenerationReport()

        if self.prune:
            report.pruned_matches = await self.store.prune_undecided()

        requests = await self.store.active_requests()
        moves = await self.store.active_moves()
        existing = await self.store.existing_pair_keys()

        # Detached instances keep their loaded state across the per-insert rollbacks
        for instance in (*requests, *moves):
            self.db.expunge(instance)

        complete, issues = partition_requests(requests)
        report.requests_considered = len(complete)
        report.moves_considered = len(moves)
        report.incomplete_requests = len(issues)
        report.validation_messages = [issue.message for issue in issues]

        pairs = []
        for request in complete:
            for move in moves:
                if (request.id, move.id) in existing:
                    report.skipped_existing += 1
                else:
                    pairs.append((request, move))

        semaphore = asyncio.Semaphore(self.max_concurrency)
        write_lock = asyncio.Lock()

        def is_cancelled() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                return True
            return False

        async def process(request: ClientRequest, move: Move) -> None:
            async with semaphore:
                if is_cancelled():
                    return
                try:
                    evaluation = await evaluate(request, move, self.estimator)
                except Exception:
                    logger.exception("Evaluation failed for request %s / move %s", request.id, move.id)
                    report.failed_pairs += 1
                    return

            report.pairs_evaluated += 1
            if evaluation is None:
                report.date_incompatible += 1
                return
            if evaluation.distance.degraded:
                report.degraded_distances += 1

            async with write_lock:
                match = await self.store.insert_match(evaluation)

            if match is None:
                report.conflicts += 1
                return
            report.matches_created += 1
            if match.is_valid:
                report.valid_matches += 1

        # Every task settles before a store error propagates
        results = await asyncio.gather(
            *(process(request, move) for request, move in pairs),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            raise errors[0]

        report.duration_seconds = round(time.perf_counter() - started, 3)
        logger.info(
            "Match generation %s: %d requests x %d moves, %d evaluated, %d created (%d valid), "
            "%d skipped, %d date-incompatible, %d conflicts, %d failed, %d degraded, %d pruned, %d incomplete in %.3fs",
            "cancelled" if report.cancelled else "finished",
            report.requests_considered, report.moves_considered, report.pairs_evaluated,
            report.matches_created, report.valid_matches, report.skipped_existing,
            report.date_incompatible, report.conflicts, report.failed_pairs, report.degraded_distances,
            report.pruned_matches, report.incomplete_requests, report.duration_seconds,
        )
        return report
