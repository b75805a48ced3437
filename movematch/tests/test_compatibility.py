"""
Compatibility evaluator tests: date gate, volume and validity.
"""

from datetime import date

import pytest

from movematch.app.models.match_enums import DistanceMethod, MatchType
from movematch.app.services.compatibility import (
    check_dates, check_volume, effective_window, evaluate, is_valid_match
)
from movematch.app.services.distance import DistanceEstimate


class RecordingEstimator:
    """Counts calls and returns a fixed distance."""

    def __init__(self, km=10.0):
        self.km = km
        self.calls = 0

    async def estimate_detour(self, request, move):
        self.calls += 1
        return DistanceEstimate(self.km, DistanceMethod.ROUTE)


def test_fixed_date_within_tolerance(request_builder, move_builder):
    check = check_dates(request_builder(), move_builder(departure_date=date(2025, 6, 25)))
    assert check.compatible
    assert check.date_diff_days == 15
    assert not check.flexible
    assert check.max_allowed_days == 15


def test_fixed_date_outside_tolerance(request_builder, move_builder):
    check = check_dates(request_builder(), move_builder(departure_date=date(2025, 5, 25)))
    assert not check.compatible
    assert check.date_diff_days == 16


def test_missing_desired_date_is_incompatible(request_builder, move_builder):
    assert not check_dates(request_builder(desired_date=None), move_builder()).compatible


def test_flexible_inside_window(request_builder, move_builder):
    request = request_builder(
        flexible_dates=True, date_range_start=date(2025, 6, 1), date_range_end=date(2025, 6, 20)
    )
    check = check_dates(request, move_builder(departure_date=date(2025, 6, 20)))
    assert check.compatible
    assert check.date_diff_days == 0
    assert check.flexible
    assert check.max_allowed_days == 0


def test_flexible_outside_window(request_builder, move_builder):
    request = request_builder(
        flexible_dates=True, date_range_start=date(2025, 6, 1), date_range_end=date(2025, 6, 20)
    )
    after = check_dates(request, move_builder(departure_date=date(2025, 6, 25)))
    before = check_dates(request, move_builder(departure_date=date(2025, 5, 29)))
    assert not after.compatible and after.date_diff_days == 5
    assert not before.compatible and before.date_diff_days == 3


@pytest.mark.parametrize("start,end", [
    (date(2025, 6, 20), date(2025, 6, 1)),
    (None, date(2025, 6, 20)),
    (date(2025, 6, 1), None),
])
def test_unusable_window_means_fixed_date(request_builder, move_builder, start, end):
    request = request_builder(flexible_dates=True, date_range_start=start, date_range_end=end)
    assert effective_window(request) is None

    check = check_dates(request, move_builder())
    assert not check.flexible
    assert check.compatible
    assert check.date_diff_days == 1


def test_volume_fits(request_builder, move_builder):
    volume_ok, combined = check_volume(request_builder(estimated_volume=20.0), move_builder())
    assert volume_ok
    assert combined == 30.0


def test_volume_too_large(request_builder, move_builder):
    volume_ok, combined = check_volume(request_builder(estimated_volume=20.5), move_builder())
    assert not volume_ok
    assert combined == 30.5


def test_overbooked_move_never_ok(request_builder, move_builder):
    volume_ok, _ = check_volume(request_builder(estimated_volume=0.0), move_builder(used_volume=31.0))
    assert not volume_ok


def test_validity_threshold_symmetry():
    assert is_valid_match(100.0, 15, 15, True)
    assert not is_valid_match(100.01, 15, 15, True)
    assert not is_valid_match(100.0, 16, 15, True)
    assert not is_valid_match(100.0, 15, 15, False)
    assert is_valid_match(0.0, 0, 0, True)
    assert not is_valid_match(0.0, 1, 0, True)
    assert not is_valid_match(float("nan"), 0, 15, True)


@pytest.mark.asyncio
async def test_paris_lyon_scenario(estimator, request_builder, move_builder):
    evaluation = await evaluate(request_builder(), move_builder(), estimator)

    assert evaluation is not None
    assert evaluation.date_diff_days == 1
    assert evaluation.volume_ok
    assert evaluation.combined_volume == 20.0
    assert evaluation.distance_km < 50
    assert evaluation.match_type == MatchType.PERFECT
    assert evaluation.is_valid


@pytest.mark.asyncio
async def test_date_gate_skips_distance(request_builder, move_builder):
    request = request_builder(
        flexible_dates=True, date_range_start=date(2025, 6, 1), date_range_end=date(2025, 6, 20)
    )
    recorder = RecordingEstimator()

    evaluation = await evaluate(request, move_builder(departure_date=date(2025, 6, 25)), recorder)

    assert evaluation is None
    assert recorder.calls == 0


@pytest.mark.asyncio
async def test_far_pair_is_stored_invalid(request_builder, move_builder):
    evaluation = await evaluate(request_builder(), move_builder(), RecordingEstimator(km=250.0))

    assert evaluation is not None
    assert not evaluation.is_valid
    assert evaluation.distance_km == 250
    # Same cities still rank as perfect; type and validity are independent
    assert evaluation.match_type == MatchType.PERFECT
