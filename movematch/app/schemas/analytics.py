"""
Analytics schemas for the matching dashboard.
"""

from datetime import date
from typing import Dict, List

from pydantic import BaseModel


class DailyDecisionActivity(BaseModel):
    """Decisions taken on one day."""
    day: date
    accepted: int
    rejected: int


class MatchAnalytics(BaseModel):
    """Match and decision statistics."""
    total_matches: int
    valid_matches: int
    matches_by_type: Dict[str, int]
    accepted_matches: int
    rejected_matches: int
    acceptance_rate: float
    actions_today: int
    daily_activity: List[DailyDecisionActivity]
