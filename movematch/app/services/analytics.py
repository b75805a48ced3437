"""
Analytics Service for the matching dashboard.

Aggregates match and decision statistics. READ-ONLY.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from movematch.app.models.match import Match
from movematch.app.models.match_action import MatchAction
from movematch.app.models.match_enums import MatchActionType, MatchType
from movematch.app.schemas.analytics import DailyDecisionActivity, MatchAnalytics

ACTIVITY_WINDOW_DAYS = 7


def _as_utc_date(value: datetime) -> date:
    # SQLite hands back naive UTC timestamps
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.date()


class MatchAnalyticsService:

    @staticmethod
    async def get_match_analytics(db: AsyncSession, today: Optional[date] = None) -> MatchAnalytics:
        """Totals, type distribution, decision counts and the last week's activity."""
        today = today or datetime.now(timezone.utc).date()

        total = (await db.execute(select(func.count(Match.id)))).scalar() or 0
        valid = (await db.execute(
            select(func.count(Match.id)).where(Match.is_valid.is_(True))
        )).scalar() or 0

        by_type = {match_type.value: 0 for match_type in MatchType}
        type_rows = await db.execute(
            select(Match.match_type, func.count(Match.id)).group_by(Match.match_type)
        )
        for match_type, count in type_rows:
            by_type[match_type.value] = count

        decision_counts = {action_type: 0 for action_type in MatchActionType}
        action_rows = await db.execute(
            select(MatchAction.action_type, func.count(MatchAction.id)).group_by(MatchAction.action_type)
        )
        for action_type, count in action_rows:
            decision_counts[action_type] = count

        accepted = decision_counts[MatchActionType.ACCEPTED]
        rejected = decision_counts[MatchActionType.REJECTED]
        decided = accepted + rejected
        acceptance_rate = round(accepted / decided * 100, 1) if decided else 0.0

        # Daily histogram, oldest day first
        days = [today - timedelta(days=offset) for offset in range(ACTIVITY_WINDOW_DAYS - 1, -1, -1)]
        activity = {day: {MatchActionType.ACCEPTED: 0, MatchActionType.REJECTED: 0} for day in days}
        cutoff = datetime.combine(days[0] - timedelta(days=1), time.min)
        recent = await db.execute(
            select(MatchAction.action_type, MatchAction.action_date).where(MatchAction.action_date >= cutoff)
        )
        for action_type, action_date in recent:
            day = _as_utc_date(action_date)
            if day in activity:
                activity[day][action_type] += 1

        return MatchAnalytics(
            total_matches=total,
            valid_matches=valid,
            matches_by_type=by_type,
            accepted_matches=accepted,
            rejected_matches=rejected,
            acceptance_rate=acceptance_rate,
            actions_today=sum(activity[today].values()),
            daily_activity=[
                DailyDecisionActivity(
                    day=day,
                    accepted=activity[day][MatchActionType.ACCEPTED],
                    rejected=activity[day][MatchActionType.REJECTED],
                )
                for day in days
            ],
        )
