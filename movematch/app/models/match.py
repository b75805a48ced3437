"""
Match database model.

Output of the compatibility evaluation for one (client request, move) pair.
"""

from sqlalchemy import Column, Integer, Float, Boolean, DateTime, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.sql import func
from movematch.app.db.session import Base
from movematch.app.models.match_enums import MatchType, DistanceMethod
from movematch.app.models.references import MATCH_PREFIX, format_reference


class Match(Base):
    """
    Match model.

    At most one live match exists per (client_request_id, move_id); the
    unique constraint is what keeps concurrent generation runs from
    inserting the same pair twice. The decision state is not stored here,
    it is read from the latest MatchAction.
    """
    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # References
    client_request_id = Column(Integer, ForeignKey('client_requests.id', ondelete="CASCADE"), nullable=False, index=True)
    move_id = Column(Integer, ForeignKey('moves.id', ondelete="CASCADE"), nullable=False, index=True)

    # Computed metrics
    distance_km = Column(Integer, nullable=False)
    date_diff_days = Column(Integer, nullable=False)
    combined_volume = Column(Float, nullable=False)
    volume_ok = Column(Boolean, nullable=False)
    match_type = Column(Enum(MatchType), nullable=False, index=True)
    is_valid = Column(Boolean, nullable=False, index=True)
    distance_method = Column(Enum(DistanceMethod), nullable=False, default=DistanceMethod.ROUTE)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('client_request_id', 'move_id', name='uq_matches_request_move'),
        # Ids are never reused: decisions are keyed by match id and outlive deleted rows
        {"sqlite_autoincrement": True},
    )

    @property
    def reference(self) -> str:
        return format_reference(MATCH_PREFIX, self.id)

    def __repr__(self):
        return f"<Match(id={self.id}, request={self.client_request_id}, move={self.move_id}, type='{self.match_type.value}')>"
