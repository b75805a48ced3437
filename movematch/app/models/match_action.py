"""
Match Action database model.

Append-only decision record (accept / reject) tied to a match.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, UniqueConstraint
from sqlalchemy.sql import func
from movematch.app.db.session import Base
from movematch.app.models.match_enums import MatchActionType


class MatchAction(Base):
    """
    Match Action model.

    ``match_id`` carries no foreign key: a rejected match row is deleted while
    its action stays as the audit trail. The pair ids are copied so a rejected
    pair is still recognisable by the generator. Accepted and rejected are
    both terminal, so one action per match is enforced by the store.
    """
    __tablename__ = "match_actions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    match_id = Column(Integer, nullable=False, index=True)
    client_request_id = Column(Integer, nullable=False, index=True)
    move_id = Column(Integer, nullable=False, index=True)

    action_type = Column(Enum(MatchActionType), nullable=False, index=True)
    actor = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    action_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('match_id', name='uq_match_actions_match'),
    )

    def __repr__(self):
        return f"<MatchAction(id={self.id}, match_id={self.match_id}, action='{self.action_type.value}')>"
