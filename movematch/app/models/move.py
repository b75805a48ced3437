"""
Move database model.

One carrier truck travelling a route on a date with spare cargo volume.
"""

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Enum
from sqlalchemy.sql import func
from movematch.app.db.session import Base
from movematch.app.models.match_enums import MoveStatus, MoveCustomStatus
from movematch.app.models.references import MOVE_PREFIX, format_reference


class Move(Base):
    """
    Move model.

    ``used_volume`` is the only authoritative capacity column; the available
    volume is always derived from it. It is increased only when a match is
    accepted, through an atomic conditional UPDATE.
    """
    __tablename__ = "moves"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    company_name = Column(String(200), nullable=False)
    reference = Column(String(50), nullable=True)

    # Route
    departure_postal_code = Column(String(20), nullable=False)
    departure_city = Column(String(200), nullable=False)
    arrival_postal_code = Column(String(20), nullable=False)
    arrival_city = Column(String(200), nullable=False)

    # Timing
    departure_date = Column(Date, nullable=False, index=True)

    # Capacity (m3)
    max_volume = Column(Float, nullable=False)
    used_volume = Column(Float, nullable=False, default=0.0)
    number_of_clients = Column(Integer, nullable=False, default=0)

    # Status
    status = Column(Enum(MoveStatus), default=MoveStatus.CONFIRMED, nullable=False, index=True)
    status_custom = Column(Enum(MoveCustomStatus), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def available_volume(self) -> float:
        return (self.max_volume or 0.0) - (self.used_volume or 0.0)

    @property
    def display_reference(self) -> str:
        return self.reference or format_reference(MOVE_PREFIX, self.id)

    def __repr__(self):
        return f"<Move(id={self.id}, company='{self.company_name}', date={self.departure_date})>"
