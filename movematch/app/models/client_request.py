"""
Client Request database model.

A customer's desired relocation, waiting for carrier capacity.
"""

from sqlalchemy import Column, Integer, String, Float, Boolean, Date, DateTime, Enum
from sqlalchemy.sql import func
from movematch.app.db.session import Base
from movematch.app.models.match_enums import ClientRequestStatus, RequestMatchStatus
from movematch.app.models.references import CLIENT_REQUEST_PREFIX, format_reference


class ClientRequest(Base):
    """
    Client Request model.

    Postal codes, cities and the desired date are nullable because intake
    auto-saves partial forms; incomplete requests are excluded from matching.
    When ``flexible_dates`` is set the request accepts any move departing within
    ``[date_range_start, date_range_end]``.
    """
    __tablename__ = "client_requests"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    client_reference = Column(String(50), nullable=True, index=True)
    name = Column(String(200), nullable=True)

    # Departure
    departure_postal_code = Column(String(20), nullable=True)
    departure_city = Column(String(200), nullable=True)
    departure_country = Column(String(100), nullable=False, default="France")

    # Arrival
    arrival_postal_code = Column(String(20), nullable=True)
    arrival_city = Column(String(200), nullable=True)
    arrival_country = Column(String(100), nullable=False, default="France")

    # Timing
    desired_date = Column(Date, nullable=True, index=True)
    flexible_dates = Column(Boolean, nullable=False, default=False)
    date_range_start = Column(Date, nullable=True)
    date_range_end = Column(Date, nullable=True)

    # Capacity need (m3)
    estimated_volume = Column(Float, nullable=False, default=0.0)

    # Business status
    status = Column(Enum(ClientRequestStatus), default=ClientRequestStatus.PENDING, nullable=False, index=True)

    # Match bookkeeping
    is_matched = Column(Boolean, nullable=False, default=False, index=True)
    match_status = Column(Enum(RequestMatchStatus), nullable=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def reference(self) -> str:
        return self.client_reference or format_reference(CLIENT_REQUEST_PREFIX, self.id)

    def __repr__(self):
        return f"<ClientRequest(id={self.id}, ref='{self.reference}', status='{self.status.value}')>"
