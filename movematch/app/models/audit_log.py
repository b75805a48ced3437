"""
Audit Log Database Model.

Tracks matching engine events (generation runs, decisions, completions).
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from movematch.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for engine-level events.

    Events logged:
    - MATCHES_GENERATED / STALE_MATCHES_PRUNED
    - MATCH_ACCEPTED / MATCH_REJECTED
    - CLIENT_REQUEST_COMPLETED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who triggered the event (None for system runs)
    actor = Column(String(100), nullable=True)

    # What happened
    action = Column(String(100), nullable=False, index=True)

    # What it happened to
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
