"""
Ping database model.
"""
import enum
import uuid

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text

from pingchat.core.database import Base
from pingchat.core.timeutil import utcnow


class PingStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"

    @property
    def is_terminal(self) -> bool:
        return self is not PingStatus.PENDING


class Ping(Base):
    """One contact attempt by a buyer on a listing. Rows are never deleted."""

    __tablename__ = "pings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String(64), nullable=False, index=True)
    sender_username = Column(String(64), nullable=False, index=True)
    receiver_username = Column(String(64), nullable=False, index=True)

    # Sanitized before admission
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=PingStatus.PENDING.value)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    responded_at = Column(DateTime, nullable=True)
    response_time_minutes = Column(Integer, nullable=True)  # derived on response
    response_message = Column(Text, nullable=True)

    ping_count = Column(Integer, nullable=False, default=1)
    last_ping_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        # At most one pending ask per (listing, sender, receiver)
        Index(
            "uq_pings_pending_triple",
            "listing_id", "sender_username", "receiver_username",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_pings_triple_status", "listing_id", "sender_username", "receiver_username", "status"),
    )

    def __repr__(self) -> str:
        return f"<Ping(id={self.id}, listing_id={self.listing_id}, status={self.status})>"
