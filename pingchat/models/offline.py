"""
Offline action queue model.

Lives in the device-local database, not the shared marketplace store.
"""
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

QueueBase = declarative_base()


class OfflineQueueItem(QueueBase):
    """A deferred ping or message send waiting for connectivity."""

    __tablename__ = "offline_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False)
    payload = Column(JSON, nullable=False)
    priority = Column(Integer, nullable=False, default=2)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False)
    enqueued_at = Column(DateTime, nullable=False)
    next_attempt_at = Column(DateTime, nullable=False)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_offline_actions_order", "priority", "enqueued_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<OfflineQueueItem(id={self.id}, kind={self.kind}, retry_count={self.retry_count})>"
