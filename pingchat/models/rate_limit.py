"""
Rate limiter window state.
"""
from sqlalchemy import Column, DateTime, Integer, String

from pingchat.core.database import Base


class RateLimitState(Base):
    """Fixed-window counter per (username, action_kind)."""

    __tablename__ = "rate_limit_states"

    username = Column(String(64), primary_key=True)
    action_kind = Column(String(32), primary_key=True)
    window_start = Column(DateTime, nullable=False)
    count = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<RateLimitState({self.username}/{self.action_kind}, count={self.count})>"
