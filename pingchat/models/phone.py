"""
Phone unlock grant model.
"""
import uuid

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from pingchat.core.database import Base
from pingchat.core.timeutil import utcnow


class PhoneUnlockGrant(Base):
    """Lets unlocked_by_id see owner_id's phone under ping_confirmation."""

    __tablename__ = "phone_unlock_grants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), nullable=False, index=True)
    unlocked_by_id = Column(String(36), nullable=False)
    unlocked_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("owner_id", "unlocked_by_id", name="uq_phone_unlock_grants_owner_viewer"),
    )

    def __repr__(self) -> str:
        return f"<PhoneUnlockGrant(owner_id={self.owner_id}, unlocked_by_id={self.unlocked_by_id})>"
