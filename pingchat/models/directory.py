"""
User and listing directory models.

Only the columns this service reads are mapped; profiles and listing
content are owned elsewhere.
"""
import enum
import uuid

from sqlalchemy import Column, String

from pingchat.core.database import Base


class PhoneSharingPreference(str, enum.Enum):
    EVERYONE = "everyone"
    PING_CONFIRMATION = "ping_confirmation"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(64), nullable=False, unique=True)
    phone = Column(String(20), nullable=True)
    phone_sharing_preference = Column(
        String(32),
        nullable=False,
        default=PhoneSharingPreference.PING_CONFIRMATION.value,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"


class Listing(Base):
    __tablename__ = "listings"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_username = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, owner={self.owner_username})>"
