"""
Conversation and message database models.
"""
import enum
import uuid
from typing import Tuple

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint

from pingchat.core.database import Base
from pingchat.core.timeutil import utcnow


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CLOSED = "closed"


class MessageStatus(str, enum.Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _MESSAGE_STATUS_ORDER.index(self)


_MESSAGE_STATUS_ORDER = [
    MessageStatus.SENDING,
    MessageStatus.SENT,
    MessageStatus.DELIVERED,
    MessageStatus.READ,
]


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Order an unordered participant pair so it has one stored form."""
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


class Conversation(Base):
    """A deduplicated thread between two participants about one listing."""

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String(64), nullable=False)

    # Always stored with participant_a < participant_b
    participant_a = Column(String(64), nullable=False, index=True)
    participant_b = Column(String(64), nullable=False, index=True)

    status = Column(String(16), nullable=False, default=ConversationStatus.ACTIVE.value)
    last_message = Column(Text, nullable=True)
    last_sender = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("listing_id", "participant_a", "participant_b", name="uq_conversations_listing_pair"),
    )

    @property
    def participants(self) -> Tuple[str, str]:
        return (self.participant_a, self.participant_b)

    def has_participant(self, username: str) -> bool:
        return username in self.participants

    def other_participant(self, username: str) -> str:
        return self.participant_b if username == self.participant_a else self.participant_a

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, listing_id={self.listing_id})>"


class ChatMessage(Base):
    """One utterance inside a conversation."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chat_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    sender_username = Column(String(64), nullable=False)
    text = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default=MessageStatus.SENDING.value)

    # Chosen by the sending client; a resend with the same id finds this row
    client_id = Column(String(64), nullable=True)

    # Assigned by the repository, strictly increasing within a chat
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("chat_id", "created_at", name="uq_messages_chat_created_at"),
        UniqueConstraint("chat_id", "client_id", name="uq_messages_chat_client_id"),
        Index("ix_messages_chat_status", "chat_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<ChatMessage(id={self.id}, chat_id={self.chat_id}, status={self.status})>"
