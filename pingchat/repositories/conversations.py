"""
Conversation and message persistence.
"""
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from pingchat.core.database import session_scope
from pingchat.core.logging import get_logger
from pingchat.models.conversation import (
    ChatMessage,
    Conversation,
    ConversationStatus,
    MessageStatus,
    canonical_pair,
)

logger = get_logger(__name__)

# Smallest step between two created_at values in the same chat
TIMESTAMP_STEP = timedelta(microseconds=1)

# Attempts at claiming a created_at slot before giving up
APPEND_ATTEMPTS = 5

# Persisted and visible to the recipient but not yet read
_RECEIVED_STATUSES = [MessageStatus.SENT.value, MessageStatus.DELIVERED.value]


class ConversationRepository:

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get(self, chat_id: str) -> Optional[Conversation]:
        async with session_scope(self._session_factory) as session:
            return await session.get(Conversation, chat_id)

    async def find(self, listing_id: str, user_a: str, user_b: str) -> Optional[Conversation]:
        participant_a, participant_b = canonical_pair(user_a, user_b)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Conversation).where(
                    Conversation.listing_id == listing_id,
                    Conversation.participant_a == participant_a,
                    Conversation.participant_b == participant_b,
                )
            )
            return result.scalar_one_or_none()

    async def count_for_pair(self, listing_id: str, user_a: str, user_b: str) -> int:
        participant_a, participant_b = canonical_pair(user_a, user_b)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(func.count(Conversation.id)).where(
                    Conversation.listing_id == listing_id,
                    Conversation.participant_a == participant_a,
                    Conversation.participant_b == participant_b,
                )
            )
            return result.scalar() or 0

    async def insert(self, listing_id: str, user_a: str, user_b: str, now: datetime) -> Optional[Conversation]:
        """
        Insert a conversation for the pair.

        Returns None when the unique constraint fires, meaning a concurrent
        writer created it first; callers re-read.
        """
        participant_a, participant_b = canonical_pair(user_a, user_b)
        conversation = Conversation(
            listing_id=listing_id,
            participant_a=participant_a,
            participant_b=participant_b,
            status=ConversationStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        async with session_scope(self._session_factory) as session:
            try:
                session.add(conversation)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Conversation already exists via constraint",
                    extra={"extra_data": {"listing_id": listing_id, "participants": [participant_a, participant_b]}}
                )
                return None
        return conversation

    async def list_for_user(self, username: str) -> List[Conversation]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Conversation)
                .where(or_(Conversation.participant_a == username, Conversation.participant_b == username))
                .order_by(Conversation.updated_at.desc())
            )
            return list(result.scalars().all())

    async def set_status(
        self,
        chat_id: str,
        allowed_from: Sequence[ConversationStatus],
        new_status: ConversationStatus,
        now: datetime,
    ) -> bool:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Conversation)
                .where(
                    Conversation.id == chat_id,
                    Conversation.status.in_([s.value for s in allowed_from]),
                )
                .values(status=new_status.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1


class MessageRepository:

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get(self, message_id: str) -> Optional[ChatMessage]:
        async with session_scope(self._session_factory) as session:
            return await session.get(ChatMessage, message_id)

    async def find_by_client_id(self, chat_id: str, client_id: str) -> Optional[ChatMessage]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(ChatMessage).where(ChatMessage.chat_id == chat_id, ChatMessage.client_id == client_id)
            )
            return result.scalar_one_or_none()

    async def append(
        self,
        chat_id: str,
        sender: str,
        text: str,
        now: datetime,
        status: MessageStatus = MessageStatus.SENDING,
        client_id: Optional[str] = None,
    ) -> ChatMessage:
        """
        Persist a message and bump the conversation's last_message.

        created_at is max(now, last created_at in the chat + 1us). The unique
        (chat_id, created_at) constraint rejects a concurrent writer that
        picked the same slot; that writer re-reads and tries again. A
        ``client_id`` already stored in the chat returns the stored row.
        """
        for attempt in range(1, APPEND_ATTEMPTS + 1):
            async with session_scope(self._session_factory) as session:
                last = await session.execute(
                    select(func.max(ChatMessage.created_at)).where(ChatMessage.chat_id == chat_id)
                )
                last_created_at = last.scalar()
                created_at = now
                if last_created_at is not None and created_at <= last_created_at:
                    created_at = last_created_at + TIMESTAMP_STEP

                message = ChatMessage(
                    chat_id=chat_id,
                    sender_username=sender,
                    text=text,
                    status=status.value,
                    client_id=client_id,
                    created_at=created_at,
                )
                try:
                    session.add(message)
                    await session.flush()
                    await session.execute(
                        update(Conversation)
                        .where(Conversation.id == chat_id)
                        .values(last_message=text, last_sender=sender, updated_at=created_at)
                        .execution_options(synchronize_session=False)
                    )
                    await session.commit()
                    return message
                except IntegrityError:
                    await session.rollback()
                    if client_id is not None:
                        existing = await self.find_by_client_id(chat_id, client_id)
                        if existing is not None:
                            return existing
                    logger.info(
                        "Message timestamp slot taken, retrying",
                        extra={"extra_data": {"chat_id": chat_id, "attempt": attempt}}
                    )
        raise RuntimeError(f"Could not append message to chat {chat_id} after {APPEND_ATTEMPTS} attempts")

    async def advance_status(self, message_id: str, new_status: MessageStatus) -> bool:
        """Move a message forward to new_status. Never moves it backward."""
        lower = [s.value for s in MessageStatus if s.rank < new_status.rank]
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(ChatMessage)
                .where(ChatMessage.id == message_id, ChatMessage.status.in_(lower))
                .values(status=new_status.value)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def mark_read_for(self, chat_id: str, reader: str) -> int:
        """Mark every message the reader received as read. Messages still sending stay put."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(ChatMessage)
                .where(
                    ChatMessage.chat_id == chat_id,
                    ChatMessage.sender_username != reader,
                    ChatMessage.status.in_(_RECEIVED_STATUSES),
                )
                .values(status=MessageStatus.READ.value)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount

    async def list_for_chat(
        self,
        chat_id: str,
        limit: int,
        before: Optional[datetime] = None,
    ) -> List[ChatMessage]:
        """Up to ``limit`` messages older than ``before``, oldest first."""
        query = select(ChatMessage).where(ChatMessage.chat_id == chat_id)
        if before is not None:
            query = query.where(ChatMessage.created_at < before)
        query = query.order_by(ChatMessage.created_at.desc()).limit(limit)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(query)
            return list(reversed(result.scalars().all()))

    async def unread_count(self, chat_id: str, username: str) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(func.count(ChatMessage.id)).where(
                    and_(
                        ChatMessage.chat_id == chat_id,
                        ChatMessage.sender_username != username,
                        ChatMessage.status.in_(_RECEIVED_STATUSES),
                    )
                )
            )
            return result.scalar() or 0
