"""
Append-only message stream inside a conversation.
"""
from datetime import datetime
from typing import List, Optional

from pingchat.core.errors import AccessDenied, ConflictError, NotFoundError
from pingchat.core.logging import get_logger
from pingchat.core.timeutil import Clock, utcnow
from pingchat.models.conversation import ChatMessage, Conversation, ConversationStatus, MessageStatus
from pingchat.repositories.conversations import ConversationRepository, MessageRepository
from pingchat.services import notifications
from pingchat.services.notifications import NotificationDispatcher, NotificationEvent
from pingchat.services.rate_limiter import MESSAGE, RateLimiter
from pingchat.services.validation import MessageValidator

logger = get_logger(__name__)


class MessageChannel:

    def __init__(
        self,
        conversations: ConversationRepository,
        messages: MessageRepository,
        rate_limiter: RateLimiter,
        validator: MessageValidator,
        dispatcher: NotificationDispatcher,
        clock: Clock = utcnow,
    ):
        self.conversations = conversations
        self.messages = messages
        self.rate_limiter = rate_limiter
        self.validator = validator
        self.dispatcher = dispatcher
        self.clock = clock

    async def _participant_conversation(self, chat_id: str, username: str) -> Conversation:
        conversation = await self.conversations.get(chat_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {chat_id} not found")
        if not conversation.has_participant(username):
            raise AccessDenied("Not a participant of this conversation")
        return conversation

    async def send(self, chat_id: str, sender: str, text: str, client_id: Optional[str] = None) -> ChatMessage:
        """
        Send a message into a conversation.

        The row is written as ``sending`` and then advanced to ``sent`` once
        persisted; delivered/read belong to the recipient side. Resending with
        a ``client_id`` that already landed finishes and returns that message.
        """
        clean_text = self.validator.clean(text)
        conversation = await self._participant_conversation(chat_id, sender)
        if client_id is not None:
            existing = await self.messages.find_by_client_id(chat_id, client_id)
            if existing is not None:
                logger.info(
                    "Message already stored for client id",
                    extra={"extra_data": {"chat_id": chat_id, "message_id": existing.id}}
                )
                if existing.status != MessageStatus.SENDING.value:
                    return existing
                # The earlier attempt stopped before confirming or notifying
                return await self._finish_send(conversation, existing)

        if conversation.status != ConversationStatus.ACTIVE.value:
            raise ConflictError(f"Conversation is {conversation.status}")

        await self.rate_limiter.enforce(sender, MESSAGE)

        message = await self.messages.append(chat_id, sender, clean_text, self.clock(), client_id=client_id)
        return await self._finish_send(conversation, message)

    async def _finish_send(self, conversation: Conversation, message: ChatMessage) -> ChatMessage:
        if await self.messages.advance_status(message.id, MessageStatus.SENT):
            message.status = MessageStatus.SENT.value

        logger.info(
            "Message sent",
            extra={"extra_data": {
                "chat_id": conversation.id,
                "message_id": message.id,
                "sender": message.sender_username,
            }}
        )
        await notifications.dispatch(self.dispatcher, NotificationEvent(
            kind=notifications.MESSAGE_SENT,
            listing_id=conversation.listing_id,
            actor=message.sender_username,
            payload={
                "chat_id": conversation.id,
                "message_id": message.id,
                "recipient": conversation.other_participant(message.sender_username),
                "text": message.text,
            },
        ))
        return message

    async def list_messages(
        self,
        chat_id: str,
        viewer: str,
        limit: int = 30,
        before: Optional[datetime] = None,
    ) -> List[ChatMessage]:
        """A page of messages in authoritative order; pass ``before`` to load older ones."""
        await self._participant_conversation(chat_id, viewer)
        return await self.messages.list_for_chat(chat_id, limit, before)

    async def mark_delivered(self, message_id: str, actor: str, chat_id: Optional[str] = None) -> ChatMessage:
        message = await self.messages.get(message_id)
        if message is None or (chat_id is not None and message.chat_id != chat_id):
            raise NotFoundError(f"Message {message_id} not found")
        await self._participant_conversation(message.chat_id, actor)
        if message.sender_username == actor:
            raise AccessDenied("Delivery receipts come from the recipient")

        await self.messages.advance_status(message_id, MessageStatus.DELIVERED)
        return await self.messages.get(message_id)

    async def mark_read(self, chat_id: str, reader: str) -> int:
        """Mark everything the reader received in this chat as read."""
        await self._participant_conversation(chat_id, reader)
        updated = await self.messages.mark_read_for(chat_id, reader)
        logger.debug(
            "Marked messages read",
            extra={"extra_data": {"chat_id": chat_id, "reader": reader, "updated": updated}}
        )
        return updated

    async def unread_count(self, chat_id: str, username: str) -> int:
        await self._participant_conversation(chat_id, username)
        return await self.messages.unread_count(chat_id, username)
