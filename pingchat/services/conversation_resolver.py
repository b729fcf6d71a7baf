"""
Get-or-create of the single conversation per (listing, participant pair).
"""
from dataclasses import dataclass
from typing import List, Optional

from pingchat.core.errors import AccessDenied, ConflictError, NotFoundError, ValidationError
from pingchat.core.logging import get_logger
from pingchat.core.timeutil import Clock, utcnow
from pingchat.models.conversation import Conversation, ConversationStatus, MessageStatus
from pingchat.repositories.conversations import ConversationRepository, MessageRepository

logger = get_logger(__name__)

# Conversation status moves allowed through set_status
_TRANSITIONS = {
    ConversationStatus.COMPLETED: [ConversationStatus.ACTIVE],
    ConversationStatus.CLOSED: [ConversationStatus.ACTIVE, ConversationStatus.COMPLETED],
}


@dataclass
class ConversationResult:
    conversation: Conversation
    created: bool


class ConversationResolver:

    def __init__(
        self,
        conversations: ConversationRepository,
        messages: MessageRepository,
        clock: Clock = utcnow,
    ):
        self.conversations = conversations
        self.messages = messages
        self.clock = clock

    async def get_or_create(
        self,
        listing_id: str,
        user_a: str,
        user_b: str,
        seed_text: Optional[str] = None,
        seed_sender: Optional[str] = None,
        seed_new_only: bool = False,
    ) -> ConversationResult:
        """
        Return the one conversation for the listing and unordered pair.

        Two callers racing on the same pair may both miss on the read; the
        loser's insert hits the unique constraint and it re-reads the
        winner's row instead of failing. ``seed_text`` becomes the first
        message of a new conversation or is appended to an existing one,
        unless ``seed_new_only`` limits it to a conversation created here.
        """
        if user_a == user_b:
            raise ValidationError("A conversation needs two different participants")

        conversation = await self.conversations.find(listing_id, user_a, user_b)
        created = False
        if conversation is None:
            conversation = await self.conversations.insert(listing_id, user_a, user_b, self.clock())
            if conversation is None:
                conversation = await self.conversations.find(listing_id, user_a, user_b)
                if conversation is None:
                    raise RuntimeError(f"Conversation for listing {listing_id} vanished after conflict")
            else:
                created = True
                logger.info(
                    "Conversation created",
                    extra={"extra_data": {"chat_id": conversation.id, "listing_id": listing_id}}
                )

        if seed_text and (created or not seed_new_only):
            sender = seed_sender or user_a
            message = await self.messages.append(
                conversation.id, sender, seed_text, self.clock(), status=MessageStatus.SENT
            )
            conversation.last_message = message.text
            conversation.last_sender = sender
            conversation.updated_at = message.created_at

        return ConversationResult(conversation=conversation, created=created)

    async def find(self, listing_id: str, user_a: str, user_b: str) -> Optional[Conversation]:
        return await self.conversations.find(listing_id, user_a, user_b)

    async def get(self, chat_id: str) -> Conversation:
        conversation = await self.conversations.get(chat_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {chat_id} not found")
        return conversation

    async def list_for_user(self, username: str) -> List[Conversation]:
        return await self.conversations.list_for_user(username)

    async def set_status(self, chat_id: str, status: str, actor: str) -> Conversation:
        """Mark a conversation completed or closed. Only participants may."""
        try:
            target = ConversationStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown conversation status: {status}")
        if target not in _TRANSITIONS:
            raise ValidationError(f"Cannot move a conversation to {status}")

        conversation = await self.get(chat_id)
        if not conversation.has_participant(actor):
            raise AccessDenied("Only participants can change a conversation")

        if not await self.conversations.set_status(chat_id, _TRANSITIONS[target], target, self.clock()):
            raise ConflictError(f"Conversation is already {conversation.status}")
        return await self.get(chat_id)
