"""
Conversation and message endpoints.
"""
from datetime import datetime
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from pingchat.api.dependencies import get_services, parse_body
from pingchat.core.logging import get_logger
from pingchat.core.security import get_actor, get_validated_body
from pingchat.models.conversation import Conversation
from pingchat.schemas.common import ErrorResponse, QueuedResponse
from pingchat.schemas.conversation import (
    ConversationListResponse,
    ConversationResponse,
    ConversationStatusUpdateRequest,
    MessageResponse,
    MessageSendRequest,
    MessagesPageResponse,
    ReadReceiptResponse,
)
from pingchat.services.container import Services

logger = get_logger(__name__)

router = APIRouter(prefix="/chats", tags=["Chats"])


def to_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        listing_id=conversation.listing_id,
        participants=list(conversation.participants),
        status=conversation.status,
        last_message=conversation.last_message,
        last_sender=conversation.last_sender,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


@router.get(
    "",
    response_model=ConversationListResponse,
    summary="List conversations",
    description="Conversations the acting user takes part in, most recently active first."
)
async def list_conversations(
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> ConversationListResponse:
    conversations = await services.resolver.list_for_user(actor)
    return ConversationListResponse(
        data=[to_response(c) for c in conversations],
        total=len(conversations),
    )


@router.patch(
    "/{chat_id}",
    response_model=ConversationResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
        409: {"model": ErrorResponse, "description": "Transition not allowed from the current status"},
    },
    summary="Complete or close a conversation",
)
async def update_conversation_status(
    chat_id: str,
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> ConversationResponse:
    request = parse_body(validated_body, ConversationStatusUpdateRequest)
    conversation = await services.resolver.set_status(chat_id, request.status, actor)
    return to_response(conversation)


@router.get(
    "/{chat_id}/messages",
    response_model=MessagesPageResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
    },
    summary="List messages",
    description="A page of messages oldest first. Pass `before` (a created_at) to load older history."
)
async def list_messages(
    chat_id: str,
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
    limit: Annotated[int, Query(ge=1, le=100, description="Number of messages to return")] = 30,
    before: Annotated[Optional[datetime], Query(description="Only messages created before this timestamp")] = None,
) -> MessagesPageResponse:
    channel = services.message_channel
    messages = await channel.list_messages(chat_id, actor, limit=limit, before=before)
    unread = await channel.unread_count(chat_id, actor)
    return MessagesPageResponse(
        data=[MessageResponse.model_validate(m) for m in messages],
        limit=limit,
        unread=unread,
    )


@router.post(
    "/{chat_id}/messages",
    response_model=MessageResponse,
    status_code=201,
    responses={
        202: {"model": QueuedResponse, "description": "Store unreachable, message queued for replay"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
        409: {"model": ErrorResponse, "description": "Conversation is not active"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        429: {"model": ErrorResponse, "description": "Message rate limit exceeded"},
    },
    summary="Send a message",
)
async def send_message(
    chat_id: str,
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> Union[MessageResponse, JSONResponse]:
    request = parse_body(validated_body, MessageSendRequest)
    outcome = await services.pipeline.send_message(chat_id, actor, request.text, client_id=request.client_id)
    if outcome.queued:
        return JSONResponse(
            status_code=202,
            content=QueuedResponse(queued_item_id=outcome.queued_item_id).model_dump(),
        )
    return MessageResponse.model_validate(outcome.message)


@router.post(
    "/{chat_id}/read",
    response_model=ReadReceiptResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
    },
    summary="Mark received messages as read",
)
async def mark_read(
    chat_id: str,
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> ReadReceiptResponse:
    updated = await services.message_channel.mark_read(chat_id, actor)
    return ReadReceiptResponse(updated=updated)


@router.post(
    "/{chat_id}/messages/{message_id}/delivered",
    response_model=MessageResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        403: {"model": ErrorResponse, "description": "Only the recipient can acknowledge delivery"},
        404: {"model": ErrorResponse, "description": "Message not found"},
    },
    summary="Acknowledge delivery of a message",
)
async def mark_delivered(
    chat_id: str,
    message_id: str,
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> MessageResponse:
    message = await services.message_channel.mark_delivered(message_id, actor, chat_id=chat_id)
    return MessageResponse.model_validate(message)
