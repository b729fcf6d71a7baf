"""
Tests for sending, paging and receipts inside a conversation.
"""
import asyncio

import pytest
import pytest_asyncio

from pingchat.core.errors import AccessDenied, ConflictError, NotFoundError, RateLimitExceeded, ValidationError
from pingchat.models.conversation import MessageStatus
from pingchat.services import notifications


@pytest_asyncio.fixture
async def chat_id(services):
    result = await services.resolver.get_or_create("L42", "alice", "bob")
    return result.conversation.id


@pytest.fixture
def channel(services):
    return services.message_channel


async def test_send_persists_as_sent_and_notifies(channel, chat_id, dispatcher):
    message = await channel.send(chat_id, "alice", "  When can I pick it up?  ")
    assert message.text == "When can I pick it up?"
    assert message.status == MessageStatus.SENT.value

    event = dispatcher.events[-1]
    assert event.kind == notifications.MESSAGE_SENT
    assert event.payload["recipient"] == "bob"
    assert event.payload["chat_id"] == chat_id


async def test_send_updates_conversation_summary(services, channel, chat_id):
    await channel.send(chat_id, "bob", "Tomorrow works")
    conversation = await services.resolver.get(chat_id)
    assert conversation.last_message == "Tomorrow works"
    assert conversation.last_sender == "bob"


async def test_order_is_strict_with_a_frozen_clock(channel, chat_id):
    # The clock never moves, so ordering comes from the store's timestamps
    for i in range(5):
        await channel.send(chat_id, "alice" if i % 2 else "bob", f"message {i}")

    messages = await channel.list_messages(chat_id, "alice")
    assert [m.text for m in messages] == [f"message {i}" for i in range(5)]
    stamps = [m.created_at for m in messages]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


async def test_concurrent_sends_all_land_in_distinct_slots(channel, chat_id):
    await asyncio.gather(*(channel.send(chat_id, "alice", f"burst {i}") for i in range(4)))

    messages = await channel.list_messages(chat_id, "bob")
    assert sorted(m.text for m in messages) == [f"burst {i}" for i in range(4)]
    assert len({m.created_at for m in messages}) == 4


async def test_paging_with_before(channel, chat_id, clock):
    for i in range(6):
        clock.advance(seconds=1)
        await channel.send(chat_id, "alice", f"m{i}")

    latest = await channel.list_messages(chat_id, "bob", limit=3)
    assert [m.text for m in latest] == ["m3", "m4", "m5"]

    older = await channel.list_messages(chat_id, "bob", limit=3, before=latest[0].created_at)
    assert [m.text for m in older] == ["m0", "m1", "m2"]


async def test_non_participant_cannot_send_or_read(channel, chat_id):
    with pytest.raises(AccessDenied):
        await channel.send(chat_id, "carol", "hello")
    with pytest.raises(AccessDenied):
        await channel.list_messages(chat_id, "carol")


async def test_unknown_conversation(channel):
    with pytest.raises(NotFoundError):
        await channel.send("missing", "alice", "hello")


async def test_invalid_text_rejected(channel, chat_id):
    with pytest.raises(ValidationError):
        await channel.send(chat_id, "alice", "   ")


async def test_inactive_conversation_rejects_sends(services, channel, chat_id):
    await services.resolver.set_status(chat_id, "completed", "alice")
    with pytest.raises(ConflictError):
        await channel.send(chat_id, "alice", "one more thing")


async def test_message_rate_limit(channel, chat_id, clock):
    for i in range(30):
        await channel.send(chat_id, "alice", f"msg {i}")

    with pytest.raises(RateLimitExceeded):
        await channel.send(chat_id, "alice", "too many")

    # Budgets are per user
    await channel.send(chat_id, "bob", "still fine")

    clock.advance(seconds=60)
    await channel.send(chat_id, "alice", "new window")


async def test_delivery_and_read_receipts_move_forward_only(channel, chat_id):
    message = await channel.send(chat_id, "alice", "ping")

    with pytest.raises(AccessDenied):
        await channel.mark_delivered(message.id, "alice")

    delivered = await channel.mark_delivered(message.id, "bob")
    assert delivered.status == MessageStatus.DELIVERED.value

    assert await channel.unread_count(chat_id, "bob") == 1
    assert await channel.unread_count(chat_id, "alice") == 0
    assert await channel.mark_read(chat_id, "bob") == 1
    assert await channel.unread_count(chat_id, "bob") == 0

    # A late delivery receipt does not move a read message back
    again = await channel.mark_delivered(message.id, "bob")
    assert again.status == MessageStatus.READ.value


async def test_mark_delivered_checks_chat(channel, chat_id):
    message = await channel.send(chat_id, "alice", "hi")
    with pytest.raises(NotFoundError):
        await channel.mark_delivered(message.id, "bob", chat_id="other-chat")
    with pytest.raises(NotFoundError):
        await channel.mark_delivered("missing", "bob")


async def test_resend_with_same_client_id_returns_stored_message(channel, chat_id, dispatcher):
    first = await channel.send(chat_id, "alice", "On my way", client_id="device-1-msg-7")
    again = await channel.send(chat_id, "alice", "On my way", client_id="device-1-msg-7")

    assert again.id == first.id
    assert again.status == MessageStatus.SENT.value
    messages = await channel.list_messages(chat_id, "bob")
    assert [m.text for m in messages] == ["On my way"]
    assert dispatcher.kinds().count(notifications.MESSAGE_SENT) == 1

    other = await channel.send(chat_id, "alice", "On my way", client_id="device-1-msg-8")
    assert other.id != first.id


async def test_read_receipts_skip_messages_still_sending(channel, chat_id, clock):
    stuck = await channel.messages.append(chat_id, "alice", "half sent", clock())
    assert stuck.status == MessageStatus.SENDING.value
    await channel.send(chat_id, "alice", "fully sent")

    assert await channel.unread_count(chat_id, "bob") == 1
    assert await channel.mark_read(chat_id, "bob") == 1

    statuses = {m.text: m.status for m in await channel.list_messages(chat_id, "bob")}
    assert statuses == {"half sent": MessageStatus.SENDING.value, "fully sent": MessageStatus.READ.value}
