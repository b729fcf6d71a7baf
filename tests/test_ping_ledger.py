"""
Tests for ping creation, follow-ups and the accept/decline state machine.
"""
import asyncio

import pytest

from pingchat.core.errors import (
    AccessDenied,
    ConflictError,
    NetworkUnavailable,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
)
from pingchat.models.ping import PingStatus
from pingchat.repositories.conversations import ConversationRepository
from pingchat.services import notifications

from tests.support import ALICE_ID, BOB_ID, CAROL_ID


@pytest.fixture
def ledger(services):
    return services.ping_ledger


async def test_create_pending_ping(ledger, dispatcher, clock):
    ping = await ledger.create("L42", "alice", "bob", "  Is this available?  ")

    assert ping.status == PingStatus.PENDING.value
    assert ping.message == "Is this available?"
    assert ping.ping_count == 1
    assert ping.created_at == clock.now
    assert ping.last_ping_at == clock.now
    assert ping.response_time_minutes is None

    assert dispatcher.kinds() == [notifications.PING_CREATED]
    assert dispatcher.events[0].payload["continuation"] is False


async def test_only_one_pending_ping_per_triple(ledger):
    await ledger.create("L42", "alice", "bob", "First ask")
    with pytest.raises(ConflictError):
        await ledger.create("L42", "alice", "bob", "Second ask")

    assert len(await ledger.list_sent("alice")) == 1


async def test_double_submit_creates_one_ping(ledger):
    results = await asyncio.gather(
        ledger.create("L42", "alice", "bob", "Is this available?"),
        ledger.create("L42", "alice", "bob", "Is this available?"),
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 1
    assert len(await ledger.list_sent("alice")) == 1


async def test_triple_validation(ledger):
    with pytest.raises(ValidationError):
        await ledger.create("L42", "bob", "bob", "Talking to myself")
    with pytest.raises(NotFoundError):
        await ledger.create("L404", "alice", "bob", "Hello")
    with pytest.raises(ValidationError):
        await ledger.create("L42", "alice", "carol", "Wrong owner")


async def test_invalid_message_is_rejected_before_rate_limit(services, ledger):
    with pytest.raises(ValidationError):
        await ledger.create("L42", "alice", "bob", "   ")
    assert await services.rate_limiter.remaining("alice", "ping") == 5


async def test_ping_rate_limit(ledger):
    await ledger.create("L42", "alice", "bob", "one")
    await ledger.create("L9", "alice", "carol", "two")
    for _ in range(3):
        with pytest.raises(ConflictError):
            await ledger.create("L42", "alice", "bob", "again")

    with pytest.raises(RateLimitExceeded):
        await ledger.create("L9", "alice", "carol", "six")


async def test_accept_creates_conversation_and_unlocks_phone(services, ledger, dispatcher, clock, seeded):
    ping = await ledger.create("L42", "alice", "bob", "Is this available?")
    clock.advance(minutes=90, seconds=59)

    accepted = await ledger.update_status(ping.id, "accepted", "Yes it is", actor="bob")

    assert accepted.status == PingStatus.ACCEPTED.value
    assert accepted.responded_at == clock.now
    assert accepted.response_time_minutes == 90
    assert accepted.response_message == "Yes it is"

    conversations = await services.resolver.list_for_user("alice")
    assert len(conversations) == 1
    messages = await services.message_channel.list_messages(conversations[0].id, "bob")
    assert [m.text for m in messages] == ["Is this available?"]

    visibility = await services.phone_gate.get_visibility(BOB_ID, ALICE_ID)
    assert visibility.phone == "+15550000002"

    assert dispatcher.kinds() == [notifications.PING_CREATED, notifications.PING_ACCEPTED]
    assert dispatcher.events[-1].payload["chat_id"] == conversations[0].id


async def test_accept_without_grant_when_owner_shares_with_everyone(services, ledger):
    ping = await ledger.create("L9", "alice", "carol", "Still for sale?")
    await ledger.update_status(ping.id, "accepted", actor="carol")

    assert await services.phone_gate.list_grants(CAROL_ID) == []
    assert (await services.phone_gate.get_visibility(CAROL_ID, ALICE_ID)).can_share


async def test_decline_opens_nothing(services, ledger, dispatcher):
    ping = await ledger.create("L42", "alice", "bob", "Is this available?")
    declined = await ledger.update_status(ping.id, "declined", actor="bob")

    assert declined.status == PingStatus.DECLINED.value
    assert await services.resolver.list_for_user("alice") == []
    assert (await services.phone_gate.get_visibility(BOB_ID, ALICE_ID)).phone is None
    assert dispatcher.kinds()[-1] == notifications.PING_DECLINED

    # A declined ping does not block a new ask
    again = await ledger.create("L42", "alice", "bob", "Would you take less?")
    assert again.id != ping.id
    assert again.status == PingStatus.PENDING.value


async def test_terminal_status_is_final(ledger):
    ping = await ledger.create("L42", "alice", "bob", "Hi")
    await ledger.update_status(ping.id, "declined", actor="bob")

    with pytest.raises(ConflictError):
        await ledger.update_status(ping.id, "accepted", actor="bob")


async def test_concurrent_responses_have_one_winner(ledger):
    ping = await ledger.create("L42", "alice", "bob", "Hi")
    results = await asyncio.gather(
        ledger.update_status(ping.id, "accepted", actor="bob"),
        ledger.update_status(ping.id, "declined", actor="bob"),
        return_exceptions=True,
    )

    assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
    final = await ledger.get(ping.id)
    assert final.status in (PingStatus.ACCEPTED.value, PingStatus.DECLINED.value)


async def test_update_status_guards(ledger):
    ping = await ledger.create("L42", "alice", "bob", "Hi")

    with pytest.raises(AccessDenied):
        await ledger.update_status(ping.id, "accepted", actor="alice")
    with pytest.raises(ValidationError):
        await ledger.update_status(ping.id, "pending", actor="bob")
    with pytest.raises(ValidationError):
        await ledger.update_status(ping.id, "maybe", actor="bob")
    with pytest.raises(NotFoundError):
        await ledger.update_status("missing", "accepted", actor="bob")


async def test_follow_up_folds_into_conversation(services, ledger, dispatcher, clock, seeded):
    ping = await ledger.create("L42", "alice", "bob", "Is this available?")
    await ledger.update_status(ping.id, "accepted", actor="bob")

    clock.advance(hours=2)
    follow_up = await ledger.create("L42", "alice", "bob", "Can I come by today?")

    assert follow_up.id == ping.id
    assert follow_up.status == PingStatus.ACCEPTED.value
    assert follow_up.ping_count == 2
    assert follow_up.last_ping_at == clock.now
    assert len(await ledger.list_sent("alice")) == 1

    assert await ConversationRepository(seeded).count_for_pair("L42", "alice", "bob") == 1
    chat = (await services.resolver.list_for_user("alice"))[0]
    messages = await services.message_channel.list_messages(chat.id, "alice")
    assert [m.text for m in messages] == ["Is this available?", "Can I come by today?"]

    assert dispatcher.events[-1].payload["continuation"] is True
    assert await ledger.check_existing("L42", "alice", "bob") is True


async def test_scenario_ping_accept_then_follow_up(services, ledger, clock):
    """Ping, accept, ping again: one conversation, two messages, phone unlocked."""
    first = await ledger.create("L42", "alice", "bob", "Is this available?")
    clock.advance(minutes=5)
    await ledger.update_status(first.id, "accepted", actor="bob")
    clock.advance(minutes=1)
    await ledger.create("L42", "alice", "bob", "Great, when can I see it?")

    pings = await ledger.list_sent("alice")
    assert len(pings) == 1
    assert pings[0].ping_count == 2
    assert pings[0].response_time_minutes == 5

    chats = await services.resolver.list_for_user("bob")
    assert len(chats) == 1
    assert chats[0].last_message == "Great, when can I see it?"
    assert (await services.phone_gate.get_visibility(BOB_ID, ALICE_ID)).can_share


async def test_stats(ledger, clock):
    first = await ledger.create("L42", "alice", "bob", "one")
    await ledger.create("L9", "alice", "carol", "two")
    await ledger.create("L7", "bob", "alice", "three")
    clock.advance(minutes=10)
    await ledger.update_status(first.id, "accepted", actor="bob")

    alice = await ledger.stats("alice")
    assert alice.sent == 2
    assert alice.received == 1
    assert alice.pending == 1
    assert alice.accepted == 1
    assert alice.declined == 0
    assert alice.average_response_minutes is None

    bob = await ledger.stats("bob")
    assert bob.average_response_minutes == 10.0
    assert [p.listing_id for p in await ledger.list_received("bob")] == ["L42"]


async def test_interrupted_accept_is_completed_by_accepting_again(services, ledger, dispatcher):
    ping = await ledger.create("L42", "alice", "bob", "Is this available?")

    resolver = services.resolver
    original_get_or_create = resolver.get_or_create
    calls = []

    async def failing_once(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise NetworkUnavailable("Store unreachable")
        return await original_get_or_create(*args, **kwargs)

    resolver.get_or_create = failing_once

    with pytest.raises(NetworkUnavailable):
        await ledger.update_status(ping.id, "accepted", actor="bob")
    assert (await ledger.get(ping.id)).status == PingStatus.ACCEPTED.value
    assert await resolver.list_for_user("alice") == []
    assert not (await services.phone_gate.get_visibility(BOB_ID, ALICE_ID)).can_share

    resumed = await ledger.update_status(ping.id, "accepted", actor="bob")

    assert resumed.id == ping.id
    chats = await resolver.list_for_user("alice")
    assert len(chats) == 1
    messages = await services.message_channel.list_messages(chats[0].id, "alice")
    assert [m.text for m in messages] == ["Is this available?"]
    assert (await services.phone_gate.get_visibility(BOB_ID, ALICE_ID)).phone == "+15550000002"
    assert dispatcher.kinds()[-1] == notifications.PING_ACCEPTED

    # Nothing left to finish, so a further accept is a conflict again
    with pytest.raises(ConflictError):
        await ledger.update_status(ping.id, "accepted", actor="bob")


async def test_missing_grant_is_restored_by_accepting_again(services, ledger):
    ping = await ledger.create("L42", "alice", "bob", "Is this available?")

    gate = services.phone_gate
    original_grant = gate.grant
    calls = []

    async def failing_once(owner_id, viewer_id):
        calls.append(viewer_id)
        if len(calls) == 1:
            raise NetworkUnavailable("Store unreachable")
        return await original_grant(owner_id, viewer_id)

    gate.grant = failing_once

    with pytest.raises(NetworkUnavailable):
        await ledger.update_status(ping.id, "accepted", actor="bob")
    assert len(await services.resolver.list_for_user("alice")) == 1

    await ledger.update_status(ping.id, "accepted", actor="bob")

    assert (await gate.get_visibility(BOB_ID, ALICE_ID)).can_share
    assert len(await services.resolver.list_for_user("alice")) == 1
