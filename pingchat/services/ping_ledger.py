"""
Ping creation and the pending -> accepted/declined state machine.
"""
from dataclasses import dataclass
from typing import List, Optional

from pingchat.core.errors import AccessDenied, ConflictError, NotFoundError, ValidationError
from pingchat.core.logging import get_logger
from pingchat.core.timeutil import Clock, minutes_between, utcnow
from pingchat.models.directory import PhoneSharingPreference
from pingchat.models.ping import Ping, PingStatus
from pingchat.repositories.directory import UserDirectory
from pingchat.repositories.pings import PingRepository
from pingchat.services import notifications
from pingchat.services.conversation_resolver import ConversationResolver
from pingchat.services.notifications import NotificationDispatcher, NotificationEvent
from pingchat.services.phone_gate import PhoneDisclosureGate
from pingchat.services.rate_limiter import PING, RateLimiter
from pingchat.services.validation import MessageValidator

logger = get_logger(__name__)

_ACTIVE_STATUSES = (PingStatus.PENDING, PingStatus.ACCEPTED)


@dataclass(frozen=True)
class PingStats:
    sent: int
    received: int
    pending: int
    accepted: int
    declined: int
    average_response_minutes: Optional[float]


class PingLedger:

    def __init__(
        self,
        pings: PingRepository,
        directory: UserDirectory,
        rate_limiter: RateLimiter,
        validator: MessageValidator,
        resolver: ConversationResolver,
        phone_gate: PhoneDisclosureGate,
        dispatcher: NotificationDispatcher,
        clock: Clock = utcnow,
    ):
        self.pings = pings
        self.directory = directory
        self.rate_limiter = rate_limiter
        self.validator = validator
        self.resolver = resolver
        self.phone_gate = phone_gate
        self.dispatcher = dispatcher
        self.clock = clock

    async def check_existing(self, listing_id: str, sender: str, receiver: str) -> bool:
        """True if a pending or accepted ping exists for the triple."""
        existing = await self.pings.find_for_triple(listing_id, sender, receiver, _ACTIVE_STATUSES)
        return existing is not None

    async def create(self, listing_id: str, sender: str, receiver: str, message: str) -> Ping:
        """
        Ping a listing owner.

        On a triple whose ping was already accepted this is a follow-up: the
        accepted row's ping_count/last_ping_at move and the message goes into
        the existing conversation instead of creating a new ask.

        Raises:
            ValidationError: bad message, or receiver does not own the listing
            NotFoundError: unknown listing
            RateLimitExceeded: sender is over the ping budget
            ConflictError: a ping on the triple is still pending
        """
        clean_message = self.validator.clean(message)
        await self._validate_triple(listing_id, sender, receiver)
        await self.rate_limiter.enforce(sender, PING)

        existing = await self.pings.find_for_triple(listing_id, sender, receiver, _ACTIVE_STATUSES)
        if existing is not None and existing.status == PingStatus.PENDING.value:
            raise ConflictError("A ping for this listing is already pending")

        if existing is not None:
            return await self._follow_up(existing, clean_message)

        ping = await self.pings.insert_pending(listing_id, sender, receiver, clean_message, self.clock())
        logger.info(
            "Ping created",
            extra={"extra_data": {"ping_id": ping.id, "listing_id": listing_id, "sender": sender}}
        )
        await notifications.dispatch(self.dispatcher, NotificationEvent(
            kind=notifications.PING_CREATED,
            listing_id=listing_id,
            actor=sender,
            payload={"ping_id": ping.id, "receiver": receiver, "message": clean_message, "continuation": False},
        ))
        return ping

    async def _follow_up(self, accepted: Ping, clean_message: str) -> Ping:
        ping = await self.pings.record_follow_up(accepted.id, self.clock())
        result = await self.resolver.get_or_create(
            accepted.listing_id,
            accepted.sender_username,
            accepted.receiver_username,
            seed_text=clean_message,
            seed_sender=accepted.sender_username,
        )
        logger.info(
            "Ping folded into conversation",
            extra={"extra_data": {
                "ping_id": ping.id,
                "chat_id": result.conversation.id,
                "ping_count": ping.ping_count,
            }}
        )
        await notifications.dispatch(self.dispatcher, NotificationEvent(
            kind=notifications.PING_CREATED,
            listing_id=ping.listing_id,
            actor=ping.sender_username,
            payload={
                "ping_id": ping.id,
                "receiver": ping.receiver_username,
                "message": clean_message,
                "continuation": True,
                "chat_id": result.conversation.id,
            },
        ))
        return ping

    async def _validate_triple(self, listing_id: str, sender: str, receiver: str) -> None:
        if sender == receiver:
            raise ValidationError("You cannot ping your own listing")
        owner = await self.directory.get_listing_owner(listing_id)
        if owner is None:
            raise NotFoundError(f"Listing {listing_id} not found")
        if owner != receiver:
            raise ValidationError("Pings must be addressed to the listing owner")

    async def update_status(
        self,
        ping_id: str,
        new_status: str,
        response_message: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Ping:
        """
        Accept or decline a pending ping.

        The pending check and the write are one conditional UPDATE, so of two
        concurrent responses exactly one wins; the other gets ConflictError.
        Accepting an already accepted ping finishes an earlier accept that
        stopped before its conversation or phone grant landed.
        """
        try:
            status = PingStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown ping status: {new_status}")
        if not status.is_terminal:
            raise ValidationError("A ping can only be accepted or declined")

        ping = await self.pings.get(ping_id)
        if ping is None:
            raise NotFoundError(f"Ping {ping_id} not found")
        if actor is not None and actor != ping.receiver_username:
            raise AccessDenied("Only the listing owner can respond to a ping")
        if ping.status != PingStatus.PENDING.value:
            if status is PingStatus.ACCEPTED and ping.status == PingStatus.ACCEPTED.value:
                return await self._resume_accept(ping)
            raise ConflictError(f"Ping was already {ping.status}")

        clean_response = self.validator.clean(response_message) if response_message else None
        now = self.clock()
        moved = await self.pings.transition(
            ping_id,
            status,
            responded_at=now,
            response_time_minutes=minutes_between(ping.created_at, now),
            response_message=clean_response,
        )
        if not moved:
            current = await self.pings.get(ping_id)
            raise ConflictError(f"Ping was already {current.status if current else 'decided'}")

        ping = await self.pings.get(ping_id)
        logger.info(
            f"Ping {status.value}",
            extra={"extra_data": {
                "ping_id": ping_id,
                "listing_id": ping.listing_id,
                "response_time_minutes": ping.response_time_minutes,
            }}
        )

        payload = {"ping_id": ping.id, "sender": ping.sender_username}
        if status is PingStatus.ACCEPTED:
            result = await self.resolver.get_or_create(
                ping.listing_id,
                ping.sender_username,
                ping.receiver_username,
                seed_text=ping.message,
                seed_sender=ping.sender_username,
            )
            payload["chat_id"] = result.conversation.id
            await self._unlock_phone(ping)

        await self._announce(ping, status, payload)
        return ping

    async def _resume_accept(self, ping: Ping) -> Ping:
        """Create whatever an interrupted accept left out, or report the conflict."""
        conversation = await self.resolver.find(ping.listing_id, ping.sender_username, ping.receiver_username)
        repaired = False
        if conversation is None:
            result = await self.resolver.get_or_create(
                ping.listing_id,
                ping.sender_username,
                ping.receiver_username,
                seed_text=ping.message,
                seed_sender=ping.sender_username,
                seed_new_only=True,
            )
            conversation = result.conversation
            repaired = result.created
        if await self._unlock_phone(ping):
            repaired = True

        if not repaired:
            raise ConflictError("Ping was already accepted")

        logger.warning(
            "Completed an interrupted ping accept",
            extra={"extra_data": {"ping_id": ping.id, "chat_id": conversation.id}}
        )
        await self._announce(ping, PingStatus.ACCEPTED, {
            "ping_id": ping.id,
            "sender": ping.sender_username,
            "chat_id": conversation.id,
        })
        return ping

    async def _announce(self, ping: Ping, status: PingStatus, payload: dict) -> None:
        kind = notifications.PING_ACCEPTED if status is PingStatus.ACCEPTED else notifications.PING_DECLINED
        await notifications.dispatch(self.dispatcher, NotificationEvent(
            kind=kind,
            listing_id=ping.listing_id,
            actor=ping.receiver_username,
            payload=payload,
        ))

    async def _unlock_phone(self, ping: Ping) -> bool:
        """
        Grant the sender visibility of the receiver's phone when gated by pings.

        Returns True when a grant had to be written.
        """
        ids = await self.directory.resolve_ids([ping.receiver_username, ping.sender_username])
        owner_id = ids.get(ping.receiver_username)
        viewer_id = ids.get(ping.sender_username)
        if owner_id is None or viewer_id is None:
            logger.warning(
                "Skipping phone grant for unknown user",
                extra={"extra_data": {"ping_id": ping.id}}
            )
            return False

        preference = await self.phone_gate.get_preference(owner_id)
        if preference is not PhoneSharingPreference.PING_CONFIRMATION:
            return False
        if await self.phone_gate.has_grant(owner_id, viewer_id):
            return False
        await self.phone_gate.grant(owner_id, viewer_id)
        return True

    async def get(self, ping_id: str) -> Ping:
        ping = await self.pings.get(ping_id)
        if ping is None:
            raise NotFoundError(f"Ping {ping_id} not found")
        return ping

    async def list_sent(self, username: str) -> List[Ping]:
        return await self.pings.list_sent(username)

    async def list_received(self, username: str) -> List[Ping]:
        return await self.pings.list_received(username)

    async def stats(self, username: str) -> PingStats:
        counts = await self.pings.count_by_role_and_status(username)
        sent = counts["sent"]
        return PingStats(
            sent=sum(sent.values()),
            received=sum(counts["received"].values()),
            pending=sent.get(PingStatus.PENDING.value, 0),
            accepted=sent.get(PingStatus.ACCEPTED.value, 0),
            declined=sent.get(PingStatus.DECLINED.value, 0),
            average_response_minutes=await self.pings.average_response_minutes(username),
        )
