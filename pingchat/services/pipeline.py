"""
Client-side entry point for sends: online sends go straight to the
ledger/channel, offline sends park in the queue.
"""
import uuid
from dataclasses import dataclass
from typing import Optional

from pingchat.core.errors import NetworkUnavailable
from pingchat.core.logging import get_logger
from pingchat.models.conversation import ChatMessage
from pingchat.models.ping import Ping
from pingchat.services.message_channel import MessageChannel
from pingchat.services.network import NetworkMonitor
from pingchat.services.offline_queue import DrainResult, OfflineAction, OfflineActionQueue, Priority
from pingchat.services.ping_ledger import PingLedger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    """Either the stored record, or the id of the queued offline action."""

    ping: Optional[Ping] = None
    message: Optional[ChatMessage] = None
    queued_item_id: Optional[int] = None

    @property
    def queued(self) -> bool:
        return self.queued_item_id is not None


class SendPipeline:

    def __init__(
        self,
        network: NetworkMonitor,
        ping_ledger: PingLedger,
        message_channel: MessageChannel,
        queue: OfflineActionQueue,
    ):
        self.network = network
        self.ping_ledger = ping_ledger
        self.message_channel = message_channel
        self.queue = queue
        self.last_drain: Optional[DrainResult] = None
        network.add_listener(self.on_connectivity_restored)

    async def send_ping(
        self,
        listing_id: str,
        sender: str,
        receiver: str,
        message: str,
        priority: int = Priority.MEDIUM,
    ) -> SendOutcome:
        action = OfflineAction.ping(listing_id, sender, receiver, message)
        if not self.network.is_online():
            return await self._park(action, priority)
        try:
            ping = await self.ping_ledger.create(listing_id, sender, receiver, message)
        except NetworkUnavailable:
            await self.network.mark_offline()
            return await self._park(action, priority)
        return SendOutcome(ping=ping)

    async def send_message(
        self,
        chat_id: str,
        sender: str,
        text: str,
        priority: int = Priority.HIGH,
        client_id: Optional[str] = None,
    ) -> SendOutcome:
        # Replays reuse this id, so a send that already landed is not stored twice
        client_id = client_id or str(uuid.uuid4())
        action = OfflineAction.message(chat_id, sender, text, client_id)
        if not self.network.is_online():
            return await self._park(action, priority)
        try:
            message = await self.message_channel.send(chat_id, sender, text, client_id=client_id)
        except NetworkUnavailable:
            await self.network.mark_offline()
            return await self._park(action, priority)
        return SendOutcome(message=message)

    async def _park(self, action: OfflineAction, priority: int) -> SendOutcome:
        item_id = await self.queue.enqueue(action, priority)
        return SendOutcome(queued_item_id=item_id)

    async def on_connectivity_restored(self) -> DrainResult:
        self.last_drain = await self.queue.drain()
        return self.last_drain
