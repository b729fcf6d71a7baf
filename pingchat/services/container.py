"""
Explicit wiring of the pipeline services.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from pingchat.core.config import Settings
from pingchat.core.timeutil import Clock, utcnow
from pingchat.repositories.conversations import ConversationRepository, MessageRepository
from pingchat.repositories.directory import UserDirectory
from pingchat.repositories.grants import GrantRepository
from pingchat.repositories.pings import PingRepository
from pingchat.repositories.rate_limits import RateLimitRepository
from pingchat.services.backoff import ExponentialBackoff
from pingchat.services.conversation_resolver import ConversationResolver
from pingchat.services.message_channel import MessageChannel
from pingchat.services.network import NetworkMonitor
from pingchat.services.notifications import LoggingDispatcher, NotificationDispatcher
from pingchat.services.offline_queue import OfflineActionQueue
from pingchat.services.phone_gate import PhoneDisclosureGate
from pingchat.services.ping_ledger import PingLedger
from pingchat.services.pipeline import SendPipeline
from pingchat.services.rate_limiter import RateLimiter
from pingchat.services.validation import MessageValidator


@dataclass
class Services:
    directory: UserDirectory
    rate_limiter: RateLimiter
    phone_gate: PhoneDisclosureGate
    resolver: ConversationResolver
    message_channel: MessageChannel
    ping_ledger: PingLedger
    offline_queue: OfflineActionQueue
    network: NetworkMonitor
    pipeline: SendPipeline
    dispatcher: NotificationDispatcher


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker,
    queue_session_factory: async_sessionmaker,
    dispatcher: Optional[NotificationDispatcher] = None,
    network: Optional[NetworkMonitor] = None,
    backoff: Optional[ExponentialBackoff] = None,
    clock: Clock = utcnow,
) -> Services:
    dispatcher = dispatcher or LoggingDispatcher()
    network = network or NetworkMonitor()
    backoff = backoff or ExponentialBackoff.from_settings(settings)

    directory = UserDirectory(session_factory)
    validator = MessageValidator(settings)
    rate_limiter = RateLimiter(RateLimitRepository(session_factory), settings, clock=clock)
    phone_gate = PhoneDisclosureGate(GrantRepository(session_factory), directory, clock=clock)

    conversations = ConversationRepository(session_factory)
    messages = MessageRepository(session_factory)
    resolver = ConversationResolver(conversations, messages, clock=clock)
    message_channel = MessageChannel(
        conversations, messages, rate_limiter, validator, dispatcher, clock=clock
    )
    ping_ledger = PingLedger(
        PingRepository(session_factory),
        directory,
        rate_limiter,
        validator,
        resolver,
        phone_gate,
        dispatcher,
        clock=clock,
    )
    offline_queue = OfflineActionQueue(
        queue_session_factory,
        ping_ledger,
        message_channel,
        backoff,
        max_size=settings.offline_queue_max_size,
        clock=clock,
    )
    pipeline = SendPipeline(network, ping_ledger, message_channel, offline_queue)

    return Services(
        directory=directory,
        rate_limiter=rate_limiter,
        phone_gate=phone_gate,
        resolver=resolver,
        message_channel=message_channel,
        ping_ledger=ping_ledger,
        offline_queue=offline_queue,
        network=network,
        pipeline=pipeline,
        dispatcher=dispatcher,
    )
