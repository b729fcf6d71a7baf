"""
Durable queue for ping and message sends made while offline.
"""
import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from pingchat.core.database import session_scope
from pingchat.core.errors import AccessDenied, ConflictError, NotFoundError, QueueFullError, ValidationError
from pingchat.core.logging import get_logger
from pingchat.core.timeutil import Clock, utcnow
from pingchat.models.offline import OfflineQueueItem
from pingchat.services.backoff import ExponentialBackoff
from pingchat.services.message_channel import MessageChannel
from pingchat.services.ping_ledger import PingLedger

logger = get_logger(__name__)

PING_ACTION = "ping"
MESSAGE_ACTION = "message"

# Replaying these can never succeed, so they fail without retries
_PERMANENT_ERRORS = (ValidationError, NotFoundError, AccessDenied)


class Priority(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass(frozen=True)
class OfflineAction:
    kind: str
    payload: Dict[str, Any]

    @classmethod
    def ping(cls, listing_id: str, sender: str, receiver: str, message: str) -> "OfflineAction":
        return cls(PING_ACTION, {
            "listing_id": listing_id,
            "sender": sender,
            "receiver": receiver,
            "message": message,
        })

    @classmethod
    def message(cls, chat_id: str, sender: str, text: str, client_id: Optional[str] = None) -> "OfflineAction":
        return cls(MESSAGE_ACTION, {
            "chat_id": chat_id,
            "sender": sender,
            "text": text,
            "client_id": client_id,
        })


@dataclass(frozen=True)
class TerminalFailure:
    item_id: int
    kind: str
    payload: Dict[str, Any]
    retry_count: int
    error: str


@dataclass
class DrainResult:
    processed: int = 0
    retried: int = 0
    failed: List[TerminalFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class QueueStatus:
    total: int
    pending: int
    retrying: int


FailureListener = Callable[[TerminalFailure], Awaitable[None]]


class OfflineActionQueue:
    """
    Holds deferred sends in the device-local database and replays them.

    ``drain`` runs due items by priority (high first), then FIFO. A replay
    that keeps failing is rescheduled by the backoff policy until its retry
    ceiling, after which it is removed and reported as a TerminalFailure.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        ping_ledger: PingLedger,
        message_channel: MessageChannel,
        backoff: ExponentialBackoff,
        max_size: int = 100,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.ping_ledger = ping_ledger
        self.message_channel = message_channel
        self.backoff = backoff
        self.max_size = max_size
        self.clock = clock
        self._lock = asyncio.Lock()
        self._failure_listeners: List[FailureListener] = []

    def on_terminal_failure(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    async def enqueue(self, action: OfflineAction, priority: int = Priority.MEDIUM) -> int:
        if action.kind not in (PING_ACTION, MESSAGE_ACTION):
            raise ValueError(f"Unsupported offline action: {action.kind}")

        now = self.clock()
        async with session_scope(self._session_factory) as session:
            size = (await session.execute(select(func.count(OfflineQueueItem.id)))).scalar() or 0
            if size >= self.max_size:
                raise QueueFullError(f"Offline queue is full ({self.max_size} actions)")

            item = OfflineQueueItem(
                kind=action.kind,
                payload=dict(action.payload),
                priority=int(priority),
                retry_count=0,
                max_retries=self.backoff.max_attempts,
                enqueued_at=now,
                next_attempt_at=now,
            )
            session.add(item)
            await session.commit()

        logger.info(
            "Action queued offline",
            extra={"extra_data": {"item_id": item.id, "kind": action.kind, "priority": int(priority)}}
        )
        return item.id

    async def drain(self) -> DrainResult:
        """Replay every due item once. Concurrent calls run one after another."""
        async with self._lock:
            result = DrainResult()
            for item in await self._due_items():
                await self._process(item, result)

            logger.info(
                "Offline queue drained",
                extra={"extra_data": {
                    "processed": result.processed,
                    "retried": result.retried,
                    "failed": len(result.failed),
                }}
            )
            return result

    async def _due_items(self) -> List[OfflineQueueItem]:
        async with session_scope(self._session_factory) as session:
            rows = await session.execute(
                select(OfflineQueueItem)
                .where(OfflineQueueItem.next_attempt_at <= self.clock())
                .order_by(
                    OfflineQueueItem.priority.desc(),
                    OfflineQueueItem.enqueued_at.asc(),
                    OfflineQueueItem.id.asc(),
                )
            )
            return list(rows.scalars().all())

    async def _replay(self, item: OfflineQueueItem) -> None:
        data = item.payload
        if item.kind == PING_ACTION:
            await self.ping_ledger.create(data["listing_id"], data["sender"], data["receiver"], data["message"])
        elif item.kind == MESSAGE_ACTION:
            await self.message_channel.send(
                data["chat_id"], data["sender"], data["text"], client_id=data.get("client_id")
            )
        else:
            raise ValidationError(f"Unsupported offline action: {item.kind}")

    async def _process(self, item: OfflineQueueItem, result: DrainResult) -> None:
        try:
            await self._replay(item)
        except ConflictError as e:
            if item.kind == PING_ACTION:
                # The ping is already pending: an earlier replay got through
                logger.info(
                    "Offline ping already applied",
                    extra={"extra_data": {"item_id": item.id, "detail": e.detail}}
                )
                await self._remove(item.id)
                result.processed += 1
            else:
                await self._fail(item, e, result)
        except _PERMANENT_ERRORS as e:
            await self._fail(item, e, result)
        except Exception as e:
            if self.backoff.should_retry(item.retry_count, item.max_retries):
                await self._reschedule(item, e)
                result.retried += 1
            else:
                await self._fail(item, e, result)
        else:
            await self._remove(item.id)
            result.processed += 1

    async def _reschedule(self, item: OfflineQueueItem, error: Exception) -> None:
        retry_count = item.retry_count + 1
        next_attempt_at = self.clock() + self.backoff.delay(retry_count)
        async with session_scope(self._session_factory) as session:
            stored = await session.get(OfflineQueueItem, item.id)
            if stored is None:
                return
            stored.retry_count = retry_count
            stored.next_attempt_at = next_attempt_at
            stored.last_error = str(error)
            await session.commit()

        logger.warning(
            "Offline action failed, will retry",
            extra={"extra_data": {
                "item_id": item.id,
                "kind": item.kind,
                "retry_count": retry_count,
                "next_attempt_at": next_attempt_at.isoformat(),
                "error": str(error),
            }}
        )

    async def _fail(self, item: OfflineQueueItem, error: Exception, result: DrainResult) -> None:
        failure = TerminalFailure(
            item_id=item.id,
            kind=item.kind,
            payload=dict(item.payload),
            retry_count=item.retry_count,
            error=str(error),
        )
        await self._remove(item.id)
        result.failed.append(failure)
        logger.error(
            "Offline action failed permanently",
            extra={"extra_data": {
                "item_id": item.id,
                "kind": item.kind,
                "retry_count": item.retry_count,
                "error": str(error),
            }}
        )
        for listener in list(self._failure_listeners):
            await listener(failure)

    async def _remove(self, item_id: int) -> None:
        async with session_scope(self._session_factory) as session:
            await session.execute(delete(OfflineQueueItem).where(OfflineQueueItem.id == item_id))
            await session.commit()

    async def pending(self) -> List[OfflineQueueItem]:
        async with session_scope(self._session_factory) as session:
            rows = await session.execute(
                select(OfflineQueueItem).order_by(
                    OfflineQueueItem.priority.desc(),
                    OfflineQueueItem.enqueued_at.asc(),
                    OfflineQueueItem.id.asc(),
                )
            )
            return list(rows.scalars().all())

    async def status(self) -> QueueStatus:
        items = await self.pending()
        retrying = sum(1 for item in items if item.retry_count > 0)
        return QueueStatus(total=len(items), pending=len(items) - retrying, retrying=retrying)

    async def clear(self) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(delete(OfflineQueueItem))
            await session.commit()
            return result.rowcount
