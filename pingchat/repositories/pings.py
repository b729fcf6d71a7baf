"""
Ping persistence.
"""
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from pingchat.core.database import session_scope
from pingchat.core.errors import ConflictError
from pingchat.core.logging import get_logger
from pingchat.models.ping import Ping, PingStatus

logger = get_logger(__name__)


class PingRepository:

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get(self, ping_id: str) -> Optional[Ping]:
        async with session_scope(self._session_factory) as session:
            return await session.get(Ping, ping_id)

    async def find_for_triple(
        self,
        listing_id: str,
        sender: str,
        receiver: str,
        statuses: Sequence[PingStatus],
    ) -> Optional[Ping]:
        """Newest ping on the triple whose status is one of ``statuses``."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Ping)
                .where(
                    Ping.listing_id == listing_id,
                    Ping.sender_username == sender,
                    Ping.receiver_username == receiver,
                    Ping.status.in_([s.value for s in statuses]),
                )
                .order_by(Ping.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def insert_pending(
        self,
        listing_id: str,
        sender: str,
        receiver: str,
        message: str,
        now: datetime,
    ) -> Ping:
        ping = Ping(
            listing_id=listing_id,
            sender_username=sender,
            receiver_username=receiver,
            message=message,
            status=PingStatus.PENDING.value,
            created_at=now,
            last_ping_at=now,
            ping_count=1,
        )
        async with session_scope(self._session_factory) as session:
            try:
                session.add(ping)
                await session.commit()
            except IntegrityError:
                # Race condition: another request inserted a pending ping for the triple
                await session.rollback()
                logger.info(
                    "Duplicate pending ping detected via constraint",
                    extra={"extra_data": {"listing_id": listing_id, "sender": sender}}
                )
                raise ConflictError("A ping for this listing is already pending")
        return ping

    async def transition(
        self,
        ping_id: str,
        new_status: PingStatus,
        responded_at: datetime,
        response_time_minutes: int,
        response_message: Optional[str],
    ) -> bool:
        """Move a pending ping to a terminal status. False if it was not pending."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(Ping)
                .where(Ping.id == ping_id, Ping.status == PingStatus.PENDING.value)
                .values(
                    status=new_status.value,
                    responded_at=responded_at,
                    response_time_minutes=response_time_minutes,
                    response_message=response_message,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def record_follow_up(self, ping_id: str, now: datetime) -> Optional[Ping]:
        async with session_scope(self._session_factory) as session:
            await session.execute(
                update(Ping)
                .where(Ping.id == ping_id)
                .values(ping_count=Ping.ping_count + 1, last_ping_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return await session.get(Ping, ping_id, populate_existing=True)

    async def list_sent(self, username: str) -> List[Ping]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Ping)
                .where(Ping.sender_username == username)
                .order_by(Ping.created_at.desc())
            )
            return list(result.scalars().all())

    async def list_received(self, username: str) -> List[Ping]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Ping)
                .where(Ping.receiver_username == username)
                .order_by(Ping.created_at.desc())
            )
            return list(result.scalars().all())

    async def count_by_role_and_status(self, username: str) -> Dict[str, Dict[str, int]]:
        """{"sent": {status: n}, "received": {status: n}} for one user."""
        counts: Dict[str, Dict[str, int]] = {"sent": {}, "received": {}}
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(
                    Ping.sender_username,
                    Ping.status,
                    func.count(Ping.id),
                )
                .where(or_(Ping.sender_username == username, Ping.receiver_username == username))
                .group_by(Ping.sender_username, Ping.status)
            )
            for sender, status, count in result.all():
                role = "sent" if sender == username else "received"
                counts[role][status] = counts[role].get(status, 0) + count
        return counts

    async def average_response_minutes(self, receiver: str) -> Optional[float]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(func.avg(Ping.response_time_minutes))
                .where(
                    Ping.receiver_username == receiver,
                    Ping.response_time_minutes.is_not(None),
                )
            )
            value = result.scalar()
            return float(value) if value is not None else None
