"""
Phone unlock grant persistence.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from pingchat.core.database import session_scope
from pingchat.core.logging import get_logger
from pingchat.models.phone import PhoneUnlockGrant

logger = get_logger(__name__)


class GrantRepository:

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get(self, owner_id: str, viewer_id: str) -> Optional[PhoneUnlockGrant]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(PhoneUnlockGrant).where(
                    PhoneUnlockGrant.owner_id == owner_id,
                    PhoneUnlockGrant.unlocked_by_id == viewer_id,
                )
            )
            return result.scalar_one_or_none()

    async def upsert(self, owner_id: str, viewer_id: str, now: datetime) -> PhoneUnlockGrant:
        """Insert the grant unless it exists; a concurrent insert is re-read."""
        existing = await self.get(owner_id, viewer_id)
        if existing:
            return existing

        grant = PhoneUnlockGrant(owner_id=owner_id, unlocked_by_id=viewer_id, unlocked_at=now)
        async with session_scope(self._session_factory) as session:
            try:
                session.add(grant)
                await session.commit()
                return grant
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Phone grant already exists via constraint",
                    extra={"extra_data": {"owner_id": owner_id, "viewer_id": viewer_id}}
                )

        existing = await self.get(owner_id, viewer_id)
        if existing is None:
            # Constraint fired but the row is gone again: revoked in between
            raise RuntimeError(f"Grant {owner_id}->{viewer_id} vanished during upsert")
        return existing

    async def delete(self, owner_id: str, viewer_id: str) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(PhoneUnlockGrant).where(
                    PhoneUnlockGrant.owner_id == owner_id,
                    PhoneUnlockGrant.unlocked_by_id == viewer_id,
                )
            )
            await session.commit()
            return result.rowcount

    async def delete_all(self, owner_id: str) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(PhoneUnlockGrant).where(PhoneUnlockGrant.owner_id == owner_id)
            )
            await session.commit()
            return result.rowcount

    async def list_for_owner(self, owner_id: str) -> List[PhoneUnlockGrant]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(PhoneUnlockGrant)
                .where(PhoneUnlockGrant.owner_id == owner_id)
                .order_by(PhoneUnlockGrant.unlocked_at.desc())
            )
            return list(result.scalars().all())
