"""
Rate limiter window state persistence.

Every mutation is a single conditional statement so concurrent callers
(the same user on two devices) cannot double count.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from pingchat.core.database import session_scope
from pingchat.models.rate_limit import RateLimitState


class RateLimitRepository:

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get(self, username: str, action_kind: str) -> Optional[RateLimitState]:
        async with session_scope(self._session_factory) as session:
            return await session.get(RateLimitState, (username, action_kind))

    async def try_increment(self, username: str, action_kind: str, window_cutoff: datetime, capacity: int) -> bool:
        """Count one action inside the current window if there is room."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(RateLimitState)
                .where(
                    RateLimitState.username == username,
                    RateLimitState.action_kind == action_kind,
                    RateLimitState.window_start > window_cutoff,
                    RateLimitState.count < capacity,
                )
                .values(count=RateLimitState.count + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def try_rollover(self, username: str, action_kind: str, window_cutoff: datetime, now: datetime) -> bool:
        """Start a fresh window counting this action, if the old one has elapsed."""
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(RateLimitState)
                .where(
                    RateLimitState.username == username,
                    RateLimitState.action_kind == action_kind,
                    RateLimitState.window_start <= window_cutoff,
                )
                .values(count=1, window_start=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def try_create(self, username: str, action_kind: str, now: datetime) -> bool:
        """Open the first window counting this action. False if a row already exists."""
        async with session_scope(self._session_factory) as session:
            try:
                session.add(RateLimitState(username=username, action_kind=action_kind, window_start=now, count=1))
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False

    async def delete_for_user(self, username: str) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(RateLimitState).where(RateLimitState.username == username)
            )
            await session.commit()
            return result.rowcount
