"""
Listing and user directory lookups.
"""
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from pingchat.core.database import session_scope
from pingchat.models.directory import Listing, User


class UserDirectory:
    """Listing ownership and username/user-id resolution."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_listing_owner(self, listing_id: str) -> Optional[str]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(Listing.owner_username).where(Listing.id == listing_id)
            )
            return result.scalar_one_or_none()

    async def get_user(self, user_id: str) -> Optional[User]:
        async with session_scope(self._session_factory) as session:
            return await session.get(User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(select(User).where(User.username == username))
            return result.scalar_one_or_none()

    async def resolve_ids(self, usernames: Iterable[str]) -> Dict[str, str]:
        """Map usernames to user ids; unknown usernames are left out."""
        names = list(set(usernames))
        if not names:
            return {}
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(User.username, User.id).where(User.username.in_(names))
            )
            return {username: user_id for username, user_id in result.all()}

    async def set_phone_preference(self, user_id: str, preference: str) -> bool:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id)
                .values(phone_sharing_preference=preference)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0
