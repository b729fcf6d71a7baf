"""
Phone number disclosure policy.

An owner either shares with everyone or only with users whose ping they
accepted (a PhoneUnlockGrant). The raw number never leaves this module
when sharing is not allowed.
"""
from dataclasses import dataclass
from typing import List, Optional

from pingchat.core.errors import NotFoundError, ValidationError
from pingchat.core.logging import get_logger
from pingchat.core.timeutil import Clock, utcnow
from pingchat.models.directory import PhoneSharingPreference
from pingchat.models.phone import PhoneUnlockGrant
from pingchat.repositories.directory import UserDirectory
from pingchat.repositories.grants import GrantRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class PhoneVisibility:
    phone: Optional[str]
    can_share: bool


HIDDEN = PhoneVisibility(phone=None, can_share=False)


class PhoneDisclosureGate:

    def __init__(self, grants: GrantRepository, directory: UserDirectory, clock: Clock = utcnow):
        self.grants = grants
        self.directory = directory
        self.clock = clock

    async def get_visibility(self, owner_id: str, viewer_id: Optional[str]) -> PhoneVisibility:
        """``viewer_id`` is None for a viewer outside the directory, who holds no grants."""
        owner = await self.directory.get_user(owner_id)
        if owner is None or not owner.phone:
            return HIDDEN

        if owner.phone_sharing_preference == PhoneSharingPreference.EVERYONE.value:
            return PhoneVisibility(phone=owner.phone, can_share=True)

        if viewer_id is None:
            return HIDDEN

        if owner_id == viewer_id:
            return PhoneVisibility(phone=owner.phone, can_share=True)

        if await self.grants.get(owner_id, viewer_id) is not None:
            return PhoneVisibility(phone=owner.phone, can_share=True)
        return HIDDEN

    async def has_grant(self, owner_id: str, viewer_id: str) -> bool:
        return await self.grants.get(owner_id, viewer_id) is not None

    async def grant(self, owner_id: str, viewer_id: str) -> PhoneUnlockGrant:
        """Idempotently let viewer_id see owner_id's phone."""
        grant = await self.grants.upsert(owner_id, viewer_id, self.clock())
        logger.info(
            "Phone access granted",
            extra={"extra_data": {"owner_id": owner_id, "viewer_id": viewer_id}}
        )
        return grant

    async def revoke(self, owner_id: str, viewer_id: str) -> bool:
        """Remove one grant. Revoking a missing grant is a no-op."""
        removed = await self.grants.delete(owner_id, viewer_id)
        logger.info(
            "Phone access revoked",
            extra={"extra_data": {"owner_id": owner_id, "viewer_id": viewer_id, "removed": removed}}
        )
        return removed > 0

    async def revoke_all(self, owner_id: str) -> int:
        removed = await self.grants.delete_all(owner_id)
        logger.info(
            "All phone access revoked",
            extra={"extra_data": {"owner_id": owner_id, "removed": removed}}
        )
        return removed

    async def get_preference(self, owner_id: str) -> PhoneSharingPreference:
        owner = await self.directory.get_user(owner_id)
        if owner is None:
            raise NotFoundError(f"User {owner_id} not found")
        return PhoneSharingPreference(owner.phone_sharing_preference)

    async def set_preference(self, owner_id: str, preference: str) -> PhoneSharingPreference:
        """Change the owner's policy. Existing grants are kept either way."""
        try:
            value = PhoneSharingPreference(preference)
        except ValueError:
            raise ValidationError(f"Unknown phone sharing preference: {preference}")
        if not await self.directory.set_phone_preference(owner_id, value.value):
            raise NotFoundError(f"User {owner_id} not found")
        logger.info(
            "Phone sharing preference updated",
            extra={"extra_data": {"owner_id": owner_id, "preference": value.value}}
        )
        return value

    async def list_grants(self, owner_id: str) -> List[PhoneUnlockGrant]:
        return await self.grants.list_for_owner(owner_id)
