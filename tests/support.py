"""
Test doubles and seed data shared by the service and API tests.
"""
from datetime import datetime, timedelta
from typing import List

from pingchat.core.config import Settings
from pingchat.models.directory import Listing, PhoneSharingPreference, User
from pingchat.services.notifications import NotificationDispatcher, NotificationEvent

TEST_SECRET = "test-secret-key-12345"

ALICE_ID = "u-alice"
BOB_ID = "u-bob"
CAROL_ID = "u-carol"
DAVE_ID = "u-dave"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.events: List[NotificationEvent] = []

    async def emit(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [event.kind for event in self.events]


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        webhook_secret=TEST_SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/pingchat.db",
        offline_queue_url=f"sqlite+aiosqlite:///{tmp_path}/offline_queue.db",
        log_level="DEBUG",
        log_format="text",
        backoff_jitter=0.0,
        connectivity_check_interval_seconds=3600,
    )
    values.update(overrides)
    return Settings(**values)


def seed_rows():
    """Users alice, bob, carol, dave; listings owned by bob, alice and carol."""
    return [
        User(id=ALICE_ID, username="alice", phone="+15550000001",
             phone_sharing_preference=PhoneSharingPreference.PING_CONFIRMATION.value),
        User(id=BOB_ID, username="bob", phone="+15550000002",
             phone_sharing_preference=PhoneSharingPreference.PING_CONFIRMATION.value),
        User(id=CAROL_ID, username="carol", phone="+15550000003",
             phone_sharing_preference=PhoneSharingPreference.EVERYONE.value),
        User(id=DAVE_ID, username="dave", phone=None,
             phone_sharing_preference=PhoneSharingPreference.EVERYONE.value),
        Listing(id="L42", owner_username="bob", title="Road bike"),
        Listing(id="L7", owner_username="alice", title="Desk lamp"),
        Listing(id="L9", owner_username="carol", title="Sofa"),
    ]
