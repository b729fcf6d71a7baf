"""
Shared fixtures: fresh SQLite files per test, a controllable clock, and
seeded users and listings.
"""
from datetime import datetime

import pytest
import pytest_asyncio

from pingchat.core.database import (
    create_engine_for,
    init_db,
    init_queue_db,
    make_session_factory,
    session_scope,
)
from pingchat.services.backoff import ExponentialBackoff
from pingchat.services.container import build_services
from pingchat.services.network import NetworkMonitor

from tests.support import FakeClock, RecordingDispatcher, make_settings, seed_rows


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 15, 10, 0, 0))


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def network():
    return NetworkMonitor(online=True)


@pytest.fixture
def backoff():
    return ExponentialBackoff(base_seconds=1.0, max_seconds=15.0, multiplier=2.0, jitter=0.0, max_attempts=3)


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine_for(settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def queue_engine(settings):
    engine = create_engine_for(settings.offline_queue_url)
    await init_queue_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def queue_session_factory(queue_engine):
    return make_session_factory(queue_engine)


@pytest_asyncio.fixture
async def seeded(session_factory):
    async with session_scope(session_factory) as session:
        session.add_all(seed_rows())
        await session.commit()
    return session_factory


@pytest.fixture
def services(settings, seeded, queue_session_factory, dispatcher, network, backoff, clock):
    return build_services(
        settings,
        seeded,
        queue_session_factory,
        dispatcher=dispatcher,
        network=network,
        backoff=backoff,
        clock=clock,
    )
