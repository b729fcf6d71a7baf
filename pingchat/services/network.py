"""
Connectivity state and the connectivity-restored signal.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

from pingchat.core.logging import get_logger

logger = get_logger(__name__)

OnlineListener = Callable[[], Awaitable[object]]


class NetworkMonitor:
    """
    Tracks whether the store is reachable.

    The connectivity watcher calls ``set_online``; listeners run on
    every offline -> online edge.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[OnlineListener] = []

    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: OnlineListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def set_online(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online == was_online:
            return

        logger.info("Connectivity changed", extra={"extra_data": {"online": online}})
        if online:
            results = await asyncio.gather(*(listener() for listener in list(self._listeners)), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("Connectivity listener failed", exc_info=result)

    async def mark_offline(self) -> None:
        await self.set_online(False)


class ConnectivityWatcher:
    """
    Flips the monitor back online once the store answers again.

    ``run`` polls on an interval for the lifetime of the app. While online it
    also drains, so items rescheduled by the backoff policy are picked up when
    they come due. ``check_once`` lets the readiness endpoint check on demand.
    """

    def __init__(
        self,
        network: NetworkMonitor,
        check: Callable[[], Awaitable[bool]],
        interval_seconds: float = 5.0,
        drain: Optional[Callable[[], Awaitable[object]]] = None,
    ):
        self.network = network
        self.check = check
        self.interval_seconds = interval_seconds
        self.drain = drain

    async def check_once(self) -> bool:
        if self.network.is_online():
            return True
        if not await self.check():
            return False
        logger.info("Store reachable again")
        await self.network.set_online(True)
        return True

    async def run(self) -> None:
        while True:
            try:
                was_online = self.network.is_online()
                online = await self.check_once()
                # The offline -> online edge already drained through the listeners
                if online and was_online and self.drain is not None:
                    await self.drain()
            except Exception:
                logger.exception("Connectivity watcher failed")
            await asyncio.sleep(self.interval_seconds)
