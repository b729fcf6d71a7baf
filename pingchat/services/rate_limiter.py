"""
Per-user, per-action fixed-window rate limiter backed by the shared store.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from pingchat.core.config import Settings
from pingchat.core.errors import NetworkUnavailable, RateLimitExceeded
from pingchat.core.logging import get_logger
from pingchat.core.timeutil import Clock, utcnow
from pingchat.repositories.rate_limits import RateLimitRepository

logger = get_logger(__name__)

PING = "ping"
MESSAGE = "message"

# A pass that neither admits nor refuses saw a concurrent caller move the window
ADMIT_PASSES = 8


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_ms: Optional[int] = None


class RateLimiter:
    """
    Admission control for ping and message sends.

    The count lives in the store and is only changed by conditional
    updates, so two devices of the same user share one budget.
    """

    def __init__(self, repository: RateLimitRepository, settings: Settings, clock: Clock = utcnow):
        self.repository = repository
        self.settings = settings
        self.clock = clock

    async def check_limit(self, username: str, action_kind: str) -> RateLimitDecision:
        capacity, window_seconds = self.settings.rate_policy(action_kind)
        try:
            return await self._admit(username, action_kind, capacity, timedelta(seconds=window_seconds))
        except (NetworkUnavailable, SQLAlchemyError) as e:
            return self._unreachable(username, action_kind, window_seconds, e)

    async def enforce(self, username: str, action_kind: str) -> None:
        """check_limit, raising RateLimitExceeded when refused."""
        decision = await self.check_limit(username, action_kind)
        if not decision.allowed:
            raise RateLimitExceeded(action_kind, decision.retry_after_ms or 0)

    async def _admit(self, username: str, action_kind: str, capacity: int, window: timedelta) -> RateLimitDecision:
        now = self.clock()
        cutoff = now - window

        for _ in range(ADMIT_PASSES):
            if await self.repository.try_increment(username, action_kind, cutoff, capacity):
                return RateLimitDecision(allowed=True)
            if await self.repository.try_rollover(username, action_kind, cutoff, now):
                return RateLimitDecision(allowed=True)

            state = await self.repository.get(username, action_kind)
            if state is None:
                if await self.repository.try_create(username, action_kind, now):
                    return RateLimitDecision(allowed=True)
                continue

            if state.window_start <= cutoff or state.count < capacity:
                # Another caller created or rolled the window after our update missed
                continue

            remaining = state.window_start + window - now
            retry_after_ms = max(1, int(remaining.total_seconds() * 1000))
            logger.info(
                "Rate limit exceeded",
                extra={"extra_data": {
                    "username": username,
                    "action_kind": action_kind,
                    "count": state.count,
                    "retry_after_ms": retry_after_ms,
                }}
            )
            return RateLimitDecision(allowed=False, retry_after_ms=retry_after_ms)

        raise RuntimeError(f"Rate limit state for {username}/{action_kind} kept changing")

    def _unreachable(self, username: str, action_kind: str, window_seconds: int, error: Exception) -> RateLimitDecision:
        fail_open = self.settings.rate_limit_fail_open
        logger.warning(
            "Rate limiter store unreachable, failing %s",
            "open" if fail_open else "closed",
            extra={"extra_data": {"username": username, "action_kind": action_kind, "error": str(error)}}
        )
        if fail_open:
            return RateLimitDecision(allowed=True)
        return RateLimitDecision(allowed=False, retry_after_ms=window_seconds * 1000)

    async def remaining(self, username: str, action_kind: str) -> int:
        capacity, window_seconds = self.settings.rate_policy(action_kind)
        state = await self.repository.get(username, action_kind)
        if state is None or state.window_start <= self.clock() - timedelta(seconds=window_seconds):
            return capacity
        return max(0, capacity - state.count)

    async def reset(self, username: str) -> None:
        removed = await self.repository.delete_for_user(username)
        logger.info("Reset rate limits", extra={"extra_data": {"username": username, "removed": removed}})
