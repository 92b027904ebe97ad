import asyncio
import math
from collections import defaultdict, deque
from dataclasses import dataclass
from time import monotonic


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    limit: int
    window_seconds: int


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int = 0


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by actor; single-process only."""

    def __init__(self) -> None:
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def allow(self, key: str, rule: RateLimitRule) -> bool:
        decision = await self.hit(key, rule)
        return decision.allowed

    async def hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        now = monotonic()
        window_start = now - rule.window_seconds

        async with self._lock:
            events = self._events[key]
            while events and events[0] <= window_start:
                events.popleft()

            if len(events) >= rule.limit:
                retry_after = events[0] + rule.window_seconds - now
                return RateLimitDecision(
                    allowed=False,
                    retry_after_seconds=max(1, math.ceil(retry_after)),
                )

            events.append(now)
            return RateLimitDecision(allowed=True)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._events.pop(key, None)
